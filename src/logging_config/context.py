"""Session Context Management.

Binds the gateway session id and account descriptor to every log entry
through contextvars. Background tasks created inside a bound context
(receive loop, token refresh) inherit the binding.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


_session_id_var: ContextVar[str] = ContextVar("session_id", default="")
_account_var: ContextVar[str] = ContextVar("account", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_session_id() -> str:
    """Generate a short unique session ID."""
    return uuid.uuid4().hex[:12]


def get_session_id() -> str:
    return _session_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    session_id = _session_id_var.get()
    if session_id:
        ctx["session_id"] = session_id
    account = _account_var.get()
    if account:
        ctx["account"] = account
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class SessionContext:
    """Context manager for session-scoped logging context.

    Example:
        with SessionContext(account="12345678"):
            logger.info("connecting")  # includes session_id, account
    """

    session_id: str = ""
    account: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.session_id:
            self.session_id = generate_session_id()

    def __enter__(self) -> "SessionContext":
        self._tokens = [
            (_session_id_var, _session_id_var.set(self.session_id)),
            (_account_var, _account_var.set(self.account)),
            (_extra_context_var, _extra_context_var.set(self.extra.copy())),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)
