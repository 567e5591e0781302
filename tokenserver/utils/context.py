from contextvars import ContextVar

from tokenserver.models.auth import AuthContext

# Set by the bearer token middleware for the duration of a request
auth_context_var: ContextVar[AuthContext | None] = ContextVar("auth_context", default=None)
