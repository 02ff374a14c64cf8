# Core package initialization
# Cross-cutting concerns: configuration, errors, logging, auth helpers

from . import auth_decorators, exceptions, security

__all__ = [
    "auth_decorators",
    "exceptions",
    "security",
]
