from __future__ import annotations


class ConsoleError(Exception):
    pass


class AuthorizationError(ConsoleError):
    pass


class InvalidScopeError(ConsoleError):
    pass


class NotFoundError(ConsoleError):
    pass


class ConflictError(ConsoleError):
    pass


class PersistenceError(ConsoleError):
    pass
