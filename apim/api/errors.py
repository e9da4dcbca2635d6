from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status

from apim.domain.errors import (
    AuthorizationError,
    ConflictError,
    ConsoleError,
    InvalidScopeError,
    NotFoundError,
    PersistenceError,
)

_STATUS_BY_ERROR: tuple[tuple[type[ConsoleError], int], ...] = (
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (InvalidScopeError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def handle_console_error(exc: ConsoleError) -> NoReturn:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    raise exc
