from fastapi import HTTPException, status

from curator.core.auth import Principal
from curator.services.documents import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[RepositoryError], int], ...] = (
    (RepositoryUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (RepositoryNotFoundError, status.HTTP_404_NOT_FOUND),
    (RepositoryConflictError, status.HTTP_409_CONFLICT),
    (RepositoryValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RepositoryForbiddenError, status.HTTP_403_FORBIDDEN),
)


def http_error(exc: RepositoryError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def require_scopes(principal: Principal, scopes: set[str]) -> None:
    try:
        principal.require_scopes(scopes)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
