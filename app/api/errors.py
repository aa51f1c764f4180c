from fastapi import HTTPException, status

from app.core.exceptions import SchedulingError

ERROR_STATUS_CODES = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "state": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "system": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_code_for(error_type: str) -> int:
    return ERROR_STATUS_CODES.get(error_type, status.HTTP_500_INTERNAL_SERVER_ERROR)


def to_http_exception(error: SchedulingError) -> HTTPException:
    return HTTPException(status_code=status_code_for(error.error_type), detail=error.message)
