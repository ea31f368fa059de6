from fastapi import HTTPException, status

INTERNAL_ERROR_DETAIL = 'Internal server error.'


def internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=INTERNAL_ERROR_DETAIL,
    )
