"""Domain exceptions mapped to JSON responses by the handlers in ``main``."""

from __future__ import annotations

from starlette import status


class AppBaseException(Exception):
    """Domain-level base exception so we can map to JSON responses easily."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    close_connection: bool = False

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppBaseException):
    """Missing or unknown key, disallowed file, or an exhausted key space."""

    status_code = status.HTTP_400_BAD_REQUEST
    close_connection = True


class CapacityError(ValidationError):
    """No unused key could be found within the retry budget."""


class NotFoundError(AppBaseException):
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(AppBaseException):
    """The requesting device is not the one that created the session."""

    status_code = status.HTTP_403_FORBIDDEN
    close_connection = True


class ConversionError(AppBaseException):
    """An external converter could not be launched or exited with a failure code."""

    def __init__(self, detail: str, returncode: int | None = None, output: str = "") -> None:
        super().__init__(detail)
        self.returncode = returncode
        self.output = output
