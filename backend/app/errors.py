from typing import Optional

from fastapi import HTTPException


class OperationError(HTTPException):
    """
    A user-facing failure of a state-changing operation.
    Rendered by the app as `{"success": false, "error": detail, "code": code}`.
    """

    def __init__(self, status_code: int, detail: str, code: Optional[str] = None):
        super().__init__(status_code=status_code, detail=detail)
        self.code = code


def bad_request(detail: str, code: Optional[str] = None) -> OperationError:
    return OperationError(400, detail, code)


def not_found(detail: str, code: Optional[str] = None) -> OperationError:
    return OperationError(404, detail, code)


def conflict(detail: str, code: Optional[str] = None) -> OperationError:
    return OperationError(409, detail, code)
