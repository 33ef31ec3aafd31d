from pathlib import Path
from typing import Literal

from pydantic import BaseModel

ErrorCode = Literal[
    "invalid_token_line",
    "invalid_label",
    "storage_error",
    "store_not_loaded",
    "unauthorized",
]


class ErrorResponse(BaseModel):
    error: ErrorCode
    error_description: str


class MellonError(Exception):
    """
    Base class for token store failures.

    ``str(error)`` is the human-readable reason printed by the CLI.
    """

    error_code: ErrorCode

    def __init__(self, error_description: str):
        super().__init__(error_description)
        self.error_description = error_description

    def error_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.error_code, error_description=str(self))


class TokenParseError(MellonError):
    """A persisted line is not ``label:secret``."""

    error_code = "invalid_token_line"

    def __init__(self, error_description: str, *, line_number: int | None = None):
        super().__init__(error_description)
        # 1-based line in the store file, when parsing a file
        self.line_number = line_number


class TokenValidationError(MellonError):
    error_code = "invalid_label"


class TokenStoreIOError(MellonError):
    """The backing file or its directory could not be read or written."""

    error_code = "storage_error"

    def __init__(self, error_description: str, *, path: Path):
        super().__init__(f"{error_description} ({path})")
        self.path = path


class StoreNotLoadedError(MellonError):
    error_code = "store_not_loaded"
