"""Result type returned by bot operations that can fail for a business reason."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

NOT_FOUND = "not_found"
INVALID_STATUS = "invalid_status"
INVALID_STATE = "invalid_state"
EMPTY_CART = "empty_cart"

HTTP_STATUS_BY_CODE = {
    NOT_FOUND: 404,
    INVALID_STATUS: 400,
    INVALID_STATE: 409,
    EMPTY_CART: 409,
}


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @property
    def http_status(self) -> int:
        """HTTP status an API should answer with; 200 for successes, 500 for unknown codes."""
        if self.ok:
            return 200
        return HTTP_STATUS_BY_CODE.get(self.error_code, 500)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
