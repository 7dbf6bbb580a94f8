from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

EXTERNAL_STORE_FAILURE = "external_store_failure"


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

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    @property
    def is_store_failure(self) -> bool:
        return not self.ok and self.error_code == EXTERNAL_STORE_FAILURE
