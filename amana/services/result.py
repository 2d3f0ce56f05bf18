from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of an operation whose failure is expected and user-facing."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown", *, retryable: bool = False) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code, retryable=retryable)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def log_context(self) -> dict:
        return {"ok": self.ok, "error": self.error, "error_code": self.error_code, "retryable": self.retryable}
