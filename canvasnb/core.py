"""Diagnostics shared by every canvasnb operation."""

from enum import StrEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Diag(BaseModel):
    """One diagnostic: an upper-snake `code` clients can switch on, plus text for people."""

    severity: Severity
    code: str
    message: str
    hint: str | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class Result(BaseModel, Generic[T]):  # noqa: UP046 - pydantic needs a Generic[T] base
    """Outcome of an operation that may be refused.

    Store mutations, conversions and collaborator calls never throw for
    validation failures. They return a Result whose diagnostics explain
    why the operation was refused; `data` is None when it was.
    """

    data: T | None = None
    diagnostics: list[Diag] = Field(default_factory=list)

    @classmethod
    def failure(cls, code: str, message: str, *, hint: str | None = None) -> "Result[T]":
        result = cls()
        result.error(code, message, hint=hint)
        return result

    @property
    def ok(self) -> bool:
        return not self.has_errors

    @property
    def has_errors(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self.diagnostics)

    @property
    def first_error(self) -> Diag | None:
        return next((d for d in self.diagnostics if d.severity == Severity.ERROR), None)

    def _add(self, severity: Severity, code: str, message: str, hint: str | None) -> None:
        self.diagnostics.append(Diag(severity=severity, code=code, message=message, hint=hint))

    def error(self, code: str, message: str, *, hint: str | None = None) -> None:
        self._add(Severity.ERROR, code, message, hint)

    def warning(self, code: str, message: str, *, hint: str | None = None) -> None:
        self._add(Severity.WARNING, code, message, hint)

    def info(self, code: str, message: str, *, hint: str | None = None) -> None:
        self._add(Severity.INFO, code, message, hint)

    def extend(self, other: "Result[object]") -> None:
        """Carry over diagnostics from a nested operation."""
        self.diagnostics.extend(other.diagnostics)
