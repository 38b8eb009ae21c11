"""Diagnostics returned by reconciliation operations.

The reconciler never raises for cloud failures. Each operation returns the
assignments it managed to converge plus a list of diagnostics describing what
went wrong, and the caller decides how to surface them.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum


class Severity(str, Enum):
    """Diagnostic severity."""

    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    """A single user-facing diagnostic."""

    severity: Severity
    summary: str
    detail: str

    def __str__(self) -> str:
        return f"{self.severity.value}: {self.summary}: {self.detail}"


@dataclass
class Diagnostics:
    """Ordered collection of diagnostics."""

    items: list[Diagnostic] = field(default_factory=list)

    def add_error(self, summary: str, detail: str) -> None:
        self.items.append(Diagnostic(Severity.ERROR, summary, detail))

    def add_warning(self, summary: str, detail: str) -> None:
        self.items.append(Diagnostic(Severity.WARNING, summary, detail))

    def extend(self, other: Diagnostics) -> None:
        self.items.extend(other.items)

    def has_error(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self.items)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.items if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.items if d.severity == Severity.WARNING]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.items)
