from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ImportDiagnostics:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warning(self, message: str) -> None:
        self.warnings.append(message)


@dataclass
class ImportResult:
    """Outcome of one import run, returned to the upload handler as-is."""

    success: bool = True
    accounts_created: int = 0
    accounts_updated: int = 0
    interactions_created: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def prepend(self, diagnostics: ImportDiagnostics) -> None:
        # Parser diagnostics read before anything the reconciliation reported.
        self.errors[:0] = diagnostics.errors
        self.warnings[:0] = diagnostics.warnings

    def mark_failed(self, message: str) -> None:
        self.success = False
        self.errors.append(message)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "accounts_created": self.accounts_created,
            "accounts_updated": self.accounts_updated,
            "interactions_created": self.interactions_created,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
