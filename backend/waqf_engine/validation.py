"""
Violation collection shared by the validators.

Validators walk the whole document and record every problem they find, then
raise once, so a writer sees all of them in a single rejection.
"""

from dataclasses import dataclass, field
from typing import List, Type

from .errors import StructuralValidationError


@dataclass
class ValidationIssue:
    code: str
    message: str
    field: str = ""

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationResult:
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, code: str, message: str, field_name: str = "") -> None:
        self.errors.append(ValidationIssue(code, message, field_name))

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def extend(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def messages(self) -> List[str]:
        return [issue.message for issue in self.errors]

    def codes(self) -> List[str]:
        return [issue.code for issue in self.errors]

    def raise_for_errors(self, error_cls: Type[StructuralValidationError]) -> None:
        if self.errors:
            raise error_cls(self.messages())
