"""
Suite Report Model
Pydantic model for the machine-readable summary of one test-suite run.
"""
from pydantic import BaseModel


class SuiteReport(BaseModel):
    total: int = 0
    failed: int = 0
    errors: int = 0
    skipped: int = 0
    report_files: int = 0

    @property
    def passed(self) -> int:
        return max(0, self.total - self.failed - self.errors - self.skipped)

    @property
    def has_failures(self) -> bool:
        return (self.failed + self.errors) > 0

    def describe(self) -> str:
        return (
            f"{self.total} tests, {self.failed} failed, "
            f"{self.errors} errors, {self.skipped} skipped"
        )
