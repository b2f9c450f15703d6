"""
Exec result — what a finished child process reports back.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ExecResult(BaseModel):
    """Outcome of one subprocess run."""

    argv: list[str] = Field(default_factory=list)
    exit_code: int = 0
    elapsed_ms: int = 0
    privileged: bool = False

    @property
    def ok(self) -> bool:
        """Whether the child exited zero."""
        return self.exit_code == 0
