"""Result type for external command execution."""

from pydantic import BaseModel, Field


class CommandResult(BaseModel):
    """Captured outcome of one external command."""

    command: str
    exited: int
    lines: list[str] = Field(default_factory=list)
    stderr: str = ""
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exited == 0

    @property
    def stdout(self) -> str:
        return "\n".join(self.lines)
