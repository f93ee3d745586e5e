"""Progress events reported by the replay and the label projection."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict


class Phase(str, Enum):
    """Unit of work a progress event reports on."""

    INIT = "init"
    REVISION = "revision"
    GC = "gc"
    FINALIZE = "finalize"
    TAGS = "tags"


class ProgressEvent(BaseModel):
    """One finished unit of work and how long it took."""

    model_config = ConfigDict(frozen=True)

    phase: Phase
    elapsed_ms: int
    revision: int | None = None
    branch: str | None = None

    def describe(self) -> str:
        seconds = self.elapsed_ms / 1000
        if self.phase is Phase.REVISION:
            return f"processing version {self.revision} took {seconds:.3f}s"
        return {
            Phase.INIT: f"init took {seconds:.3f}s",
            Phase.GC: f"gc took {seconds:.3f}s",
            Phase.FINALIZE: f"finalization took {seconds:.3f}s",
            Phase.TAGS: f"tags creation took {seconds:.3f}s",
        }[self.phase]


# Returns True to request a cooperative stop
ProgressCallback = Callable[[ProgressEvent], bool]


def never_cancel(event: ProgressEvent) -> bool:  # noqa: ARG001
    return False
