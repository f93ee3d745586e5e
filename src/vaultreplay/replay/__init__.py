"""History replay: engine, provenance markers and label tags."""

from vaultreplay.replay.engine import (
    BranchMapping,
    ReplayEngine,
    ReplaySettings,
)
from vaultreplay.replay.labels import LabelProjector, commit_map_from_history
from vaultreplay.replay.progress import Phase, ProgressEvent

__all__ = [
    "BranchMapping",
    "ReplayEngine",
    "ReplaySettings",
    "LabelProjector",
    "commit_map_from_history",
    "Phase",
    "ProgressEvent",
]
