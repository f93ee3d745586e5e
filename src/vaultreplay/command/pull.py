"""Pull command - replay Vault history into git."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from vaultreplay.core.log import logger


class PullCommand(BaseModel):
    """Replay every Vault version not yet in git, then tag labels.

    Branches are resumed from the provenance marker on their tip
    commit, so an interrupted pull can simply be run again.
    """

    limit: int = Field(
        default=0,
        ge=0,
        description="Max versions to replay per branch (0 = all)",
    )
    branch: list[str] = Field(
        default_factory=list,
        description=(
            "Branch to replay, in git terms; repeat for several. "
            "Default: every configured branch"
        ),
    )
    skip_empty_commits: bool = Field(
        default=False,
        alias="skip-empty-commits",
        description="Do not create commits that change nothing",
    )
    ignore_labels: bool = Field(
        default=False,
        alias="ignore-labels",
        description="Do not create git tags from Vault labels",
    )
    stop_file: Path | None = Field(
        default=None,
        alias="stop-file",
        description=(
            "Stop cleanly after the current version once this file exists"
        ),
    )

    async def run_workflow(self, state: "State") -> int:  # noqa: F821
        """Run the replay and, unless disabled, the label pass.

        Returns:
            Exit code (0=success, including a requested stop)
        """
        from vaultreplay.command.common import (
            ConsoleProgress,
            build_clients,
            select_branches,
        )
        from vaultreplay.replay.engine import ReplayEngine, ReplaySettings
        from vaultreplay.replay.labels import LabelProjector

        config = state.config
        runtime = state.runtime.pull
        mappings = select_branches(config.branches, self.branch)

        settings = ReplaySettings.from_config(config)
        if self.skip_empty_commits:
            settings = settings.model_copy(update={"skip_empty_commits": True})

        vault, git = build_clients(config)
        progress = ConsoleProgress(self.stop_file)
        engine = ReplayEngine(vault, git, settings, progress)
        engine.commit_map = runtime.commit_map

        runtime.status = "running"
        try:
            with progress.handle_signals():
                runtime.stopped = await engine.replay(mappings, self.limit)
        except BaseException:
            runtime.status = "failed"
            raise
        runtime.status = "stopped" if runtime.stopped else "complete"
        logger.info(
            f"Replay {runtime.status}, "
            f"{len(runtime.commit_map)} commits created"
        )

        if self.ignore_labels:
            return 0
        if runtime.stopped:
            logger.info("Skipping labels because the replay was stopped")
            return 0

        projector = LabelProjector(
            vault, git, runtime.commit_map, config.vault.label_root, progress
        )
        projector.project()
        state.runtime.tags.tags_created = projector.created
        state.runtime.tags.status = "complete"
        return 0
