"""Tags command - project Vault labels onto existing history."""

from pydantic import BaseModel, Field

from vaultreplay.core.log import logger


class TagsCommand(BaseModel):
    """Create git tags from Vault labels without replaying.

    The transaction -> commit map is rebuilt from the provenance
    markers already in git history.
    """

    branch: list[str] = Field(
        default_factory=list,
        description=(
            "Branch whose history is searched; repeat for several. "
            "Default: every configured branch"
        ),
    )

    async def run_workflow(self, state: "State") -> int:  # noqa: F821
        from vaultreplay.command.common import (
            ConsoleProgress,
            build_clients,
            select_branches,
        )
        from vaultreplay.replay.labels import (
            LabelProjector,
            commit_map_from_history,
        )

        config = state.config
        mappings = select_branches(config.branches, self.branch)
        vault, git = build_clients(config)

        commit_map = commit_map_from_history(
            git, [mapping.branch for mapping in mappings]
        )
        state.runtime.tags.commit_map = commit_map

        projector = LabelProjector(
            vault, git, commit_map, config.vault.label_root, ConsoleProgress()
        )
        projector.project()

        state.runtime.tags.tags_created = projector.created
        state.runtime.tags.status = "complete"
        logger.info(f"Created {len(projector.created)} tags")
        return 0
