"""Replay of Vault history into git, one commit per Vault version.

The run is a pydantic-graph state machine:

    StartBranch -> ReplayRevision -> [Housekeeping] -> ReplayRevision ...
                -> FinishBranch -> StartBranch (next branch) ... -> End

Every node that finishes a unit of work reports a ProgressEvent; a
True answer ends the graph with End(True). ReplayEngine.replay()
wraps the graph with the login/logout and finalization that must run
however the graph ends.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_graph import BaseNode, End, Graph, GraphRunContext

from vaultreplay.core.base import BaseState
from vaultreplay.core.config import Config
from vaultreplay.core.errors import (
    CheckoutError,
    CommandError,
    CommandTimeoutError,
)
from vaultreplay.core.log import logger
from vaultreplay.git.repository import GitRepository
from vaultreplay.replay import provenance
from vaultreplay.replay.progress import (
    Phase,
    ProgressCallback,
    ProgressEvent,
    never_cancel,
)
from vaultreplay.replay.sanitize import sanitize_tree
from vaultreplay.replay.workspace import fetch_version, reconcile_structure
from vaultreplay.vault.client import (
    VaultClient,
    release_working_folder,
    vault_session,
)
from vaultreplay.vault.models import VaultRevision


class BranchMapping(BaseModel):
    """Destination branch fed from one Vault folder."""

    model_config = ConfigDict(frozen=True)

    branch: str
    path: str


class ReplaySettings(BaseModel):
    """Engine settings, usually taken from Config."""

    repository: str = Field(description="Vault repository name")
    history_start: date = date(2000, 1, 1)
    history_end: date = date(2020, 1, 1)
    gc_interval: int = Field(default=200, ge=1)
    skip_empty_commits: bool = False
    checkout_retries: int = Field(default=5, ge=0)

    @classmethod
    def from_config(cls, config: Config) -> ReplaySettings:
        return cls(
            repository=config.vault.repository,
            history_start=config.vault.history_start,
            history_end=config.vault.history_end,
            gc_interval=config.git.gc_interval,
            skip_empty_commits=config.git.skip_empty_commits,
            checkout_retries=config.git.checkout_retries,
        )


class ReplayRun(BaseState):
    """Mutable state of one replay run."""

    branches: list[BranchMapping]
    branch_index: int = 0
    pending: list[VaultRevision] = Field(default_factory=list)
    position: int = 0
    processed: int = 0
    branch_started: float = 0.0
    bound_path: str | None = None
    commit_map: dict[int, str] = Field(default_factory=dict)

    @property
    def mapping(self) -> BranchMapping:
        return self.branches[self.branch_index]


@dataclass
class ReplayDeps:
    """Collaborators shared by every node."""

    vault: VaultClient
    git: GitRepository
    settings: ReplaySettings
    progress: ProgressCallback
    limit: int = 0

    @property
    def workdir(self) -> Path:
        return self.git.workdir


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def resume_version(git: GitRepository, branch: str) -> int:
    """Highest Vault version already replayed onto branch."""
    return provenance.decode(git.last_commit_message(branch))


def pending_revisions(
    vault: VaultClient,
    path: str,
    after: int,
    start: date,
    end: date,
) -> list[VaultRevision]:
    """Versions of path newer than after, oldest first."""
    history = vault.version_history(path, start, end)
    return sorted(
        (revision for revision in history if revision.version > after),
        key=lambda revision: revision.version,
    )


def checkout_branch(git: GitRepository, branch: str, retries: int) -> None:
    """Check out branch, verifying each attempt.

    Raises:
        CheckoutError: If the branch is still not current after
            1 + retries attempts
    """
    current = None
    for attempt in range(retries + 1):
        git.checkout(branch)
        current = git.current_branch()
        if current is not None and current.lower() == branch.lower():
            return
        logger.warn(
            f"Checkout of {branch} did not take (attempt {attempt + 1})",
            current=current,
        )
    raise CheckoutError(branch, retries + 1, current)


def commit_revision(
    git: GitRepository,
    revision: VaultRevision,
    message: str,
    skip_empty: bool,
) -> str | None:
    """Stage everything and commit it as the Vault author.

    Returns:
        The new commit id, or None when skip_empty is set and the
        work tree did not change
    """
    git.add_all()
    if skip_empty and not git.status():
        logger.info(
            f"Version {revision.txid} changes nothing, skipping commit"
        )
        return None
    return git.commit(revision.user or "unknown", revision.timestamp, message)


def _report(ctx: GraphRunContext[ReplayRun, ReplayDeps], event: ProgressEvent) -> bool:
    logger.debug(event.describe(), branch=event.branch)
    return bool(ctx.deps.progress(event))


@dataclass
class StartBranch(BaseNode[ReplayRun, ReplayDeps, bool]):
    """Find the resume point and pending versions of the next branch."""

    async def run(
        self, ctx: GraphRunContext[ReplayRun, ReplayDeps]
    ) -> ReplayRevision | FinishBranch | End[bool]:
        state, deps = ctx.state, ctx.deps
        if state.branch_index >= len(state.branches):
            return End(False)

        mapping = state.mapping
        state.branch_started = time.monotonic()
        state.position = 0
        state.processed = 0

        resume = resume_version(deps.git, mapping.branch)
        state.pending = pending_revisions(
            deps.vault,
            mapping.path,
            resume,
            deps.settings.history_start,
            deps.settings.history_end,
        )
        logger.info(
            f"Branch {mapping.branch}: {len(state.pending)} versions "
            f"of {mapping.path} after version {resume}"
        )

        if state.pending:
            deps.vault.set_working_folder(mapping.path, deps.workdir)
            state.bound_path = mapping.path
            checkout_branch(
                deps.git, mapping.branch, deps.settings.checkout_retries
            )

        event = ProgressEvent(
            phase=Phase.INIT,
            elapsed_ms=_elapsed_ms(state.branch_started),
            branch=mapping.branch,
        )
        if _report(ctx, event):
            logger.info("Stop requested after branch initialization")
            return End(True)

        if state.pending:
            return ReplayRevision()
        return FinishBranch()


def _next_step(
    ctx: GraphRunContext[ReplayRun, ReplayDeps],
) -> ReplayRevision | FinishBranch:
    state, limit = ctx.state, ctx.deps.limit
    if limit and state.processed >= limit:
        logger.info(
            f"Limit of {limit} versions reached on {state.mapping.branch}"
        )
        return FinishBranch()
    if state.position >= len(state.pending):
        return FinishBranch()
    return ReplayRevision()


@dataclass
class ReplayRevision(BaseNode[ReplayRun, ReplayDeps, bool]):
    """Fetch, clean up and commit the next pending version."""

    async def run(
        self, ctx: GraphRunContext[ReplayRun, ReplayDeps]
    ) -> ReplayRevision | Housekeeping | FinishBranch | End[bool]:
        state, deps = ctx.state, ctx.deps
        mapping = state.mapping
        revision = state.pending[state.position]
        started = time.monotonic()

        with logger.span(
            f"Replaying {mapping.path}@{revision.version}",
            branch=mapping.branch,
            txid=revision.txid,
        ):
            fetch_version(deps.vault, mapping.path, revision.version, deps.workdir)
            reconcile_structure(deps.vault, revision.txid, mapping.path, deps.workdir)
            sanitize_tree(deps.workdir)

            message = provenance.build_message(
                revision.comment,
                deps.settings.repository,
                mapping.path,
                revision.version,
                revision.txid,
            )
            commit = commit_revision(
                deps.git, revision, message, deps.settings.skip_empty_commits
            )
            if commit:
                state.commit_map[revision.txid] = commit

        state.position += 1
        state.processed += 1

        event = ProgressEvent(
            phase=Phase.REVISION,
            elapsed_ms=_elapsed_ms(started),
            revision=revision.version,
            branch=mapping.branch,
        )
        if _report(ctx, event):
            logger.info(f"Stop requested after version {revision.version}")
            return End(True)

        if state.processed % deps.settings.gc_interval == 0:
            return Housekeeping()
        return _next_step(ctx)


@dataclass
class Housekeeping(BaseNode[ReplayRun, ReplayDeps, bool]):
    """Periodic `git gc --auto`."""

    async def run(
        self, ctx: GraphRunContext[ReplayRun, ReplayDeps]
    ) -> ReplayRevision | FinishBranch | End[bool]:
        logger.debug(
            f"Interval {ctx.deps.settings.gc_interval} reached, "
            "running garbage collection"
        )
        started = time.monotonic()
        ctx.deps.git.gc()

        event = ProgressEvent(
            phase=Phase.GC,
            elapsed_ms=_elapsed_ms(started),
            branch=ctx.state.mapping.branch,
        )
        if _report(ctx, event):
            logger.info("Stop requested after garbage collection")
            return End(True)
        return _next_step(ctx)


@dataclass
class FinishBranch(BaseNode[ReplayRun, ReplayDeps, bool]):
    """Release the working folder and move to the next branch."""

    async def run(
        self, ctx: GraphRunContext[ReplayRun, ReplayDeps]
    ) -> StartBranch:
        state = ctx.state
        if state.bound_path is not None:
            release_working_folder(ctx.deps.vault, state.bound_path)
            state.bound_path = None

        logger.info(
            f"Branch {state.mapping.branch} done, "
            f"{state.processed} versions replayed"
        )
        state.branch_index += 1
        state.pending = []
        return StartBranch()


replay_graph = Graph(
    nodes=(StartBranch, ReplayRevision, Housekeeping, FinishBranch),
    name="replay",
)


def order_branches(
    mappings: list[BranchMapping], current: str | None
) -> list[BranchMapping]:
    """Put the checked-out branch first to save a checkout."""
    if current is None:
        return list(mappings)
    return sorted(
        mappings, key=lambda mapping: mapping.branch.lower() != current.lower()
    )


class ReplayEngine:
    """Replays Vault folders onto git branches and remembers which
    commit each Vault transaction became."""

    def __init__(
        self,
        vault: VaultClient,
        git: GitRepository,
        settings: ReplaySettings,
        progress: ProgressCallback | None = None,
    ):
        self.vault = vault
        self.git = git
        self.settings = settings
        self.progress = progress or never_cancel
        self.commit_map: dict[int, str] = {}

    async def replay(
        self, mappings: list[BranchMapping], limit: int = 0
    ) -> bool:
        """Replay every mapping in turn.

        Args:
            mappings: Branches to replay (at least one)
            limit: Maximum versions per branch in this run, 0 for all

        Returns:
            True if the progress callback stopped the run early
        """
        if not mappings:
            raise ValueError("at least one branch mapping is required")

        current = self.git.current_branch()
        run = ReplayRun(branches=order_branches(mappings, current))
        # Shared, so entries survive a failed run
        run.commit_map = self.commit_map
        deps = ReplayDeps(
            vault=self.vault,
            git=self.git,
            settings=self.settings,
            progress=self.progress,
            limit=limit,
        )
        logger.info(
            "Replaying branches: "
            + ", ".join(mapping.branch for mapping in run.branches),
            current_branch=current,
            limit=limit,
        )

        stopped = False
        started = time.monotonic()
        try:
            with vault_session(self.vault):
                try:
                    async with replay_graph.iter(
                        StartBranch(), state=run, deps=deps
                    ) as graph_run:
                        async for node in graph_run:
                            logger.trace(f"Node {type(node).__name__}")
                    stopped = graph_run.result.output
                finally:
                    if run.bound_path is not None:
                        release_working_folder(self.vault, run.bound_path)
                        run.bound_path = None
        finally:
            # Update server info for dumb clients
            try:
                self.git.update_server_info()
            except (CommandError, CommandTimeoutError) as e:
                logger.error("git update-server-info failed", error=str(e))
            self.progress(
                ProgressEvent(
                    phase=Phase.FINALIZE, elapsed_ms=_elapsed_ms(started)
                )
            )
        return stopped
