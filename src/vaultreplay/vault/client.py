"""Vault client protocol and scoped session helpers."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Protocol, runtime_checkable

from vaultreplay.core.log import logger
from vaultreplay.vault.models import (
    GetOptions,
    TransactionItem,
    VaultLabel,
    VaultRevision,
)


@runtime_checkable
class VaultClient(Protocol):
    """Operations the replay needs from the source system.

    Login state and working-folder bindings live in the client (and
    on the Vault side), so one client must not be shared by two runs.
    """

    def login(self) -> None:
        ...

    def logout(self) -> None:
        ...

    def version_history(
        self, path: str, start: date, end: date
    ) -> Sequence[VaultRevision]:
        """Versions of path within [start, end), ascending."""
        ...

    def get_version(
        self,
        path: str,
        version: int,
        options: GetOptions,
        local_dir: Path | None = None,
    ) -> None:
        """Fetch a full snapshot of path at version.

        With local_dir None the snapshot goes to the folder bound by
        set_working_folder(); otherwise it goes to local_dir without
        using any binding.
        """
        ...

    def set_working_folder(self, path: str, local_dir: Path) -> None:
        ...

    def unset_working_folder(self, path: str) -> None:
        ...

    def working_folders(self) -> dict[str, Path]:
        """Current bindings, Vault folder -> local folder."""
        ...

    def transaction_detail(self, txid: int) -> Sequence[TransactionItem]:
        ...

    def labels(self, root: str) -> Sequence[VaultLabel]:
        """All labels at or below root, including inherited ones."""
        ...


@contextmanager
def vault_session(client: VaultClient) -> Iterator[VaultClient]:
    """Log in for the duration of the block; always log out."""
    client.login()
    try:
        yield client
    finally:
        client.logout()


def release_working_folder(client: VaultClient, path: str) -> bool:
    """Remove the binding for path, whatever case it was stored in.

    Returns:
        True if a binding was found and removed
    """
    for bound in client.working_folders():
        if bound.lower() == path.lower():
            client.unset_working_folder(bound)
            logger.debug("Released working folder", path=bound)
            return True
    return False


@contextmanager
def working_folder(
    client: VaultClient, path: str, local_dir: Path
) -> Iterator[Path]:
    """Bind path to local_dir for the duration of the block."""
    client.set_working_folder(path, local_dir)
    try:
        yield local_dir
    finally:
        release_working_folder(client, path)


__all__ = [
    "VaultClient",
    "vault_session",
    "working_folder",
    "release_working_folder",
]
