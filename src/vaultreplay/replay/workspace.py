"""Bringing the working folder to the state of one Vault version."""

from __future__ import annotations

import shutil
from pathlib import Path, PurePosixPath

from vaultreplay.core.errors import CommandTimeoutError
from vaultreplay.core.log import logger
from vaultreplay.vault.client import VaultClient
from vaultreplay.vault.models import FETCH_OPTIONS


def fetch_version(
    vault: VaultClient, path: str, version: int, workdir: Path
) -> None:
    """Fetch a full snapshot of path@version into workdir.

    The bound working folder is tried first. That fails when a parent
    folder was renamed in Vault ("has no working folder set"), in
    which case the version is fetched to workdir directly. A failure
    of the second attempt propagates.
    """
    try:
        vault.get_version(path, version, FETCH_OPTIONS)
    except CommandTimeoutError:
        raise
    except Exception as e:
        logger.error(
            f"Fetching {path}@{version} into the working folder failed, "
            "retrying outside the working folder",
            error=str(e),
        )
        vault.get_version(path, version, FETCH_OPTIONS, local_dir=workdir)


def relative_item_path(item_path: str, branch_path: str) -> PurePosixPath | None:
    """Path of a Vault item relative to the branch folder.

    Returns None for items outside the branch, the branch folder
    itself, and paths that would escape the working folder.
    """
    root = branch_path.rstrip("/")
    if not item_path.lower().startswith(root.lower() + "/"):
        return None
    relative = PurePosixPath(item_path[len(root) + 1:].strip("/"))
    if not relative.parts or ".." in relative.parts:
        return None
    if relative.parts[0] == ".git":
        return None
    return relative


def reconcile_structure(
    vault: VaultClient, txid: int, branch_path: str, workdir: Path
) -> list[Path]:
    """Remove paths deleted, moved or renamed by a transaction.

    GETVERSION does not reliably remove them from the working folder,
    so the old locations are deleted by hand. Permission errors are
    ignored.

    Returns:
        The paths that were removed
    """
    removed = []
    for item in vault.transaction_detail(txid):
        if not item.is_structural:
            continue
        relative = relative_item_path(item.path, branch_path)
        if relative is None:
            continue

        target = workdir.joinpath(*relative.parts)
        try:
            if target.is_file() or target.is_symlink():
                target.unlink()
            elif target.is_dir():
                shutil.rmtree(target)
            else:
                continue
        except PermissionError as e:
            logger.debug(f"Could not remove {target}", error=str(e))
            continue
        logger.debug(
            f"Removed {relative}",
            txid=txid,
            request_type=item.request_type,
        )
        removed.append(target)
    return removed
