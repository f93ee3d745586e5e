"""Source repository access."""

from vaultreplay.vault.client import (
    VaultClient,
    release_working_folder,
    vault_session,
    working_folder,
)
from vaultreplay.vault.command_client import VaultCommandClient
from vaultreplay.vault.models import (
    FETCH_OPTIONS,
    GetOptions,
    RequestType,
    TransactionItem,
    VaultLabel,
    VaultRevision,
)

__all__ = [
    "VaultClient",
    "VaultCommandClient",
    "vault_session",
    "working_folder",
    "release_working_folder",
    "VaultRevision",
    "TransactionItem",
    "RequestType",
    "VaultLabel",
    "GetOptions",
    "FETCH_OPTIONS",
]
