"""Data returned by, and passed to, the Vault source system."""

from __future__ import annotations

from datetime import datetime
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field


class VaultRevision(BaseModel):
    """One version of a Vault folder."""

    model_config = ConfigDict(frozen=True)

    version: int = Field(description="Folder version, increasing per path")
    txid: int = Field(description="Repository-wide transaction id")
    comment: str = ""
    user: str = ""
    timestamp: datetime


class RequestType(IntEnum):
    """Vault transaction request types that change the tree shape."""

    DELETE = 9
    MOVE = 12
    RENAME = 15


class TransactionItem(BaseModel):
    """One item of a Vault transaction."""

    model_config = ConfigDict(frozen=True)

    path: str
    request_type: int

    @property
    def is_structural(self) -> bool:
        """True for deletes, moves and renames."""
        return self.request_type in set(RequestType)


class VaultLabel(BaseModel):
    """A label applied to a transaction."""

    model_config = ConfigDict(frozen=True)

    txid: int
    name: str
    comment: str = ""


class GetOptions(BaseModel):
    """Options for fetching a version into a local folder."""

    model_config = ConfigDict(frozen=True)

    overwrite: bool = True
    make_writable: bool = True
    override_eol: bool = False
    remove_deleted: bool = True
    file_time_current: bool = True
    recursive: bool = True


# The one fetch policy used for every revision
FETCH_OPTIONS = GetOptions()


__all__ = [
    "VaultRevision",
    "RequestType",
    "TransactionItem",
    "VaultLabel",
    "GetOptions",
    "FETCH_OPTIONS",
]
