"""Provenance markers embedded in destination commit messages.

The last line of every replayed commit message records where the
commit came from:

    [git-vault-id] <repository><vault folder>@<version>/<txid>

e.g. ``[git-vault-id] repo$/proj@2/102``. The marker on a branch's tip
is the only resume checkpoint: the next run continues after the
version it names.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import NamedTuple

MARKER = "[git-vault-id]"


class Provenance(NamedTuple):
    """Decoded provenance marker."""

    source: str
    version: int
    txid: int


def encode(root: str, path: str, version: int, txid: int) -> str:
    """Build the marker line for one revision."""
    return f"{MARKER} {root}{path}@{version}/{txid}"


def build_message(
    comment: str, root: str, path: str, version: int, txid: int
) -> str:
    """Commit message: the Vault comment followed by the marker line."""
    return f"{comment or ''}\n{encode(root, path, version, txid)}\n"


def parse(line: str) -> Provenance | None:
    """Decode one marker line, or None if it is not a valid marker."""
    _, found, rest = line.rpartition(MARKER)
    if not found:
        return None
    source, at, version_txid = rest.strip().rpartition("@")
    if not at:
        return None
    version, slash, txid = version_txid.partition("/")
    try:
        return Provenance(source, int(version), int(txid) if slash else 0)
    except ValueError:
        return None


def decode(message_lines: Sequence[str]) -> int:
    """Version recorded in the last line of a commit message.

    Trailing blank lines are ignored. A missing or malformed marker
    means nothing has been replayed yet, so it decodes to 0.
    """
    lines = [line for line in message_lines if line.strip()]
    if not lines:
        return 0
    _, found, rest = lines[-1].rpartition(MARKER)
    if not found:
        return 0
    version = rest.rpartition("@")[2].partition("/")[0].strip()
    try:
        return int(version)
    except ValueError:
        return 0


def find(message_lines: Sequence[str]) -> Provenance | None:
    """The last valid marker anywhere in a message."""
    for line in reversed(message_lines):
        marker = parse(line)
        if marker is not None:
            return marker
    return None
