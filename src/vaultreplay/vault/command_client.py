"""Vault client backed by the Vault command-line client.

Every operation renders a template from config.commands["vault"],
runs it through Runner and parses the XML document the client prints:

    <vault>
      <history>
        <item version="3" txid="412" date="2005-03-01T10:20:30"
              user="jdoe" comment="fix build" />
      </history>
      <result success="yes" />
    </vault>
"""

from __future__ import annotations

import shlex
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from datetime import date, datetime
from pathlib import Path

from vaultreplay.core.config import VaultConfig
from vaultreplay.core.errors import VaultError
from vaultreplay.core.log import logger
from vaultreplay.core.runner import Runner
from vaultreplay.vault.models import (
    GetOptions,
    RequestType,
    TransactionItem,
    VaultLabel,
    VaultRevision,
)

# Formats seen in the client's date attributes, tried in order
_DATE_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)

_ACTION_TYPES = {
    "delete": RequestType.DELETE,
    "deleted": RequestType.DELETE,
    "move": RequestType.MOVE,
    "moved": RequestType.MOVE,
    "rename": RequestType.RENAME,
    "renamed": RequestType.RENAME,
}


def parse_vault_date(value: str) -> datetime:
    """Parse a date attribute from client output.

    Raises:
        VaultError: If no known format matches
    """
    value = value.strip()
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise VaultError(f"Unrecognized date in Vault output: {value!r}")


def parse_document(text: str, command: str = "") -> ET.Element:
    """Parse client output and check its <result> element.

    Anything printed before the XML document (banners, progress) is
    skipped.

    Raises:
        VaultError: If the output is not XML or reports failure
    """
    start = text.find("<vault")
    if start < 0:
        raise VaultError(f"No XML in Vault output of: {command}\n{text}")
    try:
        root = ET.fromstring(text[start:])
    except ET.ParseError as e:
        raise VaultError(f"Malformed Vault output of {command}: {e}") from e

    result = root.find("result")
    if result is not None:
        success = result.get("success", "yes").lower()
        if success not in ("yes", "true"):
            error = root.findtext("error") or result.text or "unknown error"
            raise VaultError(f"Vault command failed: {command}: {error.strip()}")
    return root


def _int_attr(item: ET.Element, *names: str, default: int | None = None) -> int:
    for name in names:
        value = item.get(name)
        if value is not None and value.strip():
            return int(value)
    if default is not None:
        return default
    raise VaultError(
        f"Missing attribute {'/'.join(names)} in <{item.tag}>"
    )


class VaultCommandClient:
    """VaultClient implementation that shells out to the Vault CLI."""

    def __init__(
        self,
        config: VaultConfig,
        templates: Mapping[str, str],
        runner: Runner | None = None,
    ):
        """
        Args:
            config: Server, credentials and executable
            templates: The "vault" section of config.commands
            runner: Command runner (a new one by default)
        """
        self.config = config
        self.templates = dict(templates)
        self.runner = runner or Runner()

    def _render(self, name: str, **values) -> str:
        try:
            template = self.templates[name]
        except KeyError as e:
            raise VaultError(f"No Vault command template named '{name}'") from e
        quoted = {key: shlex.quote(str(value)) for key, value in values.items()}
        return template.format(vault=self.config.command, **quoted)

    def _run(self, name: str, **values) -> ET.Element:
        command = self._render(name, **values)
        result = self.runner.execute(command, timeout=self.config.timeout)
        if not result.ok:
            raise VaultError(
                f"Vault command exited with {result.exited}: "
                f"{self._redact(command)}\n{result.stderr or result.stdout}"
            )
        return parse_document(result.stdout, self._redact(command))

    def _redact(self, command: str) -> str:
        if self.config.password:
            return command.replace(shlex.quote(self.config.password), "***")
        return command

    def login(self) -> None:
        logger.info(
            "Logging in to Vault",
            url=self.config.url,
            repository=self.config.repository,
        )
        self._run(
            "remember_login",
            url=self.config.url,
            host=self.config.server,
            user=self.config.user,
            password=self.config.password,
            repository=self.config.repository,
        )

    def logout(self) -> None:
        logger.info("Logging out of Vault")
        self._run("forget_login")

    def version_history(
        self, path: str, start: date, end: date
    ) -> list[VaultRevision]:
        root = self._run(
            "version_history",
            path=path,
            start=start.isoformat(),
            end=end.isoformat(),
        )
        revisions = {}
        for item in root.iter("item"):
            revision = VaultRevision(
                version=_int_attr(item, "version"),
                txid=_int_attr(item, "txid", "txId"),
                comment=item.get("comment", ""),
                user=item.get("user", item.get("userlogin", "")),
                timestamp=parse_vault_date(
                    item.get("date", item.get("txdate", ""))
                ),
            )
            revisions[revision.version] = revision
        return [revisions[v] for v in sorted(revisions)]

    def get_version(
        self,
        path: str,
        version: int,
        options: GetOptions,
        local_dir: Path | None = None,
    ) -> None:
        # The templates encode the one supported option set
        if options != GetOptions():
            raise VaultError(f"Unsupported get options: {options}")
        if local_dir is None:
            self._run("get_version", path=path, version=version)
        else:
            self._run(
                "get_version_to",
                path=path,
                version=version,
                local_dir=local_dir,
            )

    def set_working_folder(self, path: str, local_dir: Path) -> None:
        self._run("set_working_folder", path=path, local_dir=local_dir)

    def unset_working_folder(self, path: str) -> None:
        self._run("unset_working_folder", path=path)

    def working_folders(self) -> dict[str, Path]:
        root = self._run("list_working_folders")
        return {
            item.get("reposfolder", ""): Path(item.get("localfolder", ""))
            for item in root.iter("workingfolder")
            if item.get("reposfolder")
        }

    def transaction_detail(self, txid: int) -> list[TransactionItem]:
        root = self._run("tx_detail", txid=txid)
        items = []
        for item in root.iter("item"):
            path = item.get("path") or item.get("name") or ""
            if item.get("type", "").strip().isdigit():
                request_type = int(item.get("type"))
            else:
                action = item.get("actionString", item.get("action", ""))
                request_type = _ACTION_TYPES.get(action.strip().lower(), 0)
            items.append(TransactionItem(path=path, request_type=request_type))
        return items

    def labels(self, root: str) -> list[VaultLabel]:
        document = self._run("labels", path=root)
        return [
            VaultLabel(
                txid=_int_attr(item, "txid", "txId"),
                name=item.get("label", item.get("name", "")),
                comment=item.get("comment", ""),
            )
            for item in document.iter("label")
        ]
