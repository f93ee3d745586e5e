"""Remove source-control bindings from Visual Studio project files.

Projects checked into Vault carry SCC bindings that point at the old
server. Each strategy edits one file in place and returns the elapsed
milliseconds:

- .sln: drop the GlobalSection(SourceCodeControl) block
- .csproj: drop every Scc* element and attribute
- .vdproj: drop every "Scc... line
"""

from __future__ import annotations

import codecs
import io
import os
import re
import time
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterator
from pathlib import Path

from vaultreplay.core.log import logger

SCC_PREFIX = "Scc"
SLN_SECTION_START = "GlobalSection(SourceCodeControl)"
SLN_SECTION_END = "EndGlobalSection"
VDPROJ_PREFIX = '"Scc'

# '&' that does not start an entity or character reference
_BARE_AMPERSAND = re.compile(
    r"&(?!(?:[A-Za-z_][\w.-]*|#[0-9]+|#x[0-9A-Fa-f]+);)"
)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _read_lines(path: Path) -> tuple[list[str], bool]:
    """Read a text file keeping line endings and undecodable bytes."""
    raw = path.read_bytes()
    bom = raw.startswith(codecs.BOM_UTF8)
    text = raw.decode("utf-8-sig", errors="surrogateescape")
    return text.splitlines(keepends=True), bom


def _write_lines(path: Path, lines: list[str], bom: bool) -> None:
    data = "".join(lines).encode("utf-8", errors="surrogateescape")
    path.write_bytes((codecs.BOM_UTF8 if bom else b"") + data)


def sanitize_sln(path: Path) -> int:
    """Remove the first SourceCodeControl global section.

    Nothing is written unless both the start and end lines are found.
    """
    started = time.monotonic()
    lines, bom = _read_lines(path)

    begin = end = None
    for index, line in enumerate(lines):
        stripped = line.strip()
        if begin is None:
            if stripped.startswith(SLN_SECTION_START):
                begin = index
        elif stripped.startswith(SLN_SECTION_END):
            end = index
            break

    if begin is not None and end is not None:
        del lines[begin:end + 1]
        _write_lines(path, lines, bom)
        logger.debug("Removed SCC section", file=str(path))
    return _elapsed_ms(started)


def _local_name(name: str) -> str:
    """Strip an ElementTree '{namespace}' prefix."""
    return name.rpartition("}")[2]


def _strip_scc(root: ET.Element) -> int:
    """Delete Scc* elements and attributes until none remain."""
    removed = 0
    while True:
        parents = {child: parent for parent in root.iter() for child in parent}
        target = next(
            (
                element for element in root.iter()
                if isinstance(element.tag, str)
                and element is not root
                and _local_name(element.tag).startswith(SCC_PREFIX)
            ),
            None,
        )
        if target is None:
            break
        parents[target].remove(target)
        removed += 1

    for element in root.iter():
        for attribute in [
            name for name in element.attrib
            if _local_name(name).startswith(SCC_PREFIX)
        ]:
            del element.attrib[attribute]
            removed += 1
    return removed


def sanitize_csproj(path: Path) -> int:
    """Remove Scc* elements and attributes from an MSBuild project.

    Bare ampersands are escaped before parsing because old project
    files often contain them. The file is only rewritten when
    something was removed. Unreadable or malformed files are logged
    and left alone.
    """
    started = time.monotonic()
    try:
        raw = path.read_bytes()
        text = raw.decode("utf-8-sig")
        text = _BARE_AMPERSAND.sub("&amp;", text)

        for _, (prefix, uri) in ET.iterparse(
            io.StringIO(text), events=("start-ns",)
        ):
            ET.register_namespace(prefix, uri)

        parser = ET.XMLParser(
            target=ET.TreeBuilder(insert_comments=True, insert_pis=True)
        )
        parser.feed(text)
        root = parser.close()

        if _strip_scc(root):
            tree = ET.ElementTree(root)
            tree.write(
                path,
                encoding="utf-8",
                xml_declaration=text.lstrip().startswith("<?xml"),
            )
            logger.debug("Removed SCC bindings", file=str(path))
    except (ET.ParseError, OSError, UnicodeDecodeError, ValueError) as e:
        logger.error(f"Failed to remove SCC bindings from {path}", error=str(e))
    return _elapsed_ms(started)


def sanitize_vdproj(path: Path) -> int:
    """Drop every line whose trimmed text starts with "Scc."""
    started = time.monotonic()
    lines, bom = _read_lines(path)
    kept = [line for line in lines if not line.strip().startswith(VDPROJ_PREFIX)]
    _write_lines(path, kept, bom)
    return _elapsed_ms(started)


SANITIZERS: dict[str, Callable[[Path], int]] = {
    ".sln": sanitize_sln,
    ".csproj": sanitize_csproj,
    ".vdproj": sanitize_vdproj,
}


def project_files(root: Path) -> Iterator[Path]:
    """Project files under root, skipping .git and Vault temp files."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name != ".git")
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if path.suffix.lower() not in SANITIZERS or "~" in name:
                continue
            if not path.is_file():
                continue
            yield path


def sanitize_tree(root: Path) -> int:
    """Run the matching strategy over every project file under root.

    Returns:
        Total elapsed milliseconds
    """
    elapsed = 0
    for path in project_files(root):
        elapsed += SANITIZERS[path.suffix.lower()](path)
    return elapsed
