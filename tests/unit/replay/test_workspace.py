"""Working folder helpers: path mapping and structural cleanup."""

from pathlib import PurePosixPath

from vaultreplay.replay.workspace import reconcile_structure, relative_item_path
from vaultreplay.vault.models import RequestType, TransactionItem


def test_relative_item_path():
    assert relative_item_path("$/proj/src/a.cs", "$/proj") == PurePosixPath(
        "src/a.cs"
    )
    assert relative_item_path("$/PROJ/a.cs", "$/proj/") == PurePosixPath("a.cs")


def test_relative_item_path_rejects_outside_items():
    assert relative_item_path("$/project2/a.cs", "$/proj") is None
    assert relative_item_path("$/other/a.cs", "$/proj") is None
    assert relative_item_path("$/proj", "$/proj") is None
    assert relative_item_path("$/proj/../etc/passwd", "$/proj") is None
    assert relative_item_path("$/proj/.git/config", "$/proj") is None


def test_reconcile_structure_removes_files_and_folders(vault, tmp_path):
    (tmp_path / "keep.txt").write_text("k")
    (tmp_path / "gone.txt").write_text("g")
    (tmp_path / "old").mkdir()
    (tmp_path / "old" / "x.txt").write_text("x")
    vault.details[5] = [
        TransactionItem(path="$/proj/gone.txt", request_type=RequestType.DELETE),
        TransactionItem(path="$/proj/old", request_type=RequestType.MOVE),
        TransactionItem(path="$/proj/keep.txt", request_type=1),
        TransactionItem(path="$/proj/never.txt", request_type=RequestType.DELETE),
    ]

    removed = reconcile_structure(vault, 5, "$/proj", tmp_path)

    assert removed == [tmp_path / "gone.txt", tmp_path / "old"]
    assert (tmp_path / "keep.txt").exists()
    assert not (tmp_path / "old").exists()
