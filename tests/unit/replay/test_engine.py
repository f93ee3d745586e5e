"""Replay engine tests against a real git repository and a fake Vault."""

import asyncio

import pytest
from support import commit_count, git, requires_git, seed_branches

from vaultreplay.core.errors import CheckoutError, CommandTimeoutError
from vaultreplay.replay import provenance
from vaultreplay.replay.engine import (
    BranchMapping,
    ReplayEngine,
    ReplaySettings,
    order_branches,
    resume_version,
)
from vaultreplay.replay.progress import Phase
from vaultreplay.vault.models import RequestType, TransactionItem

pytestmark = requires_git

PROJ = BranchMapping(branch="main", path="$/proj")


def replay(vault, git_repo, mappings=(PROJ,), limit=0, progress=None, **settings):
    engine = ReplayEngine(
        vault,
        git_repo,
        ReplaySettings(repository="repo", **settings),
        progress,
    )
    stopped = asyncio.run(engine.replay(list(mappings), limit))
    return engine, stopped


def add_two_versions(vault):
    vault.add_version("$/proj", 1, 101, {"a.txt": "one\n"}, comment="init")
    vault.add_version("$/proj", 2, 102, {"a.txt": "two\n"}, comment="fix")


def test_one_commit_per_version_with_marker(vault, git_repo, repo_dir):
    add_two_versions(vault)

    engine, stopped = replay(vault, git_repo)

    assert stopped is False
    assert commit_count(repo_dir) == 2
    assert git(repo_dir, "log", "-1", "--format=%B", "main").splitlines() == [
        "fix",
        "[git-vault-id] repo$/proj@2/102",
    ]
    assert git(repo_dir, "log", "-1", "--format=%B", "main~1").splitlines() == [
        "init",
        "[git-vault-id] repo$/proj@1/101",
    ]
    assert (repo_dir / "a.txt").read_text() == "two\n"


def test_commit_map_and_author(vault, git_repo, repo_dir):
    add_two_versions(vault)

    engine, _ = replay(vault, git_repo)

    assert set(engine.commit_map) == {101, 102}
    assert git(repo_dir, "rev-parse", "main").startswith(engine.commit_map[102])
    assert git(repo_dir, "rev-parse", "main~1").startswith(engine.commit_map[101])
    assert git(repo_dir, "log", "-1", "--format=%an <%ae>") == (
        "jdoe <jdoe@localhost>"
    )


def test_session_and_binding_released(vault, git_repo):
    add_two_versions(vault)

    replay(vault, git_repo)

    assert vault.calls[0] == ("login",)
    assert vault.calls[-1] == ("logout",)
    assert vault.bindings == {}
    assert vault.count("set_working_folder") == 1
    assert vault.count("unset_working_folder") == 1


def test_second_run_creates_nothing(vault, git_repo, repo_dir):
    add_two_versions(vault)
    replay(vault, git_repo)
    vault.calls.clear()

    engine, stopped = replay(vault, git_repo)

    assert stopped is False
    assert commit_count(repo_dir) == 2
    assert engine.commit_map == {}
    assert vault.count("get_version") == 0
    assert vault.count("set_working_folder") == 0


def test_resume_after_limit(vault, git_repo, repo_dir):
    add_two_versions(vault)
    vault.add_version("$/proj", 3, 105, {"a.txt": "three\n"}, comment="more")

    engine, _ = replay(vault, git_repo, limit=2)
    assert commit_count(repo_dir) == 2
    assert set(engine.commit_map) == {101, 102}

    vault.calls.clear()
    engine, _ = replay(vault, git_repo)

    assert commit_count(repo_dir) == 3
    assert set(engine.commit_map) == {105}
    assert [call[2] for call in vault.calls if call[0] == "get_version"] == [3]


def test_versions_replayed_in_ascending_order(vault, git_repo, repo_dir):
    vault.add_version("$/proj", 4, 104, {"a.txt": "four\n"}, comment="third")
    vault.add_version("$/proj", 2, 102, {"a.txt": "two\n"}, comment="second")
    vault.add_version("$/proj", 1, 101, {"a.txt": "one\n"}, comment="first")

    replay(vault, git_repo)

    shas = git(repo_dir, "rev-list", "--reverse", "main").splitlines()
    messages = [
        git(repo_dir, "log", "-1", "--format=%B", sha).splitlines() for sha in shas
    ]
    assert [lines[0] for lines in messages] == ["first", "second", "third"]
    assert [provenance.decode(lines) for lines in messages] == [1, 2, 4]


def test_resume_marker_tracks_last_replayed_version(vault, git_repo):
    vault.add_version("$/proj", 1, 101, {"a.txt": "one\n"}, comment="first")
    vault.add_version("$/proj", 3, 103, {"a.txt": "three\n"}, comment="second")
    vault.add_version("$/proj", 7, 107, {"a.txt": "seven\n"}, comment="third")

    assert resume_version(git_repo, "main") == 0
    for limit, expected in ((1, 1), (1, 3), (1, 7), (1, 7)):
        replay(vault, git_repo, limit=limit)
        assert resume_version(git_repo, "main") == expected


def test_skip_empty_commits(vault, git_repo, repo_dir):
    vault.add_version("$/proj", 1, 101, {"a.txt": "same\n"}, comment="init")
    vault.add_version("$/proj", 2, 102, {"a.txt": "same\n"}, comment="noop")

    engine, _ = replay(vault, git_repo, skip_empty_commits=True)

    assert commit_count(repo_dir) == 1
    assert set(engine.commit_map) == {101}


def test_empty_versions_committed_by_default(vault, git_repo, repo_dir):
    vault.add_version("$/proj", 1, 101, {"a.txt": "same\n"}, comment="init")
    vault.add_version("$/proj", 2, 102, {"a.txt": "same\n"}, comment="noop")

    engine, _ = replay(vault, git_repo)

    assert commit_count(repo_dir) == 2
    assert set(engine.commit_map) == {101, 102}


def test_fetch_falls_back_to_explicit_folder(vault, git_repo, repo_dir):
    add_two_versions(vault)
    vault.fail_bound_versions = {2}

    replay(vault, git_repo)

    fetches = [call for call in vault.calls if call[0] == "get_version"]
    assert fetches == [
        ("get_version", "$/proj", 1, None),
        ("get_version", "$/proj", 2, None),
        ("get_version", "$/proj", 2, repo_dir),
    ]
    assert commit_count(repo_dir) == 2
    assert (repo_dir / "a.txt").read_text() == "two\n"


def test_fetch_timeout_is_fatal_and_cleans_up(vault, git_repo, repo_dir):
    add_two_versions(vault)
    vault.error_on_fetch = CommandTimeoutError("vault GETVERSION", 5)

    with pytest.raises(CommandTimeoutError):
        replay(vault, git_repo)

    assert vault.count("get_version") == 1
    assert vault.bindings == {}
    assert vault.calls[-1] == ("logout",)
    assert (repo_dir / ".git" / "info" / "refs").exists()


def test_structural_changes_removed(vault, git_repo, repo_dir):
    vault.add_version(
        "$/proj",
        1,
        101,
        {"a.txt": "a\n", "b.txt": "b\n", "sub/c.txt": "c\n"},
        comment="init",
    )
    vault.add_version("$/proj", 2, 102, {"a.txt": "a2\n"}, comment="tidy")
    vault.details[102] = [
        TransactionItem(path="$/proj/b.txt", request_type=RequestType.DELETE),
        TransactionItem(path="$/proj/sub", request_type=RequestType.RENAME),
        TransactionItem(path="$/projX/a.txt", request_type=RequestType.DELETE),
        TransactionItem(path="$/proj/a.txt", request_type=2),
    ]

    replay(vault, git_repo)

    tree = git(repo_dir, "ls-tree", "-r", "--name-only", "main").splitlines()
    assert tree == ["a.txt"]
    assert (repo_dir / "a.txt").read_text() == "a2\n"


def test_project_files_sanitized_before_commit(vault, git_repo, repo_dir):
    sln = (
        "Global\n"
        "\tGlobalSection(SourceCodeControl) = preSolution\n"
        "\t\tSccNumberOfProjects = 1\n"
        "\tEndGlobalSection\n"
        "EndGlobal\n"
    )
    vault.add_version("$/proj", 1, 101, {"app.sln": sln}, comment="init")

    replay(vault, git_repo)

    committed = git(repo_dir, "show", "main:app.sln")
    assert "SourceCodeControl" not in committed
    assert "EndGlobal" in committed


def test_progress_events_and_housekeeping(vault, git_repo):
    add_two_versions(vault)
    events = []

    def progress(event):
        events.append(event)
        return False

    replay(vault, git_repo, progress=progress, gc_interval=1)

    assert [event.phase for event in events] == [
        Phase.INIT,
        Phase.REVISION,
        Phase.GC,
        Phase.REVISION,
        Phase.GC,
        Phase.FINALIZE,
    ]
    assert [event.revision for event in events if event.phase is Phase.REVISION] == [1, 2]
    assert events[0].branch == "main"


def test_branches_start_with_current(vault, git_repo, repo_dir):
    seed_branches(repo_dir, "dev", "rel")
    vault.add_version("$/proj/trunk", 1, 101, {"t.txt": "t\n"})
    vault.add_version("$/proj/dev", 1, 102, {"d.txt": "d\n"})
    vault.add_version("$/proj/rel", 1, 103, {"r.txt": "r\n"})
    mappings = [
        BranchMapping(branch="dev", path="$/proj/dev"),
        BranchMapping(branch="main", path="$/proj/trunk"),
        BranchMapping(branch="rel", path="$/proj/rel"),
    ]

    engine, _ = replay(vault, git_repo, mappings)

    histories = [call[1] for call in vault.calls if call[0] == "version_history"]
    assert histories == ["$/proj/trunk", "$/proj/dev", "$/proj/rel"]
    for branch in ("main", "dev", "rel"):
        assert commit_count(repo_dir, branch) == 2
    assert git(repo_dir, "ls-tree", "--name-only", "dev").splitlines() == [
        ".gitignore",
        "d.txt",
    ]
    assert set(engine.commit_map) == {101, 102, 103}
    assert vault.bindings == {}


def test_cancel_during_second_branch(vault, git_repo, repo_dir):
    seed_branches(repo_dir, "dev", "rel")
    vault.add_version("$/proj/trunk", 1, 101, {"t.txt": "t\n"})
    vault.add_version("$/proj/dev", 1, 102, {"d.txt": "d\n"})
    vault.add_version("$/proj/rel", 1, 103, {"r.txt": "r\n"})
    mappings = [
        BranchMapping(branch="main", path="$/proj/trunk"),
        BranchMapping(branch="dev", path="$/proj/dev"),
        BranchMapping(branch="rel", path="$/proj/rel"),
    ]
    events = []

    def progress(event):
        events.append(event)
        return event.phase is Phase.INIT and event.branch == "dev"

    engine, stopped = replay(vault, git_repo, mappings, progress=progress)

    assert stopped is True
    assert commit_count(repo_dir, "main") == 2
    assert commit_count(repo_dir, "dev") == 1
    assert commit_count(repo_dir, "rel") == 1
    assert ("version_history", "$/proj/rel") not in vault.calls
    assert set(engine.commit_map) == {101}
    assert vault.bindings == {}
    assert vault.calls[-1] == ("logout",)
    assert events[-1].phase is Phase.FINALIZE


def test_cancel_on_first_revision_of_second_branch(vault, git_repo, repo_dir):
    seed_branches(repo_dir, "dev", "rel")
    vault.add_version("$/proj/trunk", 1, 101, {"t.txt": "t\n"})
    vault.add_version("$/proj/dev", 1, 102, {"d.txt": "d\n"})
    vault.add_version("$/proj/dev", 2, 104, {"d.txt": "d2\n"})
    vault.add_version("$/proj/rel", 1, 103, {"r.txt": "r\n"})
    mappings = [
        BranchMapping(branch="main", path="$/proj/trunk"),
        BranchMapping(branch="dev", path="$/proj/dev"),
        BranchMapping(branch="rel", path="$/proj/rel"),
    ]

    def progress(event):
        return event.phase is Phase.REVISION and event.branch == "dev"

    engine, stopped = replay(vault, git_repo, mappings, progress=progress)

    assert stopped is True
    assert commit_count(repo_dir, "dev") == 2
    assert set(engine.commit_map) == {101, 102}
    assert ("version_history", "$/proj/rel") not in vault.calls
    assert vault.bindings == {}
    assert vault.calls[-1] == ("logout",)


def test_checkout_failure_raises(vault, git_repo, repo_dir):
    seed_branches(repo_dir)
    vault.add_version("$/ghost", 1, 101, {"g.txt": "g\n"})

    with pytest.raises(CheckoutError) as exc_info:
        replay(
            vault,
            git_repo,
            [BranchMapping(branch="ghost", path="$/ghost")],
            checkout_retries=1,
        )

    assert exc_info.value.attempts == 2
    assert exc_info.value.current == "main"
    assert vault.count("get_version") == 0
    assert vault.bindings == {}
    assert vault.calls[-1] == ("logout",)


def test_cleanup_failure_does_not_mask_checkout_error(vault, git_repo, repo_dir):
    seed_branches(repo_dir)
    vault.add_version("$/ghost", 1, 101, {"g.txt": "g\n"})
    git_repo.templates["update_server_info"] = "{git} no-such-subcommand"
    events = []

    with pytest.raises(CheckoutError):
        replay(
            vault,
            git_repo,
            [BranchMapping(branch="ghost", path="$/ghost")],
            progress=lambda event: events.append(event) or False,
            checkout_retries=0,
        )

    assert vault.calls[-1] == ("logout",)
    assert events[-1].phase is Phase.FINALIZE


def test_requires_a_mapping(vault, git_repo):
    with pytest.raises(ValueError):
        replay(vault, git_repo, [])


def test_order_branches_is_case_insensitive():
    mappings = [
        BranchMapping(branch="dev", path="$/dev"),
        BranchMapping(branch="Main", path="$/main"),
    ]

    ordered = order_branches(mappings, "main")

    assert [mapping.branch for mapping in ordered] == ["Main", "dev"]
    assert order_branches(mappings, None) == mappings
