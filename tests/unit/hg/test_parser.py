"""Unit tests for Mercurial output parsers."""

from __future__ import annotations

from revscope.hg.parser import (
    parse_diff_stats,
    parse_log_chunk,
    parse_resolve_list,
    parse_status_lines,
)
from revscope.vcs.models import FileStats

NODE = "c" * 40
PARENT = "a" * 40
NULL = "0" * 40


def changeset(files: list[str], *, parents: str = f"{PARENT} {NULL}", subject: str = "  Move file"):
    return [
        f"{NODE} {parents}",
        "Ada",
        "1700000000 -3600",
        "3 days ago",
        "  tip default",
        "  ",
        subject,
        *files,
    ]


class TestParseLogChunk:
    """Tests for parse_log_chunk."""

    def test_header(self) -> None:
        record = parse_log_chunk(changeset(["M\tREADME"]))

        assert record.valid
        commit = record.header.commit
        assert commit.hash == NODE
        assert commit.parents == (PARENT,)
        assert commit.time == 1700000000
        assert commit.time_offset == 3600
        assert commit.ref_names == "tip default"
        assert commit.subject == "Move file"
        assert record.header.left_hash == PARENT

    def test_rename_reconstructed(self) -> None:
        record = parse_log_chunk(
            changeset(["C\told.txt\tnew.txt", "A\tnew.txt", "D\told.txt", "M\tz.txt"])
        )

        assert [(f.status, f.path, f.oldpath) for f in record.files] == [
            ("R", "new.txt", "old.txt"),
            ("M", "z.txt", None),
        ]

    def test_copy_keeps_source(self) -> None:
        record = parse_log_chunk(changeset(["C\tbase.py\tcopy.py", "A\tcopy.py"]))
        assert [(f.status, f.path, f.oldpath) for f in record.files] == [
            ("C", "copy.py", "base.py"),
        ]

    def test_root_changeset(self) -> None:
        record = parse_log_chunk(changeset(["A\tREADME"], parents=f"{NULL} {NULL}"))
        assert record.header.commit.parents == ()
        assert record.header.left_hash is None

    def test_merge(self) -> None:
        other = "b" * 40
        record = parse_log_chunk(changeset([], parents=f"{PARENT} {other}"))
        assert record.is_merge
        assert record.files == ()

    def test_empty_description(self) -> None:
        record = parse_log_chunk(changeset([], subject="  "))
        assert record.header.commit.subject == ""

    def test_truncated(self) -> None:
        record = parse_log_chunk(changeset([])[:4])
        assert record.header is None
        assert not record.valid

    def test_unexpected_file_line(self) -> None:
        record = parse_log_chunk(changeset(["X\tweird"]))
        assert record.header is not None
        assert not record.valid


class TestParseStatusLines:
    """Tests for parse_status_lines."""

    def test_statuses(self) -> None:
        files = parse_status_lines(
            ["M a.txt", "A b.txt", "R gone.txt", "! missing.txt", "? new.txt"]
        )
        assert [(f.status, f.path) for f in files] == [
            ("M", "a.txt"),
            ("A", "b.txt"),
            ("D", "gone.txt"),
            ("D", "missing.txt"),
            ("?", "new.txt"),
        ]

    def test_rename(self) -> None:
        files = parse_status_lines(["A new name.txt", "  old name.txt", "R old name.txt"])
        assert [(f.status, f.path, f.oldpath) for f in files] == [
            ("R", "new name.txt", "old name.txt"),
        ]

    def test_copy(self) -> None:
        files = parse_status_lines(["A copy.txt", "  base.txt"])
        assert [(f.status, f.oldpath) for f in files] == [("C", "base.txt")]

    def test_clean_and_ignored_skipped(self) -> None:
        assert parse_status_lines(["C clean.txt", "I build.o", ""]) == []


class TestParseDiffStats:
    """Tests for parse_diff_stats."""

    def test_counts(self) -> None:
        diff = "\n".join(
            [
                "diff --git a/a.txt b/a.txt",
                "--- a/a.txt",
                "+++ b/a.txt",
                "@@ -1,2 +1,2 @@",
                " keep",
                "-old line",
                "+new line",
                "diff --git a/b.txt b/b.txt",
                "--- /dev/null",
                "+++ b/b.txt",
                "@@ -0,0 +1,2 @@",
                "+one",
                "+two",
                "",
            ]
        )

        assert parse_diff_stats(diff) == {"a.txt": FileStats(1, 1), "b.txt": FileStats(2, 0)}

    def test_empty(self) -> None:
        assert parse_diff_stats("") == {}
        assert parse_diff_stats("\n") == {}


def test_parse_resolve_list() -> None:
    assert parse_resolve_list(["U merge.txt", "R done.txt", "U dir/other.txt", ""]) == [
        "merge.txt",
        "dir/other.txt",
    ]
