"""Tests for ignore pattern loading and matching."""

from __future__ import annotations

from pathlib import Path

import pytest

from lsvault_sync.sync.ignore import (
    DEFAULT_IGNORE_PATTERNS,
    IGNORE_FILE_NAME,
    IgnoreMatcher,
    load_ignore_file,
    resolve_ignore_patterns,
    should_ignore,
)

DEFAULTS = list(DEFAULT_IGNORE_PATTERNS)


# ---------------------------------------------------------------------------
# should_ignore
# ---------------------------------------------------------------------------


class TestShouldIgnoreDefaults:
    """Default patterns."""

    @pytest.mark.parametrize(
        "path",
        [
            ".git/config",
            ".svn/entries",
            "node_modules/pkg/readme.md",
            ".DS_Store",
            "notes/.DS_Store",
            "notes/Thumbs.db",
            "draft.tmp",
            ".lsvault/state.json",
            ".lsvault-ignore",
            "a.conflicted.remote.2026-01-01T00-00-00.md",
        ],
    )
    def test_ignored(self, path):
        assert should_ignore(path, DEFAULTS)

    @pytest.mark.parametrize(
        "path",
        ["notes/keep.md", "README.md", "git/notes.md", "gitlog.md"],
    )
    def test_not_ignored(self, path):
        assert not should_ignore(path, DEFAULTS)


class TestShouldIgnorePatterns:
    """Directory patterns and globs."""

    def test_directory_pattern_matches_dir_itself(self):
        assert should_ignore("drafts", ["drafts/"])
        assert should_ignore("drafts/", ["drafts/"])

    def test_directory_pattern_matches_nested_files(self):
        assert should_ignore("drafts/a/b.md", ["drafts/"])

    def test_directory_pattern_matches_from_root_only(self):
        assert not should_ignore("notes/.git/HEAD", [".git/"])
        assert not should_ignore("deep/node_modules/x.md", DEFAULTS)

    def test_directory_pattern_is_also_a_glob(self):
        assert should_ignore("build-1/", ["build*/"])
        assert not should_ignore("build-1.md", ["build*/"])

    def test_directory_pattern_is_not_a_prefix_match(self):
        assert not should_ignore("drafts-old/a.md", ["drafts/"])
        assert not should_ignore("draftsx.md", ["drafts/"])

    def test_glob_matches_basename_anywhere(self):
        assert should_ignore("logs/app.log", ["*.log"])

    def test_glob_matches_full_path(self):
        assert should_ignore("private/secret.md", ["private/*"])

    def test_matching_is_case_sensitive(self):
        assert not should_ignore("a.md", ["*.MD"])

    def test_dotfiles_match_star(self):
        assert should_ignore(".hidden.md", ["*.md"])

    def test_empty_pattern_list(self):
        assert not should_ignore("anything.md", [])

    def test_pattern_order_is_irrelevant(self):
        patterns = ["*.log", "drafts/", "tmp-*", ".DS_Store"]
        for path in [
            "a.log",
            "drafts/x.md",
            "tmp-1.md",
            "keep.md",
            "x/.DS_Store",
        ]:
            assert should_ignore(path, patterns) == should_ignore(
                path, list(reversed(patterns))
            )


# ---------------------------------------------------------------------------
# Ignore file
# ---------------------------------------------------------------------------


class TestLoadIgnoreFile:
    """Tests for load_ignore_file()."""

    def test_missing_file_returns_empty(self, tmp_path: Path):
        assert load_ignore_file(tmp_path) == []

    def test_skips_comments_and_blank_lines(self, tmp_path: Path):
        (tmp_path / IGNORE_FILE_NAME).write_text(
            "# private notes\n\n  journal/  \n*.bak\n   \n#trailing\n",
            encoding="utf-8",
        )
        assert load_ignore_file(tmp_path) == ["journal/", "*.bak"]

    def test_unreadable_file_returns_empty(self, tmp_path: Path):
        # A directory where the file should be cannot be read.
        (tmp_path / IGNORE_FILE_NAME).mkdir()
        assert load_ignore_file(tmp_path) == []


class TestResolveIgnorePatterns:
    """Tests for resolve_ignore_patterns()."""

    def test_order_defaults_config_file(self, tmp_path: Path):
        (tmp_path / IGNORE_FILE_NAME).write_text(
            "from-file/\n", encoding="utf-8"
        )
        patterns = resolve_ignore_patterns(["from-config/"], tmp_path)
        assert patterns[: len(DEFAULTS)] == DEFAULTS
        assert patterns[len(DEFAULTS):] == ["from-config/", "from-file/"]

    def test_duplicates_removed(self, tmp_path: Path):
        (tmp_path / IGNORE_FILE_NAME).write_text(
            ".git/\n*.bak\n", encoding="utf-8"
        )
        patterns = resolve_ignore_patterns([".git/", "*.bak"], tmp_path)
        assert patterns.count(".git/") == 1
        assert patterns.count("*.bak") == 1


class TestIgnoreMatcher:
    """Tests for the IgnoreMatcher wrapper."""

    def test_binds_patterns_at_construction(self, tmp_path: Path):
        (tmp_path / IGNORE_FILE_NAME).write_text(
            "journal/\n", encoding="utf-8"
        )
        matcher = IgnoreMatcher(tmp_path, ["*.bak"])
        assert matcher.matches("journal/day.md")
        assert "x.bak" in matcher
        assert not matcher.matches("notes/keep.md")

        # Later edits to the file do not affect an existing matcher.
        (tmp_path / IGNORE_FILE_NAME).write_text("", encoding="utf-8")
        assert matcher.matches("journal/day.md")
