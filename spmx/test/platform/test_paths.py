"""Tests for spmx.platform.paths module."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from spmx.core.result import Err, Ok
from spmx.platform.paths import (
    are_same_path,
    find_symlinked_ancestor,
    is_parent_path,
    is_path_safe,
    normalize_and_validate_output_path,
    sanitize_file_name,
)


class TestIsPathSafe:
    """Test is_path_safe."""

    def test_root_itself_is_safe(self, tmp_path: Path) -> None:
        assert is_path_safe(tmp_path, tmp_path)

    def test_nested_candidate(self, tmp_path: Path) -> None:
        assert is_path_safe(tmp_path, tmp_path / "a" / "b.txt")

    def test_dot_dot_escape(self, tmp_path: Path) -> None:
        root = tmp_path / "root"
        assert not is_path_safe(root, root / ".." / "evil.txt")

    def test_sibling_prefix_is_not_nested(self, tmp_path: Path) -> None:
        assert not is_path_safe(tmp_path / "out", tmp_path / "out-evil" / "x")

    def test_escape_through_symlink(self, tmp_path: Path) -> None:
        root = tmp_path / "root"
        outside = tmp_path / "outside"
        root.mkdir()
        outside.mkdir()
        os.symlink(outside, root / "link")

        assert not is_path_safe(root, root / "link" / "file.txt")

    @pytest.mark.skipif(sys.platform not in ("darwin", "win32"), reason="case-insensitive filesystems only")
    def test_case_insensitive_platforms(self, tmp_path: Path) -> None:
        root = tmp_path / "Root"
        root.mkdir()
        assert is_path_safe(root, tmp_path / "root" / "x")

    @pytest.mark.skipif(sys.platform in ("darwin", "win32"), reason="case-sensitive filesystems only")
    def test_case_sensitive_platforms(self, tmp_path: Path) -> None:
        assert not is_path_safe(tmp_path / "Root", tmp_path / "root" / "x")


class TestLexicalHelpers:
    def test_same_path_ignores_trailing_separator(self, tmp_path: Path) -> None:
        assert are_same_path(f"{tmp_path}{os.sep}", tmp_path)

    def test_parent_path(self, tmp_path: Path) -> None:
        assert is_parent_path(tmp_path, tmp_path / "child")
        assert is_parent_path(tmp_path, tmp_path)
        assert not is_parent_path(tmp_path / "child", tmp_path)


class TestNormalizeAndValidateOutputPath:
    """Test normalize_and_validate_output_path."""

    def test_valid_nested_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        result = normalize_and_validate_output_path(tmp_path / "out" / "frameworks")

        assert isinstance(result, Ok)
        assert result.value == tmp_path / "out" / "frameworks"

    def test_empty(self) -> None:
        result = normalize_and_validate_output_path("  ")

        assert isinstance(result, Err)
        assert result.error.message == "Output path cannot be empty."

    def test_filesystem_root(self) -> None:
        result = normalize_and_validate_output_path(Path(os.sep))

        assert isinstance(result, Err)
        assert result.error.kind == "destination_unsafe"
        assert "filesystem root" in result.error.message

    def test_top_level_directory(self) -> None:
        result = normalize_and_validate_output_path(Path(os.sep) / "usr")

        assert isinstance(result, Err)
        assert "top-level root directory" in result.error.message

    def test_home_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        home = tmp_path / "home" / "user"
        home.mkdir(parents=True)
        monkeypatch.setenv("HOME", str(home))
        monkeypatch.setenv("USERPROFILE", str(home))

        result = normalize_and_validate_output_path(home)

        assert isinstance(result, Err)
        assert "home directory" in result.error.message

    def test_current_directory_and_parents(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        cwd = tmp_path / "work" / "project"
        cwd.mkdir(parents=True)
        monkeypatch.chdir(cwd)

        for candidate in (cwd, cwd.parent):
            result = normalize_and_validate_output_path(candidate)
            assert isinstance(result, Err)
            assert "current directory" in result.error.message

    def test_symlinked_ancestor(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        real = tmp_path / "real"
        real.mkdir()
        os.symlink(real, tmp_path / "link")

        result = normalize_and_validate_output_path(tmp_path / "link" / "out")

        assert isinstance(result, Err)
        assert "symlinked output path" in result.error.message


class TestFindSymlinkedAncestor:
    def test_plain_path(self, tmp_path: Path) -> None:
        assert find_symlinked_ancestor(tmp_path / "a" / "b") is None

    def test_symlink_found(self, tmp_path: Path) -> None:
        (tmp_path / "real").mkdir()
        os.symlink(tmp_path / "real", tmp_path / "link")

        assert find_symlinked_ancestor(tmp_path / "link" / "x") == tmp_path / "link"


class TestSanitizeFileName:
    def test_replaces_invalid_characters(self) -> None:
        assert sanitize_file_name('a/b\\c:d*e?f"g<h>i|j', "x") == "a-b-c-d-e-f-g-h-i-j"

    def test_fallback(self) -> None:
        assert sanitize_file_name("  ", "fallback") == "fallback"
        assert sanitize_file_name("..", "fallback") == "fallback"

    def test_keeps_spaces_inside(self) -> None:
        assert sanitize_file_name(" My Lib ", "x") == "My Lib"
