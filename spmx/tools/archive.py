"""Archive extraction for release assets.

This module provides an ArchiveExtractor that:
- Extracts .zip, .tar, .tar.gz and .tgz archives
- Rejects (never skips) entries that would land outside the destination
- Re-creates symlinks and hard links only when their targets stay inside
- Preserves Unix permissions where the archive records them
"""

from __future__ import annotations

import contextlib
import os
import shutil
import stat
import tarfile
import zipfile
from dataclasses import dataclass
from pathlib import Path

from spmx.core.errors import ResolveError
from spmx.core.result import Err, Ok, Result
from spmx.platform.cancel import CancelToken, raise_if_cancelled
from spmx.platform.files import remove_path
from spmx.platform.paths import is_path_safe

__all__ = [
    "ArchiveExtractor",
    "ExtractResult",
    "SUPPORTED_ARCHIVE_SUFFIXES",
    "archive_stem",
    "is_supported_archive",
]

SUPPORTED_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".zip", ".tar")


def is_supported_archive(name: str) -> bool:
    return name.lower().endswith(SUPPORTED_ARCHIVE_SUFFIXES)


def archive_stem(name: str) -> str:
    """File name without its archive extension (``Lib.xcframework.zip`` -> ``Lib.xcframework``)."""
    lowered = name.lower()
    for suffix in SUPPORTED_ARCHIVE_SUFFIXES:
        if lowered.endswith(suffix):
            return name[: -len(suffix)]
    return name


@dataclass(frozen=True, slots=True)
class ExtractResult:
    """Result of an extraction.

    Attributes:
        destination: Directory the archive was extracted into
        entries_count: Files, directories and links written
    """

    destination: Path
    entries_count: int


def _unsafe(message: str) -> Err[ResolveError]:
    return Err(ResolveError("unsafe_archive_entry", message))


class ArchiveExtractor:
    """Extracts untrusted archives under strict path-safety rules.

    Usage:
        extractor = ArchiveExtractor()
        match extractor.extract(asset, scratch / "extracted"):
            case Ok(result):
                print(f"Extracted {result.entries_count} entries")
            case Err(error):
                print(error.message)

    Partially written output is not rolled back on failure; the destination
    is expected to be disposable scratch space.
    """

    def extract(
        self,
        archive: Path,
        destination: Path,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[ExtractResult, ResolveError]:
        """Extract ``archive`` into ``destination``.

        Returns:
            Ok(ExtractResult), or Err with kind ``unsupported_archive``,
            ``unsafe_archive_entry``, ``archive_invalid`` or ``io_error``.
        """
        name = archive.name.lower()
        if not is_supported_archive(name):
            return Err(
                ResolveError(
                    "unsupported_archive",
                    f"Unsupported archive format: {archive.name}",
                    hint="Supported formats: .zip, .tar, .tar.gz, .tgz",
                )
            )
        if not archive.is_file():
            return Err(ResolveError("io_error", f"Archive not found: {archive}"))

        try:
            destination.mkdir(parents=True, exist_ok=True)
            if name.endswith(".zip"):
                return self._extract_zip(archive, destination, cancel)
            mode = "r:" if name.endswith(".tar") else "r:gz"
            return self._extract_tar(archive, destination, mode, cancel)
        except (tarfile.TarError, zipfile.BadZipFile, EOFError) as e:
            return Err(ResolveError("archive_invalid", f"Invalid archive '{archive.name}': {e}"))
        except OSError as e:
            return Err(ResolveError("io_error", f"Failed to extract '{archive.name}': {e}"))

    def _entry_path(self, destination: Path, member_name: str) -> Path | None:
        """Destination path for an entry, or None if it escapes the root."""
        normalized = member_name.replace("\\", "/")
        candidate = destination / normalized
        if not is_path_safe(destination, candidate):
            return None
        return candidate

    def _check_link(
        self,
        destination: Path,
        entry_name: str,
        link_target: str,
        *,
        base: Path,
    ) -> Result[Path, ResolveError]:
        """Validate a link target relative to ``base``."""
        target = link_target.replace("\\", "/")
        if not target.strip():
            return _unsafe(f"Archive link '{entry_name}' has an empty target.")
        if target.startswith("/") or os.path.isabs(target):
            return _unsafe(f"Archive link '{entry_name}' has an absolute target '{link_target}'.")
        resolved = base / target
        if not is_path_safe(destination, resolved):
            return _unsafe(
                f"Archive link '{entry_name}' points outside destination ('{link_target}')."
            )
        return Ok(resolved)

    def _write_symlink(self, path: Path, target: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        remove_path(path)
        os.symlink(target.replace("\\", "/"), path)

    def _prepare_file(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.is_symlink():
            path.unlink()

    def _extract_tar(
        self,
        archive: Path,
        destination: Path,
        mode: str,
        cancel: CancelToken | None,
    ) -> Result[ExtractResult, ResolveError]:
        count = 0
        with tarfile.open(archive, mode) as tar:
            for member in tar:
                raise_if_cancelled(cancel)

                path = self._entry_path(destination, member.name)
                if path is None:
                    return _unsafe(
                        f"Tar entry '{member.name}' attempts to write outside destination."
                    )

                if member.isdir():
                    path.mkdir(parents=True, exist_ok=True)
                elif member.issym():
                    checked = self._check_link(
                        destination, member.name, member.linkname, base=path.parent
                    )
                    if isinstance(checked, Err):
                        return checked
                    self._write_symlink(path, member.linkname)
                elif member.islnk():
                    checked = self._check_link(
                        destination, member.name, member.linkname, base=destination
                    )
                    if isinstance(checked, Err):
                        return checked
                    if not checked.value.is_file():
                        return Err(
                            ResolveError(
                                "archive_invalid",
                                f"Tar hard link '{member.name}' refers to missing entry "
                                f"'{member.linkname}'.",
                            )
                        )
                    self._prepare_file(path)
                    remove_path(path)
                    os.link(checked.value, path)
                elif member.isreg():
                    src = tar.extractfile(member)
                    if src is None:
                        continue
                    self._prepare_file(path)
                    with src, open(path, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    file_mode = member.mode & 0o777
                    if file_mode:
                        with contextlib.suppress(OSError):
                            os.chmod(path, file_mode)
                else:
                    # Devices and fifos have no place in a release payload.
                    continue

                count += 1

        return Ok(ExtractResult(destination=destination, entries_count=count))

    def _extract_zip(
        self,
        archive: Path,
        destination: Path,
        cancel: CancelToken | None,
    ) -> Result[ExtractResult, ResolveError]:
        count = 0
        with zipfile.ZipFile(archive, "r") as zf:
            for info in zf.infolist():
                raise_if_cancelled(cancel)

                path = self._entry_path(destination, info.filename)
                if path is None:
                    return _unsafe(
                        f"Zip entry '{info.filename}' attempts to write outside destination."
                    )

                unix_attrs = info.external_attr >> 16
                if info.is_dir():
                    path.mkdir(parents=True, exist_ok=True)
                elif stat.S_IFMT(unix_attrs) == stat.S_IFLNK:
                    link_target = zf.read(info).decode("utf-8", errors="replace")
                    checked = self._check_link(
                        destination, info.filename, link_target, base=path.parent
                    )
                    if isinstance(checked, Err):
                        return checked
                    self._write_symlink(path, link_target)
                else:
                    self._prepare_file(path)
                    with zf.open(info) as src, open(path, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    file_mode = stat.S_IMODE(unix_attrs)
                    if file_mode:
                        with contextlib.suppress(OSError):
                            path.chmod(file_mode)

                count += 1

        return Ok(ExtractResult(destination=destination, entries_count=count))
