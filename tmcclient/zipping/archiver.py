"""Recursive zipper: packs a project directory, pruned by an inclusion policy."""
from __future__ import annotations

import io
import logging
import os
import shutil
import zipfile
from pathlib import Path
from typing import Callable

from tmcclient.errors import ArchiveIOError, ArchiveRootNotFound, TaskCancelled

logger = logging.getLogger(__name__)

Decider = Callable[[Path], bool]


class RecursiveZipper:
    """Zip up a project directory, including only what the decider accepts.

    The root directory's own name is the top-level prefix in the archive.
    Every traversed directory gets a ``name/`` entry before its children.
    A rejected directory is never descended into.
    """

    def __init__(self, root_dir: str | os.PathLike, decider: Decider,
                 is_cancelled: Callable[[], bool] | None = None):
        self.root_dir = Path(os.path.abspath(root_dir))
        self.decider = decider
        self.is_cancelled = is_cancelled

    def zip_project_sources(self) -> bytes:
        if not self.root_dir.exists() or not self.root_dir.is_dir():
            raise ArchiveRootNotFound(f"Project directory not found for zipping: {self.root_dir}")

        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                self._zip_recursively(self.root_dir, zf, "")
        except OSError as e:
            raise ArchiveIOError(f"Failed to zip {self.root_dir}: {e}") from e

        data = buffer.getvalue()
        logger.debug("Zipped %s: %d bytes", self.root_dir, len(data))
        return data

    def _check_cancelled(self) -> None:
        if self.is_cancelled is not None and self.is_cancelled():
            raise TaskCancelled(f"Zipping {self.root_dir} cancelled")

    def _zip_recursively(self, directory: Path, zf: zipfile.ZipFile, parent_zip_path: str) -> None:
        if parent_zip_path:
            this_zip_path = f"{parent_zip_path}/{directory.name}"
        else:
            this_zip_path = directory.name

        self._check_cancelled()
        zf.writestr(zipfile.ZipInfo(this_zip_path + "/"), b"")

        with os.scandir(directory) as it:
            children = [Path(entry.path) for entry in it]

        for child in children:
            if not self.decider(child):
                continue
            if child.is_dir():
                self._zip_recursively(child, zf, this_zip_path)
            else:
                self._write_entry(child, zf, this_zip_path)

    def _write_entry(self, file: Path, zf: zipfile.ZipFile, zip_path: str) -> None:
        self._check_cancelled()
        info = zipfile.ZipInfo.from_file(file, f"{zip_path}/{file.name}", strict_timestamps=False)
        info.compress_type = zipfile.ZIP_DEFLATED
        with open(file, "rb") as src, zf.open(info, "w") as dst:
            shutil.copyfileobj(src, dst)


def zip_project_sources(root_dir: str | os.PathLike, decider: Decider,
                        is_cancelled: Callable[[], bool] | None = None) -> bytes:
    """Convenience wrapper around RecursiveZipper."""
    return RecursiveZipper(root_dir, decider, is_cancelled=is_cancelled).zip_project_sources()
