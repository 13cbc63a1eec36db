"""
Minimal storage interface used by the compaction pipeline.

Everything that touches the daily log or the archive goes through a
:class:`Storage` so the archiving and idempotency logic can be exercised
against an in-memory fake as well as the real filesystem.

``LocalStorage`` writes atomically by staging content in a sibling temp file
and calling :func:`os.replace`, so a reader never observes a half-written file.
"""
from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Union

PathLike = Union[str, Path]


class Storage:
    """Operations the event log, archiver and detector rely on."""

    def exists(self, path: PathLike) -> bool:
        raise NotImplementedError

    def list_dir(self, path: PathLike) -> List[str]:
        """Return entry names in *path*.  Raises ``FileNotFoundError`` if missing."""
        raise NotImplementedError

    def read_text(self, path: PathLike) -> str:
        raise NotImplementedError

    def append_text(self, path: PathLike, text: str) -> None:
        raise NotImplementedError

    def make_dirs(self, path: PathLike) -> None:
        raise NotImplementedError

    def copy_file(self, src: PathLike, dst: PathLike) -> None:
        raise NotImplementedError

    def write_text_atomic(self, path: PathLike, text: str) -> None:
        raise NotImplementedError

    def remove(self, path: PathLike) -> None:
        raise NotImplementedError


class LocalStorage(Storage):
    """:class:`Storage` backed by the local filesystem."""

    def exists(self, path: PathLike) -> bool:
        return Path(path).exists()

    def list_dir(self, path: PathLike) -> List[str]:
        return sorted(os.listdir(path))

    def read_text(self, path: PathLike) -> str:
        return Path(path).read_text(encoding="utf-8")

    def append_text(self, path: PathLike, text: str) -> None:
        with Path(path).open("a", encoding="utf-8") as handle:
            handle.write(text)

    def make_dirs(self, path: PathLike) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def copy_file(self, src: PathLike, dst: PathLike) -> None:
        """Copy *src* to *dst* through a sibling temp file.

        *dst* either does not exist or holds the complete copy.
        """
        target = Path(dst)
        tmp_path = _sibling_temp_path(target)
        try:
            # copy2 keeps mtime so archived files carry their original dates
            shutil.copy2(src, tmp_path)
            with open(tmp_path, "rb") as handle:
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def write_text_atomic(self, path: PathLike, text: str) -> None:
        target = Path(path)
        tmp_path = _sibling_temp_path(target)
        try:
            with open(tmp_path, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def remove(self, path: PathLike) -> None:
        Path(path).unlink()


def _sibling_temp_path(target: Path) -> Path:
    """Reserve a unique ``.<name>.*.tmp`` file next to *target*."""
    fd, name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    os.close(fd)
    return Path(name)


_default_storage = LocalStorage()


def get_storage(storage: Storage = None) -> Storage:
    """Return *storage* or the shared :class:`LocalStorage` instance."""
    return storage if storage is not None else _default_storage
