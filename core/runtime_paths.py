from __future__ import annotations

from pathlib import Path

# Everything the tool persists lives under this directory in the user's home.
PAI_HOME_DIRNAME = ".pai"


def pai_home() -> Path:
    return Path.home() / PAI_HOME_DIRNAME


def resolve_storage_path(raw_path: object, default_name: str) -> Path:
    """Resolve a configured storage path, falling back to ``~/.pai/<default_name>``."""
    if isinstance(raw_path, Path):
        return raw_path.expanduser().resolve()
    if isinstance(raw_path, str) and raw_path.strip():
        return Path(raw_path).expanduser().resolve()
    return pai_home() / default_name


def resolve_events_dir(events_dir: object = None) -> Path:
    """Directory holding ``events-YYYY-MM-DD.jsonl`` files and ``index.db``."""
    return resolve_storage_path(events_dir, "events")


def resolve_archive_dir(archive_dir: object = None) -> Path:
    """Root of the ``<YYYY>/`` archive tree, a sibling of the events directory."""
    return resolve_storage_path(archive_dir, "archive")
