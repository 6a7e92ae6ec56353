"""
Reference ArtifactStore implementations.

``InMemoryArtifactStore`` backs tests and single-process runs;
``FilesystemArtifactStore`` maps ``{namespace}/{subject_id}/{filename}``
onto a directory tree.  Both refuse paths that escape their root.
"""

from __future__ import annotations

import threading
from pathlib import Path, PurePosixPath

from booking_kernel.exceptions import ArtifactStoreError
from booking_kernel.logging_config import get_logger

logger = get_logger("workflow.artifacts")


def _normalize(path: str) -> str:
    parts = PurePosixPath(path).parts
    if not parts or PurePosixPath(path).is_absolute() or ".." in parts:
        raise ArtifactStoreError(path, "invalid artifact path")
    return "/".join(parts)


class InMemoryArtifactStore:
    """Dict-backed store.  Thread-safe."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, path: str, data: bytes) -> None:
        key = _normalize(path)
        with self._lock:
            self._objects[key] = bytes(data)

    def get(self, path: str) -> bytes | None:
        key = _normalize(path)
        with self._lock:
            return self._objects.get(key)

    def paths(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)


class FilesystemArtifactStore:
    """Stores each artifact as a file under ``root``.

    Writes go to a temporary sibling and are renamed into place, so a
    reader never sees a partially written document.
    """

    def __init__(self, root: Path | str):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        return self._root.joinpath(*_normalize(path).split("/"))

    def put(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        tmp = target.with_name(f".{target.name}.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            tmp.replace(target)
        except OSError as exc:
            logger.error(
                "artifact_write_failed",
                extra={"artifact_path": path, "error": str(exc)},
            )
            raise ArtifactStoreError(path, exc.strerror or str(exc)) from exc
        logger.debug("artifact_written", extra={"artifact_path": path, "size": len(data)})

    def get(self, path: str) -> bytes | None:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ArtifactStoreError(path, exc.strerror or str(exc)) from exc
