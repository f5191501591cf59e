from __future__ import annotations
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, Optional, Set

from settings import get_settings


class BlobAlreadyExistsError(FileExistsError):
    """Raised when uploading to a taken name without ``overwrite``."""


class MockBlobContainer:
    """Archive container for exported files, optionally mirrored to disk."""

    def __init__(self, name: str, root_path: Optional[Path] = None) -> None:
        self.name = name
        self._blobs: Dict[str, bytes] = {}
        self._known_names: Set[str] = set()
        self.root_path = root_path
        self._lock = Lock()
        if root_path:
            root_path.mkdir(parents=True, exist_ok=True)
            self._load_existing_names()

    def upload(self, name: str, content: bytes, overwrite: bool = False) -> None:
        with self._lock:
            if not overwrite and self._exists(name):
                raise BlobAlreadyExistsError(
                    f"Blob {name!r} already exists in container {self.name!r}."
                )
            self._blobs[name] = content
            self._known_names.add(name)
            if self.root_path:
                path = self.root_path / name
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(content)

    def get_blob(self, name: str) -> bytes:
        with self._lock:
            data = self._blobs.get(name)
            if data is not None:
                return data

        if self.root_path:
            path = self.root_path / name
            if path.exists():
                data = path.read_bytes()
                with self._lock:
                    self._blobs[name] = data
                    self._known_names.add(name)
                return data

        raise KeyError(f"Blob {name!r} not found in container {self.name!r}.")

    def exists(self, name: str) -> bool:
        with self._lock:
            return self._exists(name)

    def list_blobs(self) -> Iterable[str]:
        with self._lock:
            names = set(self._known_names)
            names.update(self._blobs.keys())

        if self.root_path:
            for path in self.root_path.rglob("*"):
                if path.is_file():
                    names.add(path.relative_to(self.root_path).as_posix())

        return sorted(names)

    def _exists(self, name: str) -> bool:
        if name in self._blobs or name in self._known_names:
            return True
        return bool(self.root_path and (self.root_path / name).exists())

    def _load_existing_names(self) -> None:
        assert self.root_path is not None
        for path in self.root_path.rglob("*"):
            if path.is_file():
                self._known_names.add(path.relative_to(self.root_path).as_posix())


@lru_cache
def build_default_container(
    name: Optional[str] = None,
    root_path: Optional[str] = None,
) -> MockBlobContainer:
    settings = get_settings()
    container_name = settings.archive_container_name if name is None else name
    container_root = settings.archive_root_path if root_path is None else root_path
    path = Path(container_root) if container_root else None
    return MockBlobContainer(name=container_name, root_path=path)
