"""Namespaced key-value byte stores that back client-side persistent state."""
from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9_.-]")


class LocalStore(Protocol):
    def get(self, namespace: str, key: str) -> bytes | None: ...

    def set(self, namespace: str, key: str, value: bytes) -> None: ...

    def delete(self, namespace: str, key: str) -> None: ...

    def clear(self, namespace: str) -> None: ...


def _segment(value: str) -> str:
    cleaned = _SAFE_SEGMENT.sub("_", value.strip())
    if not cleaned or cleaned in {".", ".."}:
        raise ValueError(f"invalid store segment: {value!r}")
    return cleaned


class FileLocalStore:
    """One file per key under ``<directory>/<namespace>/``; survives process restarts."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def _path(self, namespace: str, key: str) -> Path:
        return self.directory / _segment(namespace) / _segment(key)

    def get(self, namespace: str, key: str) -> bytes | None:
        try:
            return self._path(namespace, key).read_bytes()
        except FileNotFoundError:
            return None

    def set(self, namespace: str, key: str, value: bytes) -> None:
        target = self._path(namespace, key)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
            os.replace(temp_name, target)
        except BaseException:
            try:
                os.remove(temp_name)
            except FileNotFoundError:
                pass
            raise

    def delete(self, namespace: str, key: str) -> None:
        try:
            self._path(namespace, key).unlink()
        except FileNotFoundError:
            pass

    def clear(self, namespace: str) -> None:
        folder = self.directory / _segment(namespace)
        if not folder.is_dir():
            return
        for entry in folder.iterdir():
            if entry.is_file():
                entry.unlink()


class MemoryLocalStore:
    """Process-local store for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, bytes]] = {}

    def get(self, namespace: str, key: str) -> bytes | None:
        return self._data.get(namespace, {}).get(key)

    def set(self, namespace: str, key: str, value: bytes) -> None:
        self._data.setdefault(namespace, {})[key] = bytes(value)

    def delete(self, namespace: str, key: str) -> None:
        self._data.get(namespace, {}).pop(key, None)

    def clear(self, namespace: str) -> None:
        self._data.pop(namespace, None)


__all__ = ["LocalStore", "FileLocalStore", "MemoryLocalStore"]
