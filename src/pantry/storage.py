"""Record storage abstraction and local file hardening helpers."""

from __future__ import annotations

import copy
import os
import secrets
import threading
import time
from pathlib import Path
from typing import Generic, Optional, Protocol, TypeVar


T = TypeVar("T")


class Store(Protocol[T]):
    """Keyed record store: lookup by ID plus atomic conditional update."""

    def get(self, key: str) -> Optional[T]: ...

    def put(self, key: str, value: T) -> None: ...

    def compare_and_swap(self, key: str, expected: T, new: T) -> bool: ...


class InMemoryStore(Generic[T]):
    """Process-local store holding value copies behind a single lock.

    Records go in and come out as deep copies, so callers never alias the
    stored state; the only way to change a record is put() or
    compare_and_swap().
    """

    def __init__(self):
        self._items: dict[str, T] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            item = self._items.get(key)
            return copy.deepcopy(item) if item is not None else None

    def put(self, key: str, value: T) -> None:
        with self._lock:
            self._items[key] = copy.deepcopy(value)

    def compare_and_swap(self, key: str, expected: T, new: T) -> bool:
        with self._lock:
            current = self._items.get(key)
            if current is None or current != expected:
                return False
            self._items[key] = copy.deepcopy(new)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def ensure_private_file(path: Path) -> None:
    if not path.exists():
        path.touch()
    os.chmod(path, 0o600)


def new_record_id(kind: str, prefix: str = "") -> str:
    """Time-ordered, collision-resistant record ID, e.g. ``premium_quote_1718000000000_ab12cd34ef``."""
    return f"{prefix}{kind}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"
