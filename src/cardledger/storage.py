"""
Shared storage, the field-ownership contract, and persistence backends.

Storage model
-------------
A proxy owns exactly one :class:`Storage`: a flat key space holding
JSON-friendly scalars.  Two parties write to it:

*   the proxy itself, under *reserved slots* whose keys are SHA-256
    digests of fixed labels (see :func:`reserved_slot`);
*   whichever backend is currently installed, under keys derived from
    its :class:`StorageLayout`, always ``<namespace>.<field>`` or
    ``<namespace>.<field>/<k1>[/<k2>]``.

A digest never contains a ``.``, so a layout key can never alias a
reserved slot.  The proxy additionally checks every layout it installs
(:meth:`StorageLayout.owns`) and refuses layouts that drop or
reinterpret fields of the layout already installed
(:meth:`StorageLayout.check_upgrade_to`).

Persistence
-----------
:class:`StorageBackend` is a small key-value interface with two
namespaces used by :class:`~cardledger.runtime.Runtime`:

* ``code``    — address ↦ deployed backend description JSON
* ``proxies`` — address ↦ proxy storage JSON

Usage::

    backend = get_storage_backend("sqlite", db_path="/data/cards.db")
    runtime.save(backend)
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple

from .errors import ValidationError

logger = logging.getLogger("cardledger.storage")

VALUE = "value"
MAPPING = "mapping"
_KINDS = (VALUE, MAPPING)

_FIELD_SEP = "."
_KEY_SEP = "/"


def reserved_slot(label: str) -> str:
    """Key of a proxy-owned slot; never collides with a layout key."""
    return hashlib.sha256(label.encode("utf-8")).hexdigest()


# ── Field-ownership contract ───────────────────────────────────────────

class StorageLayout:
    """Declares which keys of a :class:`Storage` a backend owns.

    Parameters
    ----------
    namespace : str
        Prefix of every key the backend writes.
    fields : dict
        Field name ↦ kind (``"value"`` or ``"mapping"``).  Fields may be
        appended in later backend revisions but never removed or changed
        in kind.
    """

    def __init__(self, namespace: str, fields: Dict[str, str]):
        if not namespace or _FIELD_SEP in namespace or _KEY_SEP in namespace:
            raise ValidationError(f"invalid layout namespace: {namespace!r}")
        for name, kind in fields.items():
            if not name or _FIELD_SEP in name or _KEY_SEP in name:
                raise ValidationError(f"invalid layout field name: {name!r}")
            if kind not in _KINDS:
                raise ValidationError(f"invalid kind {kind!r} for field {name!r}")
        self.namespace = namespace
        self.fields: Dict[str, str] = dict(fields)

    def key(self, field: str, *keys: Any) -> str:
        """Storage key of *field*, indexed by *keys* for mappings."""
        kind = self.fields.get(field)
        if kind is None:
            raise KeyError(f"field {field!r} is not declared in layout {self.namespace!r}")
        base = f"{self.namespace}{_FIELD_SEP}{field}"
        if kind == VALUE:
            if keys:
                raise KeyError(f"value field {field!r} takes no keys")
            return base
        if not keys:
            raise KeyError(f"mapping field {field!r} needs at least one key")
        parts = []
        for k in keys:
            part = str(k)
            if not part or _KEY_SEP in part:
                raise ValidationError(f"invalid mapping key: {k!r}")
            parts.append(part)
        return base + _KEY_SEP + _KEY_SEP.join(parts)

    def prefix(self, field: str) -> str:
        """Common prefix of every entry of mapping *field*."""
        return f"{self.namespace}{_FIELD_SEP}{field}{_KEY_SEP}"

    def owns(self, key: str) -> bool:
        return key.startswith(self.namespace + _FIELD_SEP)

    def check_upgrade_to(self, newer: "StorageLayout") -> None:
        """Raise unless *newer* keeps every field of this layout as-is."""
        if newer.namespace != self.namespace:
            raise ValidationError(
                f"layout namespace changes from {self.namespace!r} to {newer.namespace!r}"
            )
        for name, kind in self.fields.items():
            new_kind = newer.fields.get(name)
            if new_kind is None:
                raise ValidationError(f"layout drops field {name!r}")
            if new_kind != kind:
                raise ValidationError(
                    f"layout reinterprets field {name!r} from {kind} to {new_kind}"
                )

    def __repr__(self) -> str:
        return f"StorageLayout({self.namespace!r}, {self.fields!r})"


# ── Shared key space ───────────────────────────────────────────────────

class Storage:
    """Flat key space shared by a proxy and the backend it runs.

    Writing ``None`` deletes the key, so an absent key and a zeroed key
    are indistinguishable.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(data or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value

    def __len__(self) -> int:
        return len(self._data)

    def items(self, prefix: str = "") -> Iterator[Tuple[str, Any]]:
        for k, v in list(self._data.items()):
            if k.startswith(prefix):
                yield k, v

    # Snapshot / rollback ------------------------------------------------

    # Values are replaced on write, never mutated in place, so a shallow
    # copy is a complete snapshot.

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._data)

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self._data = dict(snapshot)

    @contextmanager
    def transaction(self):
        """Restore the pre-call state if the block raises."""
        snapshot = self.snapshot()
        try:
            yield self
        except BaseException:
            self.restore(snapshot)
            raise

    # Serialization ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Storage":
        return cls(copy.deepcopy(data))


# ── Persistence backends ───────────────────────────────────────────────

class StorageBackend(ABC):
    """Minimal key-value interface for persisting a runtime.

    Implementations MUST support both namespaces and make writes
    durable on ``commit``.
    """

    NAMESPACES = ("code", "proxies")

    @abstractmethod
    def get(self, namespace: str, key: str) -> Optional[str]:
        """Retrieve a value by key from *namespace*, or ``None``."""

    @abstractmethod
    def put(self, namespace: str, key: str, value: str) -> None:
        """Write *value* under *key* in *namespace*.

        Implementations may buffer the write until ``commit()`` is called.
        """

    @abstractmethod
    def delete(self, namespace: str, key: str) -> None:
        """Remove *key* from *namespace*."""

    @abstractmethod
    def iterate(self, namespace: str) -> Iterator[Tuple[str, str]]:
        """Yield all ``(key, value)`` pairs in *namespace*."""

    @abstractmethod
    def commit(self) -> None:
        """Flush any buffered writes to durable storage."""

    @abstractmethod
    def close(self) -> None:
        """Release resources held by the backend."""

    def get_json(self, namespace: str, key: str) -> Optional[Any]:
        raw = self.get(namespace, key)
        if raw is None:
            return None
        return json.loads(raw)

    def put_json(self, namespace: str, key: str, obj: Any) -> None:
        self.put(namespace, key, json.dumps(obj, sort_keys=True))

    @property
    def name(self) -> str:
        return self.__class__.__name__


class SQLiteBackend(StorageBackend):
    """SQLite-based storage, one table per namespace."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._init_tables()
        logger.info("SQLite storage backend opened: %s", db_path)

    def _init_tables(self):
        for ns in self.NAMESPACES:
            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS [{ns}] (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
        self._conn.commit()

    def get(self, namespace: str, key: str) -> Optional[str]:
        row = self._conn.execute(
            f"SELECT value FROM [{namespace}] WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row else None

    def put(self, namespace: str, key: str, value: str) -> None:
        self._conn.execute(
            f"INSERT OR REPLACE INTO [{namespace}] (key, value) VALUES (?, ?)",
            (key, value),
        )

    def delete(self, namespace: str, key: str) -> None:
        self._conn.execute(f"DELETE FROM [{namespace}] WHERE key = ?", (key,))

    def iterate(self, namespace: str) -> Iterator[Tuple[str, str]]:
        cursor = self._conn.execute(f"SELECT key, value FROM [{namespace}] ORDER BY key")
        yield from cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None  # type: ignore[assignment]
            logger.info("SQLite storage backend closed")


class MemoryBackend(StorageBackend):
    """Ephemeral in-memory backend, useful for tests."""

    def __init__(self):
        self._data: Dict[str, Dict[str, str]] = {ns: {} for ns in self.NAMESPACES}

    def get(self, namespace: str, key: str) -> Optional[str]:
        return self._data[namespace].get(key)

    def put(self, namespace: str, key: str, value: str) -> None:
        self._data[namespace][key] = value

    def delete(self, namespace: str, key: str) -> None:
        self._data[namespace].pop(key, None)

    def iterate(self, namespace: str) -> Iterator[Tuple[str, str]]:
        yield from sorted(self._data[namespace].items())

    def commit(self) -> None:
        pass

    def close(self) -> None:
        pass


_BACKENDS = {
    "sqlite": SQLiteBackend,
    "memory": MemoryBackend,
}


def get_storage_backend(name: str, **kwargs) -> StorageBackend:
    """Instantiate a storage backend by name (``"sqlite"`` or ``"memory"``).

    ``**kwargs`` are forwarded to the backend constructor (e.g. ``db_path``).
    """
    name = name.lower().strip()
    cls = _BACKENDS.get(name)
    if cls is None:
        raise ValidationError(
            f"Unknown storage backend '{name}'. "
            f"Available: {', '.join(sorted(_BACKENDS))}"
        )
    return cls(**kwargs)
