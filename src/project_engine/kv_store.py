"""
Key-value store module for persistent engine state.

The engine persists whole collections under string keys, with no partial
updates and no transactions. This module provides the store protocol, an
in-memory store for tests and embedding, and an HMAC-protected JSON file
store that detects tampering.
"""

import asyncio
import hashlib
import hmac
import json
from abc import abstractmethod
from contextlib import nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncContextManager, Optional, Protocol, runtime_checkable

from .exceptions import PersistenceError, TamperingError


@runtime_checkable
class KeyValueStore(Protocol):
    """Whole-value async key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the stored value, or None if the key is absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Replace the value stored under ``key``."""
        ...


def write_guard(lock: Optional[asyncio.Lock]) -> AsyncContextManager:
    """
    Context manager serializing read-modify-write cycles.

    Without a lock the cycle runs unguarded and concurrent writers can lose
    updates (last whole-collection write wins).
    """
    if lock is None:
        return nullcontext()
    return lock


class InMemoryKeyValueStore:
    """
    Dictionary-backed store.

    Values are deep-copied through JSON on the way in and out so callers
    never share mutable state with the store.
    """

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    async def get(self, key: str) -> Any:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                code="serialize_error",
                message=f"Value for key {key!r} is not JSON serializable: {e}",
                details={"key": key},
            )

    def keys(self) -> list[str]:
        return list(self._data.keys())


class JsonFileKeyValueStore:
    """
    File-backed store with HMAC protection.

    The file holds every key in one JSON document:
    ``{"version", "data", "updated_at", "hmac"}``, where the HMAC-SHA256
    covers version, data and updated_at. A mismatch on load raises
    TamperingError.
    """

    VERSION = 1

    def __init__(self, file_path: Path, hmac_secret: str) -> None:
        """
        Initialize the store.

        Args:
            file_path: Path to the state file (JSON format)
            hmac_secret: Secret key for HMAC computation
        """
        if not hmac_secret:
            raise ValueError("HMAC secret cannot be empty")
        self._file_path = file_path
        self._hmac_secret = hmac_secret.encode("utf-8")

    @property
    def file_path(self) -> Path:
        return self._file_path

    async def get(self, key: str) -> Any:
        return self._load().get(key)

    async def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def _load(self) -> dict[str, Any]:
        """
        Read and validate the whole document.

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        if not self._file_path.exists():
            return {}

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse state file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read state file: {e}",
                details={"file_path": str(self._file_path)},
            )

        if not isinstance(raw, dict):
            raise PersistenceError(
                code="parse_error",
                message="State file does not contain a JSON object",
                details={"file_path": str(self._file_path)},
            )

        stored_hmac = raw.get("hmac", "")
        computed = self.compute_hmac({
            "version": raw.get("version"),
            "data": raw.get("data", {}),
            "updated_at": raw.get("updated_at"),
        })
        if not hmac.compare_digest(str(stored_hmac), computed):
            raise TamperingError(
                code="hmac_mismatch",
                message="HMAC validation failed - state file may have been tampered with",
                details={"file_path": str(self._file_path)},
            )

        return dict(raw.get("data", {}))

    def _save(self, data: dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        signed = {"version": self.VERSION, "data": data, "updated_at": now}

        try:
            document = dict(signed, hmac=self.compute_hmac(signed))
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._file_path.with_suffix(self._file_path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True)
            tmp_path.replace(self._file_path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write state file: {e}",
                details={"file_path": str(self._file_path)},
            )

    def compute_hmac(self, payload: dict) -> str:
        """HMAC-SHA256 over the canonical JSON form of ``payload``."""
        serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
