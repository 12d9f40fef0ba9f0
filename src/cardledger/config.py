"""
Ledger configuration.

Settings are plain keyword arguments with defaults; ``from_env`` layers
``CARDLEDGER_*`` environment variables on top.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from .errors import ValidationError

logger = logging.getLogger("cardledger.config")

# Largest batch evidenced to succeed is 390 ids; leave some headroom.
DEFAULT_MAX_BATCH_SIZE = 400
DEFAULT_STORAGE_BACKEND = "sqlite"
DEFAULT_DB_PATH = "cardledger.db"


class LedgerConfig:
    """Configuration for a ledger backend and the state file it lives in."""

    def __init__(self, **kwargs):
        self.max_batch_size: int = int(kwargs.get("max_batch_size", DEFAULT_MAX_BATCH_SIZE))
        self.storage_backend: str = kwargs.get("storage_backend", DEFAULT_STORAGE_BACKEND)
        self.db_path: str = kwargs.get("db_path", DEFAULT_DB_PATH)

        if self.max_batch_size <= 0:
            raise ValidationError(
                f"max_batch_size must be positive, got {self.max_batch_size}"
            )

    @classmethod
    def from_env(cls, **overrides) -> "LedgerConfig":
        """Build a config from ``CARDLEDGER_*`` variables, then *overrides*."""
        values: Dict[str, Any] = {}
        raw_size = os.environ.get("CARDLEDGER_MAX_BATCH_SIZE")
        if raw_size:
            try:
                values["max_batch_size"] = int(raw_size)
            except ValueError:
                raise ValidationError(
                    f"CARDLEDGER_MAX_BATCH_SIZE is not an integer: {raw_size!r}"
                )
        storage = os.environ.get("CARDLEDGER_STORAGE")
        if storage:
            values["storage_backend"] = storage
        db_path = os.environ.get("CARDLEDGER_DB")
        if db_path:
            values["db_path"] = db_path

        values.update({k: v for k, v in overrides.items() if v is not None})
        logger.debug("Config from environment: %s", values)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_batch_size": self.max_batch_size,
            "storage_backend": self.storage_backend,
            "db_path": self.db_path,
        }
