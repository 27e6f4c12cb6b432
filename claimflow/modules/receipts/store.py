"""Receipt image blob storage on local disk."""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path, PurePath

from claimflow.errors import StorageError, ValidationError
from claimflow.logging_config import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "receipt-"


class LocalReceiptStore:
    """Stores each upload under a freshly generated, never reused filename."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    @staticmethod
    def new_key(original_name: str) -> str:
        suffix = PurePath(original_name or "").suffix.lower()
        if len(suffix) > 10 or not suffix[1:].isalnum():
            suffix = ""
        return f"{KEY_PREFIX}{uuid.uuid4().hex}{suffix}"

    async def save(self, data: bytes, original_name: str) -> str:
        """Write ``data`` and return its storage key."""
        key = self.new_key(original_name)
        path = self._root / key
        try:
            await asyncio.to_thread(self._write_exclusive, path, data)
        except OSError as exc:
            logger.error("receipt_save_failed", key=key, error=str(exc))
            raise StorageError("Failed to store receipt image") from exc
        logger.info("receipt_saved", key=key, size=len(data))
        return key

    @staticmethod
    def _write_exclusive(path: Path, data: bytes) -> None:
        # "x" fails instead of overwriting if the name is somehow taken
        with open(path, "xb") as fh:
            fh.write(data)

    def resolve(self, key: str) -> Path:
        """Map a key to its file path, refusing keys outside the store."""
        if not key or PurePath(key).name != key or key in (".", ".."):
            raise ValidationError(f"Invalid receipt key '{key}'")
        return self._root / key

    async def delete(self, key: str) -> None:
        path = self.resolve(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            logger.warning("receipt_delete_failed", key=key, error=str(exc))
