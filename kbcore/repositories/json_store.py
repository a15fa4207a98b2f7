"""Document store persisted to a single JSON file."""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Union

from ..errors import PersistenceError
from ..logging_config import get_logger
from .memory import Collections, InMemoryDocumentStore

logger = get_logger(__name__)

FILE_VERSION = 1


class JSONFileDocumentStore(InMemoryDocumentStore):
    """In-memory store that rewrites a JSON file on every commit.

    The file is written to a temporary sibling and moved into place, so a
    crash mid-write leaves the previous contents intact.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(initial=self._read_file())

    def _read_file(self) -> Collections:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(
                f"Failed to read data file {self.path}: {e}", retryable=False
            ) from e

        collections = payload.get("collections", {})
        logger.info(
            f"Loaded {sum(len(docs) for docs in collections.values())} documents from {self.path}"
        )
        return collections

    async def _persist(self, staged: Collections) -> None:
        try:
            await asyncio.to_thread(self._write_file, staged)
        except OSError as e:
            raise PersistenceError(f"Failed to write data file {self.path}: {e}") from e

    def _write_file(self, staged: Collections) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(
                    {"version": FILE_VERSION, "collections": staged},
                    f,
                    indent=2,
                    default=str,
                )
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
