from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from backend.app.api import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredFile:
    path: str
    size: int
    content_type: str
    url: str


class FileStore(Protocol):
    def save(self, path: str, data: bytes, content_type: str) -> StoredFile:
        ...


class LocalFileStore:
    """Writes generated files below a root directory (GENERATED_DOCS_DIR)."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or config.generated_docs_dir()).resolve()

    def _target(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"storage path escapes root: {path}")
        return target

    def save(self, path: str, data: bytes, content_type: str) -> StoredFile:
        target = self._target(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Stored %s bytes at %s", len(data), target)
        return StoredFile(path=path, size=len(data), content_type=content_type, url=target.as_uri())

    def read(self, path: str) -> bytes:
        return self._target(path).read_bytes()
