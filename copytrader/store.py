"""Key-document persistence for ledger and runtime state.

Documents are plain JSON objects stored one file per key under the data
directory. Writes go to a temp file first and are moved into place with
os.replace so a crash never leaves a half-written document.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """Opaque key -> JSON document store."""

    def load(self, key: str) -> Optional[dict[str, Any]]: ...

    def save(self, key: str, document: dict[str, Any]) -> None: ...


class JsonDocumentStore:
    """File-backed DocumentStore rooted at a data directory."""

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    def path_for(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def load(self, key: str) -> Optional[dict[str, Any]]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("document_load_failed", extra={"key": key}, exc_info=True)
            return None
        if not isinstance(data, dict):
            logger.warning("document_not_object", extra={"key": key})
            return None
        return data

    def save(self, key: str, document: dict[str, Any]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.data_dir), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp, str(self.path_for(key)))
        except Exception:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise


class MemoryDocumentStore:
    """In-process DocumentStore, used for dry runs and tests."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}

    def load(self, key: str) -> Optional[dict[str, Any]]:
        doc = self.documents.get(key)
        return json.loads(json.dumps(doc)) if doc is not None else None

    def save(self, key: str, document: dict[str, Any]) -> None:
        self.documents[key] = json.loads(json.dumps(document))
