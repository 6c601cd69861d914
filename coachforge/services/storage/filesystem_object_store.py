"""Object store that keeps JSON blobs on the local filesystem."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

from coachforge.services.storage.base import ObjectStore


logger = logging.getLogger(__name__)


class FilesystemObjectStore(ObjectStore):
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path_for(self, key: str) -> Path:
        parts = Path(key).parts
        if not key or Path(key).is_absolute() or ".." in parts:
            raise ValueError(f"Invalid object key: {key!r}")
        return self.root.joinpath(*parts)

    def put_json(self, key: str, payload: Dict[str, Any]) -> str:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, default=str), encoding="utf-8")
        tmp_path.replace(path)
        logger.debug("Stored object %s (%d bytes)", key, path.stat().st_size)
        return key

    def get_json(self, key: str) -> Dict[str, Any]:
        return json.loads(self._path_for(key).read_text(encoding="utf-8"))
