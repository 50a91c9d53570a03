# durable key/value cache on the local machine, the storefront's "local storage"
from __future__ import annotations

import json
import os
import tempfile
from typing import Any, Dict, Optional

from utils.logger import get_logger

_logger = get_logger(__name__)

CART_KEY = "cart"
TOKEN_KEY = "auth_token"


class LocalCache:
    """
    JSON document on disk, one value per key.

    Reads never raise: a missing or corrupt file reads as empty (the corrupt
    file is discarded). Writes replace the whole value of a key.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def _read_all(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            _logger.warning(f"Local cache at {self.path} unreadable, discarding: {exc}")
            self._discard()
            return {}
        if not isinstance(data, dict):
            _logger.warning(f"Local cache at {self.path} has unexpected shape, discarding")
            self._discard()
            return {}
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        parent = os.path.dirname(self.path) or "."
        os.makedirs(parent, exist_ok=True)
        # write-then-rename so a crash never leaves half a file behind
        fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=".cache-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _discard(self) -> None:
        try:
            os.remove(self.path)
        except OSError:
            pass

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)
