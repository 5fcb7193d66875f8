"""
Flat key-value string store.

Older plugin versions persisted view state as JSON strings under flat keys,
scoped per installation and device:

    vertical-tabs-<installation-id>-<device-id>:view-state

LocalStorage mirrors that model in a single JSON file. Writes go to a
temporary file first and are renamed into place.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

from vtbeta_helper.errors import StorageError
from vtbeta_helper.logging import get_logger

logger = get_logger(__name__)

VIEW_STATE_KEY = "view-state"
VIEW_STATE_KEY_PATTERN = re.compile(r"^vertical-tabs-.+-.+:view-state$")


class LocalStorage:
    """
    JSON-file backed string store with localStorage-like operations.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._items: dict[str, str] | None = None

    def _load(self) -> dict[str, str]:
        if self._items is not None:
            return self._items

        if not self.path.exists():
            self._items = {}
            return self._items

        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(
                f"Failed to read local storage: {e}",
                details={"path": str(self.path)},
            ) from e

        if not isinstance(data, dict):
            raise StorageError(
                "Local storage file is not a JSON object",
                details={"path": str(self.path)},
            )
        self._items = {str(k): str(v) for k, v in data.items()}
        return self._items

    def _save(self) -> None:
        items = self._load()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.path.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(items, f, indent=2, sort_keys=True)
            temp_file.replace(self.path)
        except OSError as e:
            raise StorageError(
                f"Failed to write local storage: {e}",
                details={"path": str(self.path)},
            ) from e

    def keys(self) -> list[str]:
        return list(self._load().keys())

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        self._load()[key] = value
        self._save()

    def remove_item(self, key: str) -> None:
        items = self._load()
        if key in items:
            del items[key]
            self._save()


def find_view_state_keys(storage: LocalStorage) -> list[str]:
    """
    List the keys holding view state.

    The bare "view-state" key is always included, followed by every
    installation/device scoped key present in the store.
    """
    keys = [VIEW_STATE_KEY]
    keys.extend(k for k in storage.keys() if VIEW_STATE_KEY_PATTERN.match(k))
    return keys
