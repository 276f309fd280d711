"""Persistent key/value storage for client-held state"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import yaml

from ..config.logging import get_logger
from ..core.exceptions import StorageError

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """Minimal local-storage style interface"""

    @abstractmethod
    def get_item(self, key: str) -> Any: ...

    @abstractmethod
    def set_item(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def remove_item(self, key: str) -> None: ...


class MemoryStore(KeyValueStore):
    """In-process store, optionally refusing writes like a disabled browser store"""

    def __init__(self, initial: dict[str, Any] | None = None, writable: bool = True):
        self.data: dict[str, Any] = dict(initial or {})
        self.writable = writable

    def get_item(self, key: str) -> Any:
        return self.data.get(key)

    def set_item(self, key: str, value: Any) -> None:
        if not self.writable:
            raise StorageError(f"Store is read-only, cannot write {key}")
        self.data[key] = value

    def remove_item(self, key: str) -> None:
        if not self.writable:
            raise StorageError(f"Store is read-only, cannot remove {key}")
        self.data.pop(key, None)


class FileStore(KeyValueStore):
    """YAML document under the client state directory"""

    def __init__(self, state_dir: Path, filename: str = "state.yaml"):
        self.state_dir = Path(state_dir)
        self.state_file = self.state_dir / filename

    def load(self) -> dict[str, Any]:
        """Load every stored key; unreadable files read as empty"""
        if not self.state_file.exists():
            return {}

        try:
            with open(self.state_file) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable state file", path=str(self.state_file), error=str(e))
            return {}

        if not isinstance(data, dict):
            logger.warning("Ignoring malformed state file", path=str(self.state_file))
            return {}
        return data

    def save(self, data: dict[str, Any]) -> None:
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with open(self.state_file, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False)
        except OSError as e:
            raise StorageError(f"Failed to write {self.state_file}: {e}") from e

    def get_item(self, key: str) -> Any:
        return self.load().get(key)

    def set_item(self, key: str, value: Any) -> None:
        data = self.load()
        data[key] = value
        self.save(data)

    def remove_item(self, key: str) -> None:
        data = self.load()
        if key in data:
            del data[key]
            self.save(data)
