"""
State Store
Narrow persistence interface for monitor snapshots and its flat-file backend

The dashboard front end reads these snapshots directly, so every save
replaces the whole document atomically; readers see the old snapshot or the
new one, never a partial write.
"""
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from tankwatch.core.error_handling import PersistenceError, ErrorCode

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Load and save named JSON-compatible snapshots"""

    @abstractmethod
    def load_snapshot(self, name: str, default: Any = None) -> Any:
        """
        Return the stored snapshot, or default when it is missing or unreadable.
        """

    @abstractmethod
    def save_snapshot(self, name: str, data: Any) -> None:
        """
        Replace the stored snapshot.

        Raises:
            PersistenceError: If the write fails
        """

    def close(self) -> None:
        """Release backend resources"""


class JsonFileStateStore(StateStore):
    """
    Stores each snapshot as <data_dir>/<filename>.

    Features:
    - Pretty-printed JSON, matching what the dashboard expects
    - Atomic replace via a temporary file in the same directory
    - Configurable file names per snapshot
    """

    def __init__(
        self,
        data_dir: str = "public/data",
        filenames: Optional[Dict[str, str]] = None
    ):
        """
        Initialize JSON file store.

        Args:
            data_dir: Directory holding the snapshot files
            filenames: Optional mapping snapshot name -> file name;
                       defaults to '<name>.json'
        """
        self.data_dir = Path(data_dir)
        self.filenames = dict(filenames or {})

    def path_for(self, name: str) -> Path:
        return self.data_dir / self.filenames.get(name, f"{name}.json")

    def load_snapshot(self, name: str, default: Any = None) -> Any:
        path = self.path_for(name)
        if not path.exists():
            return default

        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {path}: {e}")
            return default

    def save_snapshot(self, name: str, data: Any) -> None:
        path = self.path_for(name)
        tmp_path = None

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.data_dir), prefix=f".{path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(
                f"Error writing {path}: {e}",
                details={'snapshot': name, 'path': str(path)},
                error_code=ErrorCode.SNAPSHOT_WRITE_ERROR
            ) from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
