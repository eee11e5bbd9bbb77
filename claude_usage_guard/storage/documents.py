"""
JSON document access.

Reads are best-effort snapshots; writes replace the whole document
atomically so a concurrent reader never sees a half-written file.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoadStatus(Enum):
    """How a stored document was obtained."""
    LOADED = "loaded"      # Parsed with every field present
    MISSING = "missing"    # No document yet, defaults used
    PARTIAL = "partial"    # Parsed, some fields filled with defaults
    REJECTED = "rejected"  # Unreadable or malformed, defaults used


@dataclass(frozen=True)
class LoadResult(Generic[T]):
    """A loaded value together with how it was obtained."""
    value: T
    status: LoadStatus
    error: Optional[str] = None

    @property
    def fell_back(self) -> bool:
        """True when the value is defaults rather than stored data."""
        return self.status in (LoadStatus.MISSING, LoadStatus.REJECTED)


class DocumentError(Exception):
    """Raised when a document exists but cannot be read or parsed."""


def read_json(path: Path) -> Optional[Any]:
    """Read a JSON document.

    Args:
        path: Path to the document

    Returns:
        Parsed JSON value, or None if the file does not exist

    Raises:
        DocumentError: If the file exists but cannot be read or parsed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DocumentError(f"Could not read {path}: {e}") from e


def write_json(path: Path, data: Any) -> bool:
    """Atomically replace a JSON document.

    The data is written to a temporary file in the same directory and moved
    over the target with ``os.replace``.

    Args:
        path: Path to the document
        data: JSON-serializable value

    Returns:
        True if the document was written, False on failure (already logged)
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_name, path)
        tmp_name = None
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error("Error saving %s: %s", path, e)
        return False
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError as e:
                logger.debug("Could not remove temporary file %s: %s", tmp_name, e)
