"""
Persisted record of the most recent failed command.

There is exactly one record. Saving overwrites it (last write wins, no
locking); a missing file means there is nothing to analyze.
"""

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_RECORD_PATH = "~/.pkgrecovery/last_error.json"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LastErrorRecord:
    command: str
    exit_code: int
    stdout: str
    stderr: str
    timestamp: str = field(default_factory=_now)

    @classmethod
    def from_dict(cls, data: dict) -> "LastErrorRecord":
        return cls(
            command=str(data["command"]),
            exit_code=int(data["exit_code"]),
            stdout=str(data["stdout"]),
            stderr=str(data["stderr"]),
            timestamp=str(data.get("timestamp", "")),
        )


class LastErrorStore:
    """JSON-file storage for the single LastErrorRecord."""

    def __init__(self, path: str | Path = DEFAULT_RECORD_PATH):
        self.path = Path(os.path.expanduser(str(path)))

    def save(self, record: LastErrorRecord) -> Path:
        """Write the record, replacing any previous one."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Sibling temp file plus rename: readers never see half a record
        fd, tmp_name = tempfile.mkstemp(prefix=".last_error.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(asdict(record), f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("Saved last error record for: %s", record.command)
        return self.path

    def load(self) -> LastErrorRecord | None:
        """Return the record, or None when it is missing or unreadable."""
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable last error record %s: %s", self.path, e)
            return None

        try:
            return LastErrorRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring malformed last error record %s: %s", self.path, e)
            return None

    def clear(self) -> bool:
        """Delete the record. Returns True if one existed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Cleared last error record")
        return True

    def exists(self) -> bool:
        return self.path.exists()
