"""NDJSON session journal with sequence numbers and daily rotation."""

from __future__ import annotations

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, TextIO


class NdjsonLogger:
    """Append-only NDJSON journal of poller status, readings and errors."""

    def __init__(self, log_dir: str, file_prefix: str = "poller", mode: str = "regular") -> None:
        self.log_dir = Path(log_dir)
        self.file_prefix = file_prefix
        self.mode = mode  # regular or verbose

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._seq = 0
        self._current_file: Optional[TextIO] = None
        self._current_date: Optional[str] = None
        self._start_time_ns = time.monotonic_ns()

        self._rotate_if_needed()

    @property
    def current_path(self) -> Optional[Path]:
        """Path of the file currently written to."""
        if self._current_date is None:
            return None
        return self.log_dir / f"{self.file_prefix}_{self._current_date}.ndjson"

    def log(
        self,
        msg_type: str,
        msg: str,
        address: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Write one structured record."""
        if msg_type == "debug" and self.mode == "regular":
            return

        self._rotate_if_needed()
        self._seq += 1

        ts_ms = (time.monotonic_ns() - self._start_time_ns) / 1_000_000

        record = {
            "seq": self._seq,
            "type": msg_type,
            "ts_ms": round(ts_ms, 3),
            "msg": msg,
        }
        if address is not None:
            record["address"] = address
        if data is not None:
            record["data"] = data
        record["hms"] = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        if self._current_file:
            json.dump(record, self._current_file, separators=(",", ":"), ensure_ascii=False)
            self._current_file.write("\n")
            self._current_file.flush()

    def event(
        self,
        msg: str,
        address: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log an event message (readings)."""
        self.log("event", msg, address=address, data=data)

    def status(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log a status message."""
        self.log("status", msg, data=data)

    def error(
        self,
        msg: str,
        address: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log an error message."""
        self.log("error", msg, address=address, data=data)

    def debug(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log a debug message (dropped in regular mode)."""
        self.log("debug", msg, data=data)

    def close(self) -> None:
        if self._current_file:
            self._current_file.close()
            self._current_file = None

    def _rotate_if_needed(self) -> None:
        """Rotate log file if date has changed."""
        current_date = datetime.now().strftime("%Y%m%d")

        if self._current_date != current_date:
            if self._current_file:
                self._current_file.close()

            log_path = self.log_dir / f"{self.file_prefix}_{current_date}.ndjson"
            self._current_file = log_path.open("a", encoding="utf-8", buffering=1)
            self._current_date = current_date

    def __enter__(self) -> NdjsonLogger:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
