from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict
import threading

from src.schemas import UnmaskEvent


class OpsLogger:
    """Append-only JSONL logger for run events and summaries.

    - Writes one JSON object per line to a file (UTF-8, newline-delimited)
    - Thread-safe (coarse lock)
    - Best-effort: never raises to caller
    - Callable, so it can be attached directly as a broadcaster subscriber
    """

    def __init__(self, file_path: Path, also_stdout: bool = False) -> None:
        self.file_path = Path(file_path)
        self.also_stdout = bool(also_stdout)
        self._lock = threading.Lock()
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
        except Exception:
            pass

    def __call__(self, event: UnmaskEvent) -> None:
        self.emit_event(event)

    def emit_event(self, event: UnmaskEvent) -> None:
        try:
            record = {"unmask_ops": 1, "ts": datetime.now(timezone.utc).isoformat()}
            record.update(event.model_dump(mode="json", exclude_none=True))
        except Exception:
            record = {"unmask_ops": 1, "_serialization_error": True, "record_str": str(event)}
        self.emit(record)

    def emit(self, record: Dict[str, Any]) -> None:
        try:
            line = json.dumps(record, ensure_ascii=False, default=str)
        except Exception:
            # Last resort: stringify
            try:
                line = json.dumps({"unmask_ops": 1, "_serialization_error": True, "record_str": str(record)})
            except Exception:
                return
        try:
            with self._lock:
                with self.file_path.open("a", encoding="utf-8") as f:
                    f.write(line)
                    f.write("\n")
        except Exception:
            # Never propagate logging errors
            pass
        if self.also_stdout:
            try:
                print(line)
            except Exception:
                pass
