"""JSON Lines history of reported action outcomes."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


class OutcomeJournal:
    """One JSON object per reported outcome, appended to ``log_path``.

    Entries carry the action, its scope label, the status, an optional
    failure detail and how long the action took. Write errors are logged and
    never interrupt orchestration.
    """

    def __init__(self, log_path: str | Path):
        self.log_path = Path(log_path).expanduser()
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def record(
        self,
        action: str,
        scope: str,
        status: str,
        duration_ms: float,
        detail: Optional[str] = None,
    ) -> None:
        line = json.dumps({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "scope": scope,
            "status": status,
            "detail": detail,
            "duration_ms": round(duration_ms, 2),
        })
        try:
            with self.log_path.open("a", encoding="utf-8") as journal:
                journal.write(f"{line}\n")
        except OSError as e:
            logger.warning(f"Failed to write outcome journal {self.log_path}: {e}")
