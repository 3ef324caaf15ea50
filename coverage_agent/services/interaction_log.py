"""Append-only JSONL log of completed requests, one file per UTC day.

Each line is ``{timestamp, requestId, conversationId, userMessage,
aiResponse, processingTime}``.  Writing is best-effort: I/O errors are
logged and never interrupt the reply flow.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class InteractionLog:
    """Writes one JSON record per answered message when enabled."""

    def __init__(self, directory: str | Path, *, enabled: bool = True) -> None:
        self._directory = Path(directory)
        self._enabled = enabled
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def path_for(self, when: datetime) -> Path:
        return self._directory / f"{when.strftime('%Y-%m-%d')}.jsonl"

    def record(
        self,
        *,
        request_id: str,
        conversation_id: int | str | None,
        user_message: str,
        ai_response: str,
        processing_ms: float,
    ) -> None:
        if not self._enabled:
            return

        now = datetime.now(UTC)
        entry = {
            "timestamp": now.isoformat(),
            "requestId": request_id,
            "conversationId": conversation_id,
            "userMessage": user_message,
            "aiResponse": ai_response,
            "processingTime": round(processing_ms),
        }
        line = json.dumps(entry, ensure_ascii=False) + "\n"

        try:
            with self._lock:
                self._directory.mkdir(parents=True, exist_ok=True)
                with self.path_for(now).open("a", encoding="utf-8") as fh:
                    fh.write(line)
        except OSError:
            logger.exception("[%s] Could not write interaction log", request_id)
