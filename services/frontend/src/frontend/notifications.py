from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Literal

from common.utils import now_utc_iso

LOGGER = logging.getLogger("jobboard.frontend")


@dataclass
class Notification:
    level: Literal["success", "error"]
    message: str
    created_at: str


class Notifier:
    """User-visible toasts, drained by the UI."""

    def __init__(self, max_pending: int = 50) -> None:
        self.pending: deque[Notification] = deque(maxlen=max_pending)

    def success(self, message: str) -> None:
        self._push("success", message)

    def error(self, message: str) -> None:
        self._push("error", message)

    def drain(self) -> list[Notification]:
        drained = list(self.pending)
        self.pending.clear()
        return drained

    def _push(self, level: Literal["success", "error"], message: str) -> None:
        notification = Notification(level=level, message=message, created_at=now_utc_iso())
        self.pending.append(notification)
        log = LOGGER.info if level == "success" else LOGGER.warning
        log(json.dumps({"event": "notification", **asdict(notification)}))
