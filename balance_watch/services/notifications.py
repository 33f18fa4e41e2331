"""In-memory channel for one-shot notices raised by the balance monitor."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, List

logger = logging.getLogger(__name__)


class NoticeKind(str, Enum):
    RECONFIGURE = "reconfigure"
    CONFIG_ERROR = "config_error"
    CONFIG_UPDATED = "config_updated"


@dataclass(slots=True)
class Notice:
    """A single message meant to be shown to the user once."""

    kind: NoticeKind
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationCenter:
    """Bounded FIFO of notices; consumers drain it and show each notice once."""

    def __init__(self, max_pending: int = 20) -> None:
        self._pending: Deque[Notice] = deque(maxlen=max_pending)

    def push(self, kind: NoticeKind, message: str) -> Notice:
        notice = Notice(kind=kind, message=message)
        self._pending.append(notice)
        if kind is NoticeKind.CONFIG_UPDATED:
            logger.info(message)
        else:
            logger.warning("%s: %s", kind.value, message)
        return notice

    def drain(self) -> List[Notice]:
        notices = list(self._pending)
        self._pending.clear()
        return notices

    def __len__(self) -> int:
        return len(self._pending)


__all__ = ["Notice", "NoticeKind", "NotificationCenter"]
