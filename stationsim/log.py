import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Tuple


@dataclass(frozen=True)
class LogEntry:
    text: str
    timestamp: datetime


class EventLog:
    """Append-only stream of human readable lines for the operator console.

    Every entry is also written to the standard logger.
    """

    def __init__(self):
        self._entries: List[LogEntry] = []

    def append(self, text: str, level: int = logging.INFO) -> LogEntry:
        entry = LogEntry(text, datetime.now(timezone.utc))
        self._entries.append(entry)
        logging.log(level, text)
        return entry

    def since(self, index: int) -> Tuple[LogEntry, ...]:
        return tuple(self._entries[max(index, 0):])

    def texts(self) -> List[str]:
        return [e.text for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
