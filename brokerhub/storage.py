"""Message storage that keeps nothing, and configuration helpers for storages."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

DEFAULT_RETAIN = 2592000  # 30 days, in seconds


def config_uint32(config: Optional[Mapping[str, Any]], name: str, default: int) -> int:
    """Read a positive number from the config as an unsigned 32-bit integer."""
    if config is None:
        return default
    value = config.get(name)
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return int(value) & 0xFFFFFFFF
    return default


class NoopStorage:
    """A storage which stores nothing and finds nothing.

    It only counts what passed through it, so callers can see it was used.
    """

    def __init__(self) -> None:
        self.config: Dict[str, Any] = {}
        self.discarded = 0
        self.queries = 0
        self.surveys = 0
        self.closed = False

    def name(self) -> str:
        """Return the provider name."""
        return "noop"

    def configure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Accept any configuration, keeping a copy of it."""
        self.config = dict(config or {})

    def store(self, message: Any) -> None:
        """Discard the message."""
        self.discarded += 1

    def query(self, ssid: Any, from_time: Any, until: Any, start_from_id: Any, limit: int) -> List[Any]:
        """Return no messages."""
        self.queries += 1
        found: List[Any] = []
        return found

    def on_survey(self, survey_type: str, payload: bytes) -> Tuple[bytes, bool]:
        """Answer any survey with an empty, successful response."""
        self.surveys += 1
        return bytes(), True

    def close(self) -> None:
        """Mark the storage as closed; there is nothing to release."""
        self.closed = True