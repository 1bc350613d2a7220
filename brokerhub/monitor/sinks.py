"""Stats sinks: one that does nothing, one that posts over HTTP, one that self-publishes."""

from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from brokerhub.logs import log_error
from brokerhub.periodic import Repeater
from brokerhub.transport import HttpClient, HttpError

DEFAULT_INTERVAL = 5.0
_SELF_INTERVAL = 1.0
_CLIENT_TIMEOUT = 30.0


class Snapshotter(Protocol):
    """Anything that can produce an encoded snapshot of its stats."""

    def snapshot(self) -> bytes: ...


class _Poster(Protocol):
    def post(self, url: str, body: bytes, headers: Any = None) -> bytes: ...


def interval_from(config: Optional[Mapping[str, Any]], default: float) -> float:
    """Read the ``interval`` setting, given in milliseconds, as seconds."""
    if config is None:
        return default
    value = config.get("interval")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value) / 1000.0
    return default


def _hardware_id() -> str:
    return f"{uuid.getnode():012x}"


class NoopMonitor:
    """A stats sink which sends nothing anywhere."""

    def __init__(self) -> None:
        self.config: Dict[str, Any] = {}
        self.closed = False

    def name(self) -> str:
        """Return the provider name."""
        return "noop"

    def configure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Keep the configuration; it has no effect on this sink."""
        self.config = dict(config or {})

    def close(self) -> None:
        """Mark the sink as closed; there is nothing to release."""
        self.closed = True


class HttpMonitor:
    """Periodically posts stats snapshots to a url."""

    def __init__(self, reader: Optional[Snapshotter], client: Optional[_Poster] = None) -> None:
        self.reader = reader
        self.client = client
        self.url: Optional[str] = None
        self.headers: Dict[str, str] = {}
        self._repeater: Optional[Repeater] = None

    def name(self) -> str:
        """Return the provider name."""
        return "http"

    def configure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Set the target url and start posting periodically."""
        if config is None:
            raise ValueError("Configuration was not provided for HTTP storage")

        interval = interval_from(config, DEFAULT_INTERVAL)
        headers = {"Accept": "application/binary"}
        authorization = config.get("authorization")
        if isinstance(authorization, str):
            headers["Authorization"] = authorization

        if "url" not in config:
            raise ValueError(
                "The 'url' parameter was not provided in the configuration for HTTP storage"
            )

        self.url = str(config["url"])
        self.headers = headers
        if self.client is None:
            self.client = HttpClient(_CLIENT_TIMEOUT)
        self.close()
        self._repeater = Repeater(interval, self.write)

    def write(self) -> None:
        """Take a snapshot and post it if it holds anything."""
        if self.reader is None:
            return
        snapshot = self.reader.snapshot()
        if not snapshot:
            return
        try:
            if self.client is None or self.url is None:
                raise HttpError("http stats sink is not configured")
            self.client.post(self.url, snapshot, self.headers)
        except HttpError as err:
            log_error("http stats", "sending stats", err)

    def close(self) -> None:
        """Stop posting."""
        if self._repeater is not None:
            self._repeater.cancel()
            self._repeater = None


class SelfMonitor:
    """Periodically publishes stats snapshots into a channel of the broker itself."""

    def __init__(
        self,
        reader: Snapshotter,
        publish: Callable[[str, bytes], None],
        hardware_id: Optional[str] = None,
    ) -> None:
        self.reader = reader
        self.channel = "stats"
        self._publish = publish
        self._hardware_id = hardware_id if hardware_id is not None else _hardware_id()
        self._repeater: Optional[Repeater] = None

    def name(self) -> str:
        """Return the provider name."""
        return "self"

    def configure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Set the channel and start publishing periodically."""
        interval = interval_from(config, _SELF_INTERVAL)
        if config is not None and "channel" in config:
            self.channel = str(config["channel"])

        self.channel = f"{self.channel}/{self._hardware_id}/"
        self.close()
        self._repeater = Repeater(interval, self.write)

    def write(self) -> None:
        """Take a snapshot and publish it if it holds anything."""
        snapshot = self.reader.snapshot()
        if snapshot:
            self._publish(self.channel, snapshot)

    def close(self) -> None:
        """Stop publishing."""
        if self._repeater is not None:
            self._repeater.cancel()
            self._repeater = None