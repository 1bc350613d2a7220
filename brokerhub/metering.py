"""Usage metering providers: a no-op one and one that reports over HTTP."""

from __future__ import annotations

import json
import threading
from typing import Any, Dict, Mapping, Optional

from brokerhub.logs import log_error
from brokerhub.periodic import Repeater
from brokerhub.transport import HttpClient, HttpError
from brokerhub.usage import Meter

_DEFAULT_INTERVAL = 1.0
_CLIENT_TIMEOUT = 30.0


def _interval_seconds(config: Mapping[str, Any], default: float) -> float:
    value = config.get("interval")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value) / 1000.0
    return default


class NoopMetering:
    """Hands out fresh meters and keeps nothing."""

    def __init__(self) -> None:
        self.config: Dict[str, Any] = {}

    def name(self) -> str:
        """Return the provider name."""
        return "noop"

    def configure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Keep the configuration; it has no effect on this provider."""
        self.config = dict(config or {})

    def get(self, contract_id: int) -> Meter:
        """Return a new meter for the contract."""
        return Meter(contract_id)


class HttpMetering:
    """Keeps a meter per contract and periodically posts their usage."""

    def __init__(self, client: Optional[HttpClient] = None) -> None:
        self.client = client
        self.url: Optional[str] = None
        self.headers: Dict[str, str] = {}
        self._counters: Dict[int, Meter] = {}
        self._lock = threading.Lock()
        self._repeater: Optional[Repeater] = None

    def name(self) -> str:
        """Return the provider name."""
        return "http"

    def configure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Set the target url and start periodic reporting."""
        if config is None:
            raise ValueError("Configuration was not provided for HTTP metering provider")

        interval = _interval_seconds(config, _DEFAULT_INTERVAL)
        headers = {"Accept": "application/binary"}
        authorization = config.get("authorization")
        if isinstance(authorization, str):
            headers["Authorization"] = authorization

        if "url" not in config:
            raise ValueError(
                "The 'url' parameter was not provided in the configuration for HTTP metering provider"
            )

        self.url = str(config["url"])
        self.headers = headers
        if self.client is None:
            self.client = HttpClient(_CLIENT_TIMEOUT)
        self.close()
        self._repeater = Repeater(interval, self.store)

    def get(self, contract_id: int) -> Meter:
        """Return the meter of a contract, creating it on first use."""
        with self._lock:
            return self._counters.setdefault(contract_id, Meter(contract_id))

    def store(self) -> None:
        """Reset every meter and post the collected usage."""
        with self._lock:
            meters = list(self._counters.values())
        body = json.dumps([meter.reset().to_dict() for meter in meters]).encode("utf-8")

        try:
            if self.client is None or self.url is None:
                raise HttpError("metering provider is not configured")
            self.client.post(self.url, body, self.headers)
        except HttpError as err:
            log_error("http metering", "reporting counters", err)

    def close(self) -> None:
        """Stop periodic reporting."""
        if self._repeater is not None:
            self._repeater.cancel()
            self._repeater = None