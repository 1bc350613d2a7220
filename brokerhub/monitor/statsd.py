"""A stats sink that sends gauges and histograms to a statsd daemon over UDP.

Snapshots read by this sink are JSON objects mapping a metric name to the
list of its samples.
"""

from __future__ import annotations

import json
import socket
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from brokerhub.monitor.sinks import DEFAULT_INTERVAL, Snapshotter, interval_from
from brokerhub.periodic import Repeater

_MAX_PACKET_SIZE = 1440
_DEFAULT_ADDRESS = ":8125"
_GAUGE_PREFIXES = frozenset({"proc", "heap", " mcache", "mspan", "stack", "gc", "go"})
_HISTOGRAM_PREFIXES = frozenset({"rcv", "send"})

Tags = Union[Mapping[str, str], Iterable[Tuple[str, str]], None]
Number = Union[int, float]


def _format_value(value: Number) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _restore(snapshot: bytes) -> Dict[str, List[Number]]:
    try:
        data = json.loads(snapshot)
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise ValueError("snapshot is not valid JSON") from err
    if not isinstance(data, dict):
        raise ValueError("snapshot is not a mapping of metrics")
    metrics: Dict[str, List[Number]] = {}
    for name, samples in data.items():
        if not isinstance(samples, list) or not all(
            isinstance(s, (int, float)) and not isinstance(s, bool) for s in samples
        ):
            raise ValueError(f"metric {name!r} does not hold a list of numbers")
        metrics[name] = samples
    return metrics


class StatsdClient:
    """Buffers statsd lines with Datadog-style tags and sends them over UDP."""

    def __init__(self, address: str = _DEFAULT_ADDRESS, prefix: str = "", tags: Tags = None) -> None:
        host, sep, port_text = address.rpartition(":")
        if not sep:
            raise ValueError(f"statsd address {address!r} has no port")
        try:
            port = int(port_text)
        except ValueError as err:
            raise ValueError(f"statsd address {address!r} has an invalid port") from err
        host = host.strip("[]") or "127.0.0.1"

        family, kind, proto, _, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
        self._socket = socket.socket(family, kind, proto)
        try:
            self._socket.connect(sockaddr)
        except OSError:
            self._socket.close()
            raise

        self.prefix = prefix
        pairs = tags.items() if isinstance(tags, Mapping) else (tags or ())
        rendered = ",".join(f"{key}:{value}" for key, value in pairs)
        self._suffix = f"|#{rendered}" if rendered else ""
        self._buffer: List[str] = []
        self._size = 0
        self._lock = threading.Lock()
        self._closed = False

    def gauge(self, name: str, value: Number) -> None:
        """Queue a gauge value."""
        self._queue(name, value, "g")

    def histogram(self, name: str, value: Number) -> None:
        """Queue a histogram sample."""
        self._queue(name, value, "h")

    def flush(self) -> None:
        """Send everything queued so far."""
        with self._lock:
            self._flush_locked()

    def close(self) -> None:
        """Send what is queued and release the socket."""
        with self._lock:
            if self._closed:
                return
            self._flush_locked()
            self._closed = True
            self._socket.close()

    def _queue(self, name: str, value: Number, kind: str) -> None:
        full_name = f"{self.prefix}.{name}" if self.prefix else name
        line = f"{full_name}:{_format_value(value)}|{kind}{self._suffix}"
        with self._lock:
            if self._closed:
                return
            if self._buffer and self._size + 1 + len(line) > _MAX_PACKET_SIZE:
                self._flush_locked()
            self._size += len(line) + (1 if self._buffer else 0)
            self._buffer.append(line)

    def _flush_locked(self) -> None:
        if self._closed or not self._buffer:
            return
        payload = "\n".join(self._buffer).encode("utf-8")
        self._buffer = []
        self._size = 0
        try:
            self._socket.send(payload)
        except OSError:
            pass  # statsd delivery is best effort

    def __enter__(self) -> "StatsdClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class StatsdMonitor:
    """Periodically sends node, process and traffic metrics to statsd."""

    def __init__(self, reader: Optional[Snapshotter], node_id: str) -> None:
        self.reader = reader
        self.node_id = node_id
        self.client: Optional[StatsdClient] = None
        self._repeater: Optional[Repeater] = None

    def name(self) -> str:
        """Return the provider name."""
        return "statsd"

    def configure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Connect to the statsd daemon and start sending periodically."""
        interval = interval_from(config, DEFAULT_INTERVAL)
        address = _DEFAULT_ADDRESS
        if config is not None and "url" in config:
            address = str(config["url"])

        self.close()
        self.client = StatsdClient(address, "emitter", [("broker", self.node_id)])
        self._repeater = Repeater(interval, self.write)

    def write(self) -> None:
        """Read a snapshot and send its metrics."""
        if self.reader is None or self.client is None:
            return
        try:
            metrics = _restore(self.reader.snapshot())
        except ValueError:
            return

        for name in ("node.peers", "node.conns", "node.subs"):
            self._gauge(metrics, name)

        for name in metrics:
            prefix = name.split(".")[0]
            if prefix in _GAUGE_PREFIXES:
                self._gauge(metrics, name)
            elif prefix in _HISTOGRAM_PREFIXES:
                self._histogram(metrics, name)

        self.client.flush()

    def _gauge(self, metrics: Mapping[str, List[Number]], name: str) -> None:
        samples = metrics.get(name)
        if samples is not None and self.client is not None:
            self.client.gauge(name, max(samples, default=0))

    def _histogram(self, metrics: Mapping[str, List[Number]], name: str) -> None:
        samples = metrics.get(name)
        if samples is not None and self.client is not None:
            for sample in samples:
                self.client.histogram(name, sample)

    def close(self) -> None:
        """Stop sending and close the client."""
        if self._repeater is not None:
            self._repeater.cancel()
            self._repeater = None
        if self.client is not None:
            self.client.close()
            self.client = None