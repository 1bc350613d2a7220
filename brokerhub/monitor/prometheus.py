"""A stats sink that keeps Prometheus gauges and histograms and renders them as text.

Snapshots read by this sink are JSON objects mapping a metric name to the
list of its samples.
"""

from __future__ import annotations

import json
import math
import re
import threading
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from brokerhub.monitor.sinks import DEFAULT_INTERVAL, Snapshotter, interval_from
from brokerhub.periodic import Repeater

Number = Union[int, float]

DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*\Z")
_GAUGE_METRICS = ("node.peers", "node.conns", "node.subs")
_HISTOGRAM_PREFIXES = frozenset({"rcv", "send"})


def format_value(value: Number) -> str:
    """Format a sample value the way the Prometheus text format writes it."""
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "0"
    number = Decimal(repr(value)).normalize()
    digits = len(number.as_tuple().digits)
    point = digits + number.as_tuple().exponent
    exponent = point - 1
    if exponent < -4 or exponent >= 6:
        return f"{value:.{digits - 1}e}"
    return f"{value:.{max(digits - point, 0)}f}"


def _check_name(name: str) -> str:
    if not _NAME_RE.match(name):
        raise ValueError(f"invalid metric name {name!r}")
    return name


def _labels(labels: Mapping[str, str]) -> str:
    if not labels:
        return ""
    inner = ",".join(
        f'{key}="{value.replace(chr(92), chr(92) * 2).replace(chr(34), chr(92) + chr(34))}"'
        for key, value in labels.items()
    )
    return "{" + inner + "}"


class Gauge:
    """A value that can go up and down."""

    def __init__(self, name: str) -> None:
        self.name = _check_name(name)
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        """The current value."""
        with self._lock:
            return self._value

    def set(self, value: Number) -> None:
        """Set the gauge to ``value``."""
        with self._lock:
            self._value = float(value)

    def render(self) -> str:
        """Render the gauge in the text exposition format."""
        return f"# TYPE {self.name} gauge\n{self.name} {format_value(self.value)}"


class _Counter:
    """A monotonically increasing count with fixed labels."""

    def __init__(self, name: str, labels: Optional[Mapping[str, str]] = None) -> None:
        self.name = _check_name(name)
        self._labels = dict(labels or {})
        self._value = 0.0
        self._lock = threading.Lock()

    def inc(self, amount: Number = 1) -> None:
        if amount < 0:
            raise ValueError("a counter cannot decrease")
        with self._lock:
            self._value += amount

    def render(self) -> str:
        with self._lock:
            value = self._value
        return f"# TYPE {self.name} counter\n{self.name}{_labels(self._labels)} {format_value(value)}"


class Histogram:
    """Counts observations into cumulative buckets and tracks their sum."""

    def __init__(self, name: str, buckets: Optional[Sequence[Number]] = None) -> None:
        self.name = _check_name(name)
        bounds = [float(b) for b in (DEFAULT_BUCKETS if buckets is None else buckets)]
        if bounds and math.isinf(bounds[-1]) and bounds[-1] > 0:
            bounds.pop()
        if any(later <= earlier for earlier, later in zip(bounds, bounds[1:])):
            raise ValueError("histogram buckets must be in strictly increasing order")
        self._bounds = tuple(bounds)
        self._counts = [0] * len(bounds)
        self._count = 0
        self._sum = 0.0
        self._lock = threading.Lock()

    @property
    def buckets(self) -> tuple:
        """The upper bounds of the buckets, without +Inf."""
        return self._bounds

    def observe(self, value: Number) -> None:
        """Record one observation."""
        value = float(value)
        with self._lock:
            for position, bound in enumerate(self._bounds):
                if value <= bound:
                    self._counts[position] += 1
                    break
            self._count += 1
            self._sum += value

    def render(self) -> str:
        """Render the histogram in the text exposition format."""
        with self._lock:
            counts = list(self._counts)
            total, total_sum = self._count, self._sum
        lines = [f"# TYPE {self.name} histogram"]
        cumulative = 0
        for bound, count in zip(self._bounds, counts):
            cumulative += count
            lines.append(f'{self.name}_bucket{{le="{format_value(bound)}"}} {cumulative}')
        lines.append(f'{self.name}_bucket{{le="+Inf"}} {total}')
        lines.append(f"{self.name}_sum {format_value(total_sum)}")
        lines.append(f"{self.name}_count {total}")
        return "\n".join(lines)


class Registry:
    """Holds uniquely named metrics and renders them together."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(self, metric: Any) -> Any:
        """Add a metric; a name may only be registered once."""
        with self._lock:
            if metric.name in self._metrics:
                raise ValueError(f"metric {metric.name!r} is already registered")
            self._metrics[metric.name] = metric
        return metric

    def render(self) -> str:
        """Render every metric, sorted by name."""
        with self._lock:
            metrics = [self._metrics[name] for name in sorted(self._metrics)]
        return "".join(metric.render() + "\n" for metric in metrics)


def _read_snapshot(snapshot: bytes) -> Dict[str, List[Number]]:
    try:
        data = json.loads(snapshot)
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise ValueError("snapshot is not valid JSON") from err
    if not isinstance(data, dict):
        raise ValueError("snapshot is not a mapping of metrics")
    for name, samples in data.items():
        if not isinstance(samples, list) or not all(
            isinstance(s, (int, float)) and not isinstance(s, bool) for s in samples
        ):
            raise ValueError(f"metric {name!r} does not hold a list of numbers")
    return data


def _metric_name(metric: str) -> str:
    return metric.replace(".", "_")


class PrometheusMonitor:
    """Periodically turns stats snapshots into Prometheus metrics."""

    def __init__(self, reader: Optional[Snapshotter]) -> None:
        self.reader = reader
        self.registry = Registry()
        self._gauges: Dict[str, Gauge] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._requests = self.registry.register(
            _Counter("promhttp_metric_handler_requests_total", {"code": "200"})
        )
        self._threads = self.registry.register(Gauge("python_threads"))
        self._lock = threading.Lock()
        self._repeater: Optional[Repeater] = None

    def name(self) -> str:
        """Return the provider name."""
        return "prometheus"

    def configure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Start reading snapshots periodically."""
        interval = interval_from(config, DEFAULT_INTERVAL)
        self.close()
        self._repeater = Repeater(interval, self.write)

    def write(self) -> None:
        """Read a snapshot and feed its metrics into gauges and histograms."""
        if self.reader is None:
            return
        try:
            metrics = _read_snapshot(self.reader.snapshot())
        except ValueError:
            return

        for metric in _GAUGE_METRICS:
            self._gauge(metrics, metric)

        for metric in metrics:
            if metric.split(".")[0] in _HISTOGRAM_PREFIXES:
                self._histogram(metrics, metric)

    def render(self) -> str:
        """Render all metrics, as served on the metrics endpoint."""
        self._threads.set(threading.active_count())
        text = self.registry.render()
        self._requests.inc()
        return text

    def close(self) -> None:
        """Stop reading snapshots."""
        if self._repeater is not None:
            self._repeater.cancel()
            self._repeater = None

    def _gauge(self, metrics: Mapping[str, List[Number]], metric: str) -> None:
        samples = metrics.get(metric)
        if samples is None:
            return
        with self._lock:
            gauge = self._gauges.get(metric)
            if gauge is None:
                gauge = self.registry.register(Gauge(_metric_name(metric)))
                self._gauges[metric] = gauge
        gauge.set(max(samples, default=0))

    def _histogram(self, metrics: Mapping[str, List[Number]], metric: str) -> None:
        samples: Iterable[Number] = metrics.get(metric) or ()
        for sample in samples:
            with self._lock:
                histogram = self._histograms.get(metric)
                if histogram is None:
                    histogram = self.registry.register(Histogram(_metric_name(metric)))
                    self._histograms[metric] = histogram
            histogram.observe(sample)