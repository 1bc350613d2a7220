# brokerhub

Pluggable providers for a publish/subscribe message broker. Each provider has
a `name()` method and accepts a loosely typed `configure(config)` dictionary,
so a broker can choose one by name from its configuration. Intervals in these
dictionaries are given in milliseconds.

The package uses only the Python standard library.

## Modules

- `brokerhub.logs`: `StderrLogger` writes `%`-formatted lines to a stream
  (standard error by default), prefixed with a `YYYY/MM/DD HH:MM:SS` timestamp
  unless `timestamps=False`. The process-wide logger can be read with
  `get_logger()` and replaced with `set_logger(logger)`, which returns the
  previous one. The helpers `log_error`, `log_action` and `log_target` write
  lines such as `[storage] error during query lookup (disk full)`,
  `[a] b` and `[a] b (123)`.
- `brokerhub.periodic`: `repeat(interval, action)` returns a `Repeater` that
  calls `action` every `interval` seconds on a daemon thread until `cancel()`
  is called. It also works as a context manager. Exceptions raised by the
  action are logged and do not stop the repeater.
- `brokerhub.transport`: `HttpClient(timeout)` with `get(url, headers)` and
  `post(url, body, headers)`, both returning the response body. Failures and
  non-success statuses raise `HttpError`, whose `status` holds the HTTP status
  when there was one.
- `brokerhub.usage`: `Meter(contract)` counts ingress and egress messages and
  bytes (`add_ingress`, `add_egress`) and estimates distinct devices
  (`add_device`, `device_count`) with a `HyperLogLog` sketch. The sketch is
  exact while small and switches to registers once large; it can be merged
  and serialised with `to_bytes` / `HyperLogLog.from_bytes`. `Meter.reset()`
  zeroes the meter and returns an `EncodedUsage` snapshot, which can be turned
  back into a meter with `to_usage()` or into a JSON-friendly dict with
  `to_dict()`. `Meter.merge(other)` adds another meter's counts and devices.
- `brokerhub.metering`: `NoopMetering` hands out a fresh `Meter` on every
  `get`. `HttpMetering` keeps one meter per contract and, once configured,
  periodically resets all meters and posts their usage as a JSON list to the
  configured url.
- `brokerhub.storage`: `NoopStorage`, a message storage that discards what it
  is given, answers queries with an empty list and surveys with
  `(b"", True)`; and `config_uint32(config, name, default)`, which reads a
  positive number from a configuration as an unsigned 32-bit integer.
- `brokerhub.monitor.sinks`: `NoopMonitor`; `HttpMonitor`, which periodically
  posts stats snapshots to a url; and `SelfMonitor`, which periodically
  passes snapshots to a publish callback on the channel
  `<channel>/<hardware id>/` (channel `stats` by default).
- `brokerhub.monitor.statsd`: `StatsdClient` buffers gauge and histogram lines
  with Datadog-style tags and sends them over UDP. `StatsdMonitor` reads
  snapshots, JSON objects mapping a metric name to a list of samples, and
  sends the largest sample of `node.peers`, `node.conns`, `node.subs` and of
  process metrics as gauges, and every sample of `rcv.*` and `send.*` metrics
  as histogram values, under the prefix `emitter` and the tag `broker:<node id>`.
  The default address is `:8125`, meaning `127.0.0.1:8125`.
- `brokerhub.monitor.prometheus`: `Gauge`, `Histogram` and `Registry`, which
  render the Prometheus text exposition format. `PrometheusMonitor` reads the
  same JSON snapshots, keeps a gauge for each of `node.peers`, `node.conns`
  and `node.subs` and a histogram for each `rcv.*` and `send.*` metric (dots
  become underscores in names), and its `render()` returns the text for all
  of them together with a request counter and a thread-count gauge.

## Examples

Metering:

```python
from brokerhub.metering import NoopMetering

metering = NoopMetering()
meter = metering.get(42)
meter.add_ingress(128)
meter.add_device("device-a")
print(meter.device_count())  # 1
```

A periodic HTTP stats sink:

```python
from brokerhub.monitor.sinks import HttpMonitor

class Reader:
    def snapshot(self) -> bytes:
        return b"stats"

sink = HttpMonitor(Reader())
sink.configure({
    "url": "http://localhost:8080/stats",
    "interval": 5000.0,
    "authorization": "Bearer token",
})
# ...
sink.close()
```

Prometheus text:

```python
import json
from brokerhub.monitor.prometheus import PrometheusMonitor

class Reader:
    def snapshot(self) -> bytes:
        return json.dumps({"node.peers": [2], "rcv.bytes": [0.5, 3]}).encode()

monitor = PrometheusMonitor(Reader())
monitor.write()
print(monitor.render())
```

## What it does not do

- There are no contract providers; nothing here validates security keys.
- `NoopStorage` is the only message storage: messages are not kept, and
  there is no on-disk or in-memory store to query.
- `PrometheusMonitor` does not serve HTTP; serve the output of `render()`
  from your own server.
- There is no command-line program.

## Running the tests

```
pip install .[test]
pytest
```