"""Stats sinks: no-op, HTTP, self-publishing, statsd and Prometheus."""