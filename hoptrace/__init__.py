"""hoptrace: per-hop HTTP latency breakdown with redirect tracing."""

__version__ = "0.1.0"
