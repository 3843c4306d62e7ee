"""wtmigrate: webtask migration tooling built on a bounded-concurrency task engine."""

__version__ = "0.1.0"
