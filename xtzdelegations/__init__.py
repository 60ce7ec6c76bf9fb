"""Tezos delegation service: a TzKT poller, SQL storage and a paginated HTTP API."""

__version__ = "1.0.0"