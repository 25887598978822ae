"""Collector abstraction for pingo probe sources."""

from typing import Protocol

from pingo.collector_ping import PingRound


class Collector(Protocol):
    """Protocol defining the interface for ping round collectors."""

    def run_round(self, target: str, count: int) -> PingRound:
        """Run one probe round against the target and return its raw output."""
        ...
