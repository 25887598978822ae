"""Fake ping collector for pingo testing and simulation."""

import random
import statistics

from pingo.collector_ping import PingRound, validate_target


class FakeCollector:
    """Generates fake Linux-style ping output for testing."""

    def __init__(self, seed: int | None = None):
        """Initialize with optional random seed for deterministic behavior."""
        # Create isolated random instance for thread safety
        self._random = random.Random(seed)

        # Simulation parameters
        self.base_latency = 25.0  # Base latency in ms
        self.latency_variance = 5.0  # Normal variance
        self.spike_probability = 0.05  # 5% chance of latency spike
        self.spike_multiplier = 3.0  # Spike makes latency 3x higher
        self.loss_probability = 0.02  # 2% chance per echo request

    def run_round(self, target: str, count: int) -> PingRound:
        """Generate one round of ping output for the given target."""
        validate_target(target)
        if count <= 0:
            raise ValueError("count must be positive")

        lines = [f"PING {target} ({target}) 56(84) bytes of data."]
        times = []
        for seq in range(1, count + 1):
            if self._random.random() < self.loss_probability:
                continue
            latency = self._sample_latency()
            times.append(latency)
            lines.append(f"64 bytes from {target}: icmp_seq={seq} ttl=117 time={latency:.3f} ms")

        loss = 100.0 * (count - len(times)) / count
        lines.append("")
        lines.append(f"--- {target} ping statistics ---")
        lines.append(
            f"{count} packets transmitted, {len(times)} received, {loss:g}% packet loss, "
            f"time {count * 1000}ms"
        )
        if times:
            mdev = statistics.pstdev(times) if len(times) > 1 else 0.0
            lines.append(
                f"rtt min/avg/max/mdev = {min(times):.3f}/{statistics.fmean(times):.3f}/"
                f"{max(times):.3f}/{mdev:.3f} ms"
            )

        return PingRound(output="\n".join(lines) + "\n", returncode=0 if times else 1)

    def _sample_latency(self) -> float:
        if self._random.random() < self.spike_probability:
            # Latency spike
            latency = self.base_latency * self.spike_multiplier + self._random.gauss(
                0, self.latency_variance
            )
        else:
            latency = self.base_latency + self._random.gauss(0, self.latency_variance)

        # Ensure latency is positive
        return max(0.1, latency)
