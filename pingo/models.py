"""Data models for pingo statistics."""

from dataclasses import InitVar, dataclass
from datetime import datetime, timezone


@dataclass
class PingStats:
    """Summary of one ping round.

    Latency fields are None when no reply summary was available for the
    round. They are never replaced by a sentinel value such as 0.
    """

    timestamp: datetime  # naive, UTC
    packet_loss: float
    min: float | None = None
    avg: float | None = None
    max: float | None = None
    stddev: float | None = None
    normalize: InitVar[bool] = True

    def __post_init__(self, normalize):
        """Ensure consistency between latency fields and packet_loss.

        Records read back from storage pass normalize=False so stored values
        round-trip exactly.
        """
        if not normalize:
            return

        self.packet_loss = min(100.0, max(0.0, float(self.packet_loss)))

        latency = (self.min, self.avg, self.max, self.stddev)
        if any(value is None for value in latency):
            # Partial latency data is never kept; no latency means total loss
            self.min = self.avg = self.max = self.stddev = None
            self.packet_loss = 100.0

    @property
    def has_latency(self) -> bool:
        return self.avg is not None

    def to_dict(self) -> dict:
        """Serialize to the JSON shape served by the HTTP API."""
        return {
            "timestamp": self.timestamp.isoformat() + "Z",
            "min": self.min,
            "avg": self.avg,
            "max": self.max,
            "stddev": self.stddev,
            "packet_loss": self.packet_loss,
        }


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the storage form)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
