"""ICMP ping collector for pingo using the system ping command."""

import ipaddress
import logging
import math
import platform
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime

from pingo.errors import InvalidTargetError, ProbeExecutionError
from pingo.models import PingStats, utc_now

logger = logging.getLogger(__name__)

SHELL_METACHARACTERS = frozenset(";|&`$(){}[]<>\n\r")

_HOSTNAME_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)*$"
)

# "3 packets transmitted, 0 packets received, 100.0% packet loss"
# "3 packets transmitted, 3 received, 0% packet loss, time 2003ms"
_PACKET_LOSS_RE = re.compile(r"([0-9.]+)% packet loss")

# macOS: "round-trip min/avg/max/stddev = 9.713/11.739/13.595/1.849 ms"
# Linux: "rtt min/avg/max/mdev = 8.106/8.247/8.387/0.106 ms"
_SUMMARY_RE = re.compile(
    r"(?:round-trip|rtt) min/avg/max/(?:stddev|mdev) = "
    r"([0-9.]+|nan)/([0-9.]+|nan)/([0-9.]+|nan)/([0-9.]+|nan) ms"
)


def validate_target(target: str) -> None:
    """Reject targets that are not a plain IP address or DNS hostname.

    The check runs before any process is spawned so that nothing resembling
    shell syntax ever reaches the ping command line.

    Raises:
        InvalidTargetError: if the target contains shell metacharacters or
            is neither an IP address nor a well-formed hostname.
    """
    if not target:
        raise InvalidTargetError("invalid target: empty")

    if any(ch in SHELL_METACHARACTERS for ch in target):
        raise InvalidTargetError("invalid target: contains shell metacharacters")

    try:
        ipaddress.ip_address(target)
        return
    except ValueError:
        pass

    if not _HOSTNAME_RE.match(target):
        raise InvalidTargetError("invalid target: not a valid hostname or IP address")


def _parse_float(text: str) -> float | None:
    try:
        value = float(text)
    except ValueError:
        return None
    # A single reply leaves the spread undefined ("nan")
    return 0.0 if math.isnan(value) else value


def parse_ping_stats(output: str | None, completed_at: datetime | None = None) -> PingStats:
    """Parse a ping round summary from command output (pure function).

    Never raises: output from a failed round, an unresolvable host or
    garbage text still yields a record, with 100% loss and no latency.

    Args:
        output: Raw ping output (stdout and stderr combined)
        completed_at: Completion time of the round (naive UTC); defaults to now

    Returns:
        PingStats with latency fields set only when a summary line was found

    Examples:
        >>> parse_ping_stats("ping: cannot resolve bad.host: Unknown host").packet_loss
        100.0
    """
    timestamp = completed_at if completed_at is not None else utc_now()
    output = output or ""

    packet_loss = 100.0
    match = _PACKET_LOSS_RE.search(output)
    if match:
        parsed = _parse_float(match.group(1))
        if parsed is not None:
            packet_loss = parsed

    match = _SUMMARY_RE.search(output)
    if not match:
        return PingStats(timestamp=timestamp, packet_loss=packet_loss)

    values = [_parse_float(group) for group in match.groups()]
    if any(value is None for value in values):
        logger.debug("Unparseable summary line: %s", match.group(0))
        return PingStats(timestamp=timestamp, packet_loss=packet_loss)

    min_ms, avg_ms, max_ms, stddev_ms = values
    return PingStats(
        timestamp=timestamp,
        packet_loss=packet_loss,
        min=min_ms,
        avg=avg_ms,
        max=max_ms,
        stddev=stddev_ms,
    )


@dataclass
class PingRound:
    """Raw result of one ping invocation."""

    output: str
    returncode: int | None
    completed_at: datetime = field(default_factory=utc_now)

    @property
    def failed(self) -> bool:
        return self.returncode != 0


class PingCollector:
    """Collector that runs the OS ping command for one round of echo requests.

    A non-zero exit status is not treated as an error: ping exits non-zero on
    partial or total loss, and its output still carries the loss figures.
    """

    def __init__(self, deadline_seconds: float | None = None):
        """Initialize ping collector.

        Args:
            deadline_seconds: Upper bound for one round. Defaults to the
                round's ping count interpreted as seconds.
        """
        if deadline_seconds is not None and deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be positive")

        self.deadline_seconds = deadline_seconds
        self.system = platform.system()

        logger.debug(
            "PingCollector initialized: deadline=%s, system=%s",
            deadline_seconds,
            self.system,
        )

    def run_round(self, target: str, count: int) -> PingRound:
        """Run one round of `count` echo requests against `target`.

        Raises:
            InvalidTargetError: target failed validation; nothing was run.
        """
        validate_target(target)
        if count <= 0:
            raise ValueError("count must be positive")

        try:
            return self._execute(target, count)
        except ProbeExecutionError as e:
            logger.warning("Ping could not run: target=%s, error=%s", target, e)
            return PingRound(output="", returncode=None)

    def _execute(self, target: str, count: int) -> PingRound:
        cmd = self._build_ping_command(target, count)
        deadline = self.deadline_seconds or float(count)

        logger.debug("Executing ping: %s (deadline=%.1fs)", " ".join(cmd), deadline)

        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=deadline + 1.0,  # ping's own deadline should fire first
                shell=False,
            )
        except subprocess.TimeoutExpired as e:
            output = e.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            logger.debug("Ping timeout: target=%s, deadline=%.1fs", target, deadline)
            return PingRound(output=output, returncode=None)
        except OSError as e:
            raise ProbeExecutionError(str(e)) from e

        if result.returncode != 0:
            logger.debug(
                "Ping exited non-zero: target=%s, returncode=%d",
                target,
                result.returncode,
            )

        return PingRound(output=result.stdout or "", returncode=result.returncode)

    def _build_ping_command(self, target: str, count: int) -> list[str]:
        """Build platform-specific ping command."""
        if self.system == "Linux":
            # -w is a deadline for the whole run, in seconds
            return ["ping", "-c", str(count), "-w", str(count), target]

        elif self.system == "Darwin":
            # macOS -t is the overall timeout in seconds
            return ["ping", "-c", str(count), "-t", str(count), target]

        else:
            return ["ping", "-c", str(count), target]
