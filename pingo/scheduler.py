"""Continuous ping monitoring loop."""

import logging

from PySide6.QtCore import QObject, QThreadPool, QTimer, Signal, Slot

from pingo.collector import Collector
from pingo.collector_ping import PingRound, parse_ping_stats, validate_target
from pingo.database import StatsStore
from pingo.errors import StorageError
from pingo.models import PingStats
from pingo.workers import ProbeWorker

logger = logging.getLogger(__name__)

ROUND_DELAY_MS = 5000
COOLDOWN_MS = 5000


class MonitorLoop(QObject):
    """Runs ping rounds against one target forever and records the results.

    Each tick starts one ProbeWorker on the thread pool. When its output
    comes back on the Qt main thread it is parsed, appended to the store
    (which also applies retention), and the next tick is scheduled.

    Key features:
    - At most one round in flight; ticks that find one running are skipped
    - Rounds that fail (parse, storage, or worker errors) are logged and
      retried after a cool-down; the loop never stops on its own
    - Output of a failed ping command is still recorded, since it carries
      the packet loss

    Thread-safe: all state access on the Qt main thread via signals/slots.
    """

    # Signals
    stats_saved = Signal(object)  # PingStats
    round_failed = Signal(str)  # error message

    def __init__(
        self,
        collector: Collector,
        store: StatsStore,
        target: str,
        ping_count: int,
        retention_days: int,
        round_delay_ms: int = ROUND_DELAY_MS,
        cooldown_ms: int = COOLDOWN_MS,
        parent=None,
    ):
        """Initialize monitor loop.

        Args:
            collector: Collector used for each round
            store: Store receiving one record per round
            target: Host or IP address to ping
            ping_count: Echo requests per round
            retention_days: Records older than this are pruned on every append
            round_delay_ms: Pause between successful rounds
            cooldown_ms: Pause after a failed round
            parent: Qt parent object
        """
        super().__init__(parent)

        self.collector = collector
        self.store = store
        self.target = target
        self.ping_count = ping_count
        self.retention_days = retention_days
        self.round_delay_ms = round_delay_ms
        self.cooldown_ms = cooldown_ms

        # Round tracking
        self._in_flight = False
        self._worker = None  # keeps the running worker's signals alive
        self._rounds = 0
        self._failures = 0
        self._last_stats: PingStats | None = None

        # Threading
        self.thread_pool = QThreadPool.globalInstance()

        # Single-shot timer, re-armed after every round
        self.timer = QTimer(self)
        self.timer.setSingleShot(True)
        self.timer.timeout.connect(self._tick)

        # Monitoring state
        self.is_monitoring = False

    def start(self):
        """Start monitoring; the first round runs immediately.

        Raises:
            InvalidTargetError: the configured target is not pingable
        """
        if self.is_monitoring:
            return

        validate_target(self.target)

        self.is_monitoring = True
        self.timer.start(0)
        logger.info(
            "Starting continuous ping monitoring to %s with %d pings per round",
            self.target,
            self.ping_count,
        )

    def stop(self):
        """Stop scheduling further rounds. A round in flight is discarded."""
        if not self.is_monitoring:
            return

        self.is_monitoring = False
        self.timer.stop()
        logger.info("Monitoring stopped after %d rounds", self._rounds)

    def record_round(self, ping_round: PingRound) -> int:
        """Parse and store one round's output.

        Returns:
            Delay in milliseconds before the next round should start
        """
        try:
            stats = parse_ping_stats(ping_round.output, ping_round.completed_at)
            if ping_round.failed:
                logger.info(
                    "Ping command failed: returncode=%s (packet loss: %.1f%%)",
                    ping_round.returncode,
                    stats.packet_loss,
                )
            self.store.append(stats, self.retention_days)
        except StorageError as e:
            logger.error("Failed to save stats: %s", e)
            self._round_failed(str(e))
            return self.cooldown_ms
        except Exception as e:
            logger.exception("Failed to record ping round: %s", e)
            self._round_failed(str(e))
            return self.cooldown_ms

        self._rounds += 1
        self._last_stats = stats
        self._log_saved(stats)
        self.stats_saved.emit(stats)
        return self.round_delay_ms

    def _tick(self):
        """Handle timer tick - start a probe round unless one is running."""
        if not self.is_monitoring:
            return

        if self._in_flight:
            logger.debug("Tick skipped: round already in flight")
            return

        self._in_flight = True
        logger.debug("Running ping round...")

        worker = ProbeWorker(self.collector, self.target, self.ping_count)
        worker.signals.round_ready.connect(self._on_round_ready)
        worker.signals.error.connect(self._on_round_error)
        worker.signals.finished.connect(self._on_worker_finished)
        self._worker = worker

        self.thread_pool.start(worker)

    @Slot(object)
    def _on_round_ready(self, ping_round):
        self._in_flight = False
        # Only process if still monitoring
        if not self.is_monitoring:
            return
        self._schedule(self.record_round(ping_round))

    @Slot(str)
    def _on_round_error(self, error_msg):
        self._in_flight = False
        logger.error("Ping round error: %s", error_msg)
        self._round_failed(error_msg)
        self._schedule(self.cooldown_ms)

    @Slot()
    def _on_worker_finished(self):
        self._worker = None

    def _schedule(self, delay_ms: int):
        if self.is_monitoring:
            self.timer.start(delay_ms)

    def _round_failed(self, error_msg: str):
        self._failures += 1
        self.round_failed.emit(error_msg)

    def _log_saved(self, stats: PingStats):
        if not stats.has_latency:
            logger.info("Saved stats: no data available (packet loss: %.1f%%)", stats.packet_loss)
        elif stats.packet_loss > 0:
            logger.info(
                "Saved stats: min=%.3f avg=%.3f max=%.3f stddev=%.3f ms (packet loss: %.1f%%)",
                stats.min,
                stats.avg,
                stats.max,
                stats.stddev,
                stats.packet_loss,
            )
        else:
            logger.info(
                "Saved stats: min=%.3f avg=%.3f max=%.3f stddev=%.3f ms",
                stats.min,
                stats.avg,
                stats.max,
                stats.stddev,
            )

    def get_stats(self):
        """Get monitor loop statistics.

        Returns:
            Dict with loop state info
        """
        return {
            "target": self.target,
            "monitoring": self.is_monitoring,
            "in_flight": self._in_flight,
            "rounds": self._rounds,
            "failures": self._failures,
            "last_timestamp": self._last_stats.timestamp if self._last_stats else None,
        }
