"""Worker classes for background probe rounds."""

import logging

from PySide6.QtCore import QObject, QRunnable, Signal

from pingo.collector import Collector

logger = logging.getLogger(__name__)


class WorkerSignals(QObject):
    """Signals for communicating between worker threads and main thread."""

    round_ready = Signal(object)  # Emits PingRound
    error = Signal(str)  # Emits error message
    finished = Signal()  # Emits when worker completes


class ProbeWorker(QRunnable):
    """Worker that executes collector.run_round() in a background thread."""

    def __init__(self, collector: Collector, target: str, count: int):
        super().__init__()
        self.collector = collector
        self.target = target
        self.count = count
        self.signals = WorkerSignals()

    def run(self):
        """Execute the probe round in background thread."""
        try:
            logger.debug("Worker starting: target=%s, count=%d", self.target, self.count)

            # Blocks for up to the round deadline
            ping_round = self.collector.run_round(self.target, self.count)

            self.signals.round_ready.emit(ping_round)

            logger.debug(
                "Worker completed: target=%s, returncode=%s",
                self.target,
                ping_round.returncode,
            )

        except Exception as e:
            logger.exception("Worker exception: target=%s, error=%s", self.target, str(e))
            self.signals.error.emit(str(e))

        finally:
            # Always signal completion
            self.signals.finished.emit()
