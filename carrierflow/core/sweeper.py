import threading
from typing import Optional

from carrierflow.observability.logging import log


class Sweeper:
    """Background thread that periodically drops expired in-flight entries."""

    def __init__(self, manager, reconciler=None, interval_sec: float = 60):
        self.manager = manager
        self.reconciler = reconciler
        self.interval_sec = interval_sec
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> dict:
        counts = self.manager.sweep_expired()
        if self.reconciler is not None:
            counts["webhookFingerprints"] = self.reconciler.sweep()
        return counts

    def _loop(self):
        while not self._stop.wait(self.interval_sec):
            try:
                self.run_once()
            except Exception as e:
                # next tick retries
                log(event="sweep_failed", error=str(e))

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        if self.interval_sec <= 0 or self.running:
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="carrierflow-sweeper", daemon=True)
        self._thread.start()
        log(event="sweeper_started", intervalSec=self.interval_sec)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
