from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from .manager import ContentIndexManager
from .models import CleanupOptions

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Runs integrity verification followed by retention cleanup on an interval."""

    def __init__(
        self,
        manager: ContentIndexManager,
        interval_seconds: int,
        cleanup_options: Optional[CleanupOptions] = None,
        flask_app=None,
    ) -> None:
        self.manager = manager
        self.interval_seconds = max(0, int(interval_seconds))
        self.cleanup_options = cleanup_options or CleanupOptions()
        self.flask_app = flask_app
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._run_lock = threading.Lock()
        self.last_run: Optional[Dict[str, Any]] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        if self.interval_seconds <= 0:
            logger.info("Index maintenance disabled (interval 0)")
            return False
        if self.running:
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="index-maintenance", daemon=True)
        self._thread.start()
        logger.info("Index maintenance scheduled every %s seconds", self.interval_seconds)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def run_once(self) -> Optional[Dict[str, Any]]:
        """Run one verify + cleanup pass; None when a pass is already running."""
        if not self._run_lock.acquire(blocking=False):
            return None
        try:
            if self.flask_app is not None:
                # Favorites and history live behind Flask-SQLAlchemy
                with self.flask_app.app_context():
                    return self._run()
            return self._run()
        finally:
            self._run_lock.release()

    def _run(self) -> Dict[str, Any]:
        report = self.manager.verify_integrity()
        result = self.manager.cleanup(self.cleanup_options)
        self.last_run = {"integrity": report.to_dict(), "cleanup": result.to_dict()}
        return self.last_run

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Index maintenance pass failed")


__all__ = ["MaintenanceScheduler"]
