"""Background detection of user inactivity."""

from __future__ import annotations

import ctypes
import logging
import sys
import threading
from datetime import timedelta
from typing import Optional, Protocol

from .controller import ActivityController

logger = logging.getLogger(__name__)


class IdleProbe(Protocol):
    def milliseconds_since_input(self) -> int: ...


class WindowsIdleDetector:
    """Reads the time since the last keyboard or mouse input via Win32 APIs."""

    def __init__(self) -> None:
        from ctypes import wintypes

        class LASTINPUTINFO(ctypes.Structure):
            _fields_ = [("cbSize", wintypes.UINT), ("dwTime", wintypes.DWORD)]

        self._info_type = LASTINPUTINFO
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]

    def milliseconds_since_input(self) -> int:
        last_input = self._info_type()
        last_input.cbSize = ctypes.sizeof(last_input)
        if not self._user32.GetLastInputInfo(ctypes.byref(last_input)):
            raise ctypes.WinError()  # type: ignore[attr-defined]
        elapsed = self._kernel32.GetTickCount64() - last_input.dwTime
        return int(elapsed)


def default_idle_probe() -> Optional[IdleProbe]:
    if sys.platform == "win32":
        return WindowsIdleDetector()
    return None


class InactivityMonitor:
    """Periodically checks the controller for user inactivity.

    With an idle probe the time of the last input is fed into the controller
    before each check; without one the controller relies on
    :meth:`ActivityController.record_user_activity` being called by the UI.
    """

    def __init__(
        self,
        controller: ActivityController,
        *,
        interval: Optional[timedelta] = None,
        probe: Optional[IdleProbe] = None,
    ) -> None:
        self._controller = controller
        self._interval = interval or controller.settings.sample_interval
        self._probe = probe
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def sample_once(self) -> bool:
        """Run one check; returns True if the user was just flagged inactive."""
        if self._probe is not None:
            try:
                idle_ms = self._probe.milliseconds_since_input()
            except Exception:  # pragma: no cover - platform specific
                logger.exception("Failed to query idle state; skipping sample.")
            else:
                now = self._controller.now()
                self._controller.record_user_activity(now - timedelta(milliseconds=idle_ms))
        return self._controller.check_inactivity()

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_loop,
                args=(stop_event,),
                name="inactivity-monitor",
                daemon=True,
            )
            self._thread = thread
            self._stop_event = stop_event
            thread.start()
            logger.info(
                "Inactivity monitor started; sampling every %.0f seconds.",
                self._interval.total_seconds(),
            )

    def stop(self) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive() or not self._stop_event:
                return
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        if thread:
            thread.join(timeout=self._interval.total_seconds() + 5)
            logger.info("Inactivity monitor stopped.")

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def _run_loop(self, stop_event: threading.Event) -> None:
        interval = self._interval.total_seconds()
        while not stop_event.is_set():
            try:
                self.sample_once()
            except Exception:
                logger.exception("Inactivity check failed.")
            stop_event.wait(interval)
