# Overview: In-process registry of kiosk checkout sessions.

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from .camera import CameraDevice
from .checkout_engine import CheckoutSession
from .verification_gateway import VerificationGateway

logger = logging.getLogger(__name__)


class KioskSessionNotFoundError(Exception):
    """Unknown or expired kiosk session id."""
    pass


class KioskSessionRegistry:
    """
    Holds the live CheckoutSession of each kiosk, keyed by session id.

    Sessions idle for longer than ttl_seconds are cancelled (which releases
    any camera they hold) and dropped, unless a verification is in flight.
    """

    def __init__(
        self,
        gateway: VerificationGateway,
        camera_factory: Callable[[], CameraDevice] | None = None,
        result_display_delay: float = 2.0,
        ttl_seconds: int = 1800,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.gateway = gateway
        self.camera_factory = camera_factory
        self.result_display_delay = result_display_delay
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, CheckoutSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> CheckoutSession:
        session = CheckoutSession(
            gateway=self.gateway,
            camera_factory=self.camera_factory,
            result_display_delay=self.result_display_delay,
            clock=self._clock,
        )
        with self._lock:
            self._purge_expired()
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> CheckoutSession:
        with self._lock:
            self._purge_expired()
            session = self._sessions.get(session_id)
        if session is None:
            raise KioskSessionNotFoundError(f"Kiosk session {session_id} not found")
        return session

    def discard(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise KioskSessionNotFoundError(f"Kiosk session {session_id} not found")
        session.cancel()

    def _purge_expired(self) -> None:
        # caller holds the lock
        now = self._clock()
        expired = [
            sid for sid, session in self._sessions.items()
            if now - session.last_activity > self.ttl_seconds and not session.verification_in_flight
        ]
        for sid in expired:
            session = self._sessions.pop(sid)
            session.cancel()
            logger.info("Expired idle kiosk session %s", sid)
