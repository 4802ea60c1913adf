# Overview: Camera devices used to photograph a payment proof at the kiosk.

from __future__ import annotations

import base64


class CameraUnavailableError(Exception):
    """The camera could not be opened or produced no frame."""
    pass


def encode_still(frame: str | bytes, mime_type: str = "image/jpeg") -> str:
    """Encode a raw frame as a data URL still image. Data URLs pass through."""
    if isinstance(frame, bytes):
        return f"data:{mime_type};base64,{base64.b64encode(frame).decode('ascii')}"
    if frame.startswith("data:"):
        return frame
    return f"data:{mime_type};base64,{frame}"


class CameraDevice:
    """
    Exclusive camera resource.

    open() acquires the device, release() gives it back and must be safe to
    call more than once. Usable as a context manager.
    """

    def open(self) -> None:
        raise NotImplementedError

    def capture_still(self) -> str:
        raise NotImplementedError

    def push_frame(self, frame: str | bytes) -> None:
        raise CameraUnavailableError("This camera does not accept frames from the client")

    def release(self) -> None:
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class UnavailableCamera(CameraDevice):
    """Stand-in for hosts with no camera: opening always fails."""

    def open(self) -> None:
        raise CameraUnavailableError("No camera device on this host")

    def capture_still(self) -> str:
        raise CameraUnavailableError("No camera device on this host")

    def release(self) -> None:
        pass

    @property
    def is_open(self) -> bool:
        return False


class KioskCamera(CameraDevice):
    """
    Camera living on the kiosk front-end.

    The front-end reports whether it obtained the device and pushes the
    current frame; capture_still() encodes the latest frame.
    """

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self._open = False
        self._frame: str | bytes | None = None

    def open(self) -> None:
        if not self.available:
            raise CameraUnavailableError("Kiosk could not access the camera")
        self._open = True

    def push_frame(self, frame: str | bytes) -> None:
        if not self._open:
            raise CameraUnavailableError("Camera is not open")
        self._frame = frame

    def capture_still(self) -> str:
        if not self._open:
            raise CameraUnavailableError("Camera is not open")
        if not self._frame:
            raise CameraUnavailableError("No frame received from the camera")
        return encode_still(self._frame)

    def release(self) -> None:
        self._open = False
        self._frame = None

    @property
    def is_open(self) -> bool:
        return self._open
