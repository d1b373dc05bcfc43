"""
camera/capture.py — Driver-facing camera availability probe.

The takeover core never looks at pixels: attentiveness samples are
simulated. The camera is opened only to learn whether a real sensor is
present, which decides the sensor source reported to the HUD. A missing or
unreadable camera raises SensorUnavailable inside open(); callers catch it
and keep running on simulated samples.
"""

import os
import sys
from typing import Optional, Tuple

import cv2
import numpy as np

# Allow imports from project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
import config
from takeover_engine.errors import SensorUnavailable
from core.logger import get_logger

log = get_logger(__name__)


class CameraCapture:
    """
    Wraps OpenCV VideoCapture for the availability probe.

    Usage:
        cam = CameraCapture()
        try:
            cam.open()
            source = "camera"
        except SensorUnavailable:
            source = "simulated"
        ...
        cam.release()
    """

    def __init__(
        self,
        camera_index: int = config.CAMERA_INDEX,
        width: int = config.CAMERA_WIDTH,
        height: int = config.CAMERA_HEIGHT,
    ):
        """
        Args:
            camera_index: OS camera device index (0 = default webcam).
            width:  Capture width in pixels.
            height: Capture height in pixels.
        """
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self._cap: Optional[cv2.VideoCapture] = None
        self._connected = False

    # ──────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────────

    def open(self) -> None:
        """
        Open the camera device and read one frame.

        Raises:
            SensorUnavailable: device missing, permission denied, no frame,
                               or an OpenCV backend error.
        """
        try:
            self._open_device()
        except cv2.error as exc:
            self.release()
            raise SensorUnavailable(
                f"OpenCV error on camera {self.camera_index}: {exc}"
            ) from exc

    def _open_device(self) -> None:
        self._cap = cv2.VideoCapture(self.camera_index)
        if not self._cap.isOpened():
            self.release()
            raise SensorUnavailable(f"Cannot open camera index {self.camera_index}")

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

        self._connected = True
        ok, _ = self.read_frame()
        if not ok:
            self.release()
            raise SensorUnavailable(f"Camera {self.camera_index} opened but returned no frame")

        actual_w = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        log.info(f"Opened camera {self.camera_index} at {actual_w}x{actual_h}.")

    def release(self) -> None:
        """Release the camera resource."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            if self._connected:
                log.info("Camera released.")
        self._connected = False

    @property
    def is_open(self) -> bool:
        """True if the camera is currently open."""
        return self._connected and self._cap is not None and self._cap.isOpened()

    # ──────────────────────────────────────────────────────────────────────────
    # Frame acquisition
    # ──────────────────────────────────────────────────────────────────────────

    def read_frame(self) -> Tuple[bool, Optional[np.ndarray]]:
        """
        Read the next frame from the camera.

        Returns:
            (success, frame_bgr): success flag and BGR ndarray, or (False, None).
        """
        if not self.is_open:
            return False, None

        ret, frame = self._cap.read()
        if not ret or frame is None:
            log.warning("Failed to read frame. Camera may be disconnected.")
            self._connected = False
            return False, None

        return True, frame


def probe_sensor_source(camera: Optional[CameraCapture] = None) -> str:
    """
    Returns "camera" when a frame can be read, "simulated" otherwise.
    Never raises; the camera is released before returning.
    """
    camera = camera or CameraCapture()
    try:
        camera.open()
    except SensorUnavailable as exc:
        log.warning(f"{exc} — running in simulation mode.")
        return "simulated"
    finally:
        camera.release()
    return "camera"
