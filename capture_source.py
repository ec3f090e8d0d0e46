import logging
import threading

import cv2

logger = logging.getLogger(__name__)


class WebcamSource:
    """OpenCV webcam. ``is_active`` is True between a successful open() and release()."""

    def __init__(self, camera_index=0, width=640, height=480):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.cap = None
        self._lock = threading.Lock()

    @property
    def is_active(self):
        with self._lock:
            return self.cap is not None and self.cap.isOpened()

    def open(self):
        with self._lock:
            if self.cap is not None:
                return
            cap = cv2.VideoCapture(self.camera_index)
            if not cap.isOpened():
                raise IOError(f"Could not open webcam {self.camera_index}")
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            self.cap = cap
        logger.info("Webcam %s opened", self.camera_index)

    def read_frame(self):
        with self._lock:
            if self.cap is None:
                return None
            ret, frame = self.cap.read()
        if not ret:
            raise IOError("Could not read frame from webcam")
        return frame

    def release(self):
        with self._lock:
            if self.cap is None:
                return
            self.cap.release()
            self.cap = None
        logger.info("Webcam %s released", self.camera_index)
