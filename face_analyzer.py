import logging
import os
import threading

import cv2
import mediapipe as mp
import numpy as np
from tensorflow.keras.models import load_model

from emotion_detector import FaceDetection
from emotion_log.emotion_log_entry import Emotion

logger = logging.getLogger(__name__)

# output order of the expression model -> canonical emotion names
MODEL_LABELS = [
    Emotion.SURPRISED,
    Emotion.FEARFUL,
    Emotion.DISGUSTED,
    Emotion.HAPPY,
    Emotion.SAD,
    Emotion.ANGRY,
    Emotion.NEUTRAL,
]


class FaceAnalyzer:
    """MediaPipe face detection followed by a Keras expression classifier on each face crop."""

    def __init__(self, model_path='./models/emotion_final4.keras', img_size=32, min_detection_confidence=0.5):
        self.model_path = model_path
        self.img_size = img_size  # input size of the model
        self.model = None
        self._load_thread = None

        self.face_detection = mp.solutions.face_detection.FaceDetection(
            model_selection=1, min_detection_confidence=min_detection_confidence
        )

    @property
    def is_ready(self):
        return self.model is not None

    def _load_model(self):
        try:
            if not os.path.exists(self.model_path):
                raise FileNotFoundError(f"Model not found at {self.model_path}")
            self.model = load_model(self.model_path)
            logger.info("Loaded expression model from %s", self.model_path)
        except Exception as e:
            logger.error("Could not load expression model: %s", e)

    def load(self, background=True):
        """Load the model; ``is_ready`` turns True once it is usable."""
        if self.is_ready or (self._load_thread and self._load_thread.is_alive()):
            return
        if not background:
            self._load_model()
            return
        self._load_thread = threading.Thread(target=self._load_model, name="model-loader", daemon=True)
        self._load_thread.start()

    def analyze_face(self, face_crop):
        """
        Predict expression confidences for one RGB face crop.

        Args:
            face_crop (numpy.ndarray): RGB image, 3 channels

        Returns:
            dict: {emotion label: confidence}
        """
        face_resized = cv2.resize(face_crop, (self.img_size, self.img_size))
        face_normalized = face_resized / 255.0
        batch = np.expand_dims(face_normalized, axis=0)

        # batch size is 1
        prediction_values = self.model.predict(batch, verbose=0)[0]
        return {
            MODEL_LABELS[i].value: float(prediction_values[i])
            for i in range(len(MODEL_LABELS))
        }

    def classify_frame(self, frame):
        """Detect faces in a BGR frame and classify each one. Returns a list of FaceDetection."""
        if not self.is_ready:
            raise RuntimeError("Expression model is not loaded")

        frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        results = self.face_detection.process(frame_rgb)
        if not results.detections:
            return []

        h, w, _ = frame.shape
        faces = []
        for detection in results.detections:
            bbox = detection.location_data.relative_bounding_box
            x = max(0, int(bbox.xmin * w))
            y = max(0, int(bbox.ymin * h))
            width = min(int(bbox.width * w), w - x)
            height = min(int(bbox.height * h), h - y)

            face_crop = frame_rgb[y:y + height, x:x + width]
            if face_crop.size == 0:
                continue
            faces.append(FaceDetection(box=(x, y, width, height), expressions=self.analyze_face(face_crop)))
        return faces

    def close(self):
        self.face_detection.close()
