"""
Face Detector: MediaPipe landmarks + FaceNet descriptor per frame
"""
import threading

import cv2
import numpy as np
import mediapipe as mp

from config import settings
from .embedder import FaceEmbedder
from .liveness import FaceFrame


class FaceDetector:
    """
    Detection collaborator for the liveness scanner.

    detect(frame) accepts encoded image bytes (JPEG/PNG from the client)
    or a decoded BGR array and returns a FaceFrame for the most confident
    face, or None when no face is found.

    FaceMesh tracks between frames, so each scan session gets its own
    instance; the lock serializes executor threads on that instance.
    """

    def __init__(self, min_detection_confidence=settings.DETECTION_CONFIDENCE):
        self.min_detection_confidence = min_detection_confidence
        self.face_detection = None
        self.face_mesh = None
        self.embedder = None
        self._lock = threading.Lock()

    def prepare(self):
        """Load models; raises when MediaPipe or FaceNet cannot be initialized"""
        if self.face_detection is not None:
            return
        self.face_detection = mp.solutions.face_detection.FaceDetection(
            model_selection=0,
            min_detection_confidence=self.min_detection_confidence
        )
        # Single subject in front of a phone camera
        self.face_mesh = mp.solutions.face_mesh.FaceMesh(
            static_image_mode=False,
            max_num_faces=1,
            refine_landmarks=True,
            min_detection_confidence=0.5,
            min_tracking_confidence=0.5
        )
        self.embedder = FaceEmbedder()

    @staticmethod
    def decode(frame):
        if isinstance(frame, (bytes, bytearray)):
            nparr = np.frombuffer(frame, np.uint8)
            return cv2.imdecode(nparr, cv2.IMREAD_COLOR)
        return frame

    def detect_box(self, image_rgb, w, h):
        """Most confident face box as (x, y, width, height), clamped to the image"""
        results = self.face_detection.process(image_rgb)
        if not results.detections:
            return None

        detection = max(results.detections, key=lambda d: d.score[0])
        bbox = detection.location_data.relative_bounding_box
        x = max(0, int(bbox.xmin * w))
        y = max(0, int(bbox.ymin * h))
        width = min(int(bbox.width * w), w - x)
        height = min(int(bbox.height * h), h - y)
        if width <= 0 or height <= 0:
            return None
        return x, y, width, height

    def nose_tip(self, image_rgb, w, h):
        results = self.face_mesh.process(image_rgb)
        if not results.multi_face_landmarks:
            return None
        landmark = results.multi_face_landmarks[0].landmark[settings.NOSE_TIP_INDEX]
        return landmark.x * w, landmark.y * h

    def crop_face(self, image, bbox, output_size=settings.OUTPUT_SIZE):
        """Square crop with padding around the box, resized for FaceNet"""
        x, y, w, h = bbox
        size = max(w, h)
        pad = int(size * 0.3)

        cx = x + w // 2
        cy = y + h // 2
        half_size = (size + 2 * pad) // 2
        x1 = max(0, cx - half_size)
        y1 = max(0, cy - half_size)
        x2 = min(image.shape[1], cx + half_size)
        y2 = min(image.shape[0], cy + half_size)

        face = image[y1:y2, x1:x2]
        if face.size == 0:
            return None
        return cv2.resize(face, (output_size, output_size))

    def detect(self, frame):
        with self._lock:
            return self._detect(frame)

    def _detect(self, frame):
        self.prepare()
        image = self.decode(frame)
        if image is None or image.size == 0:
            return None

        h, w = image.shape[:2]
        image_rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

        bbox = self.detect_box(image_rgb, w, h)
        if bbox is None:
            return None
        nose = self.nose_tip(image_rgb, w, h)
        if nose is None:
            return None

        face = self.crop_face(image, bbox)
        descriptor = self.embedder.extract(face) if face is not None else None
        if descriptor is None:
            return None

        return FaceFrame(
            nose_x=float(nose[0]),
            nose_y=float(nose[1]),
            face_width=float(bbox[2]),
            descriptor=np.asarray(descriptor, dtype=np.float32),
        )

    def __del__(self):
        for model in (self.face_detection, self.face_mesh):
            if model is None:
                continue
            try:
                model.close()
            except Exception:
                pass
