"""
Face descriptor model using FaceNet (Pretrained)
"""
import logging
import threading

import cv2
import numpy as np
import torch
from facenet_pytorch import InceptionResnetV1

from config import settings

logger = logging.getLogger(__name__)


class FaceEmbedder:
    """FaceNet (VGGFace2) descriptor extractor, loaded once per process"""
    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        logger.info("Loading FaceNet pretrained model (VGGFace2)...")
        self.device = torch.device('cuda' if torch.cuda.is_available() else 'cpu')
        self.model = InceptionResnetV1(pretrained='vggface2').eval().to(self.device)
        logger.info("FaceNet loaded (device: %s)", self.device)

        self._initialized = True

    def preprocess_face(self, face_image):
        """
        Preprocess face for FaceNet
        - Resize to 160x160
        - Convert to RGB
        - Normalize to [-1, 1]
        """
        size = settings.OUTPUT_SIZE
        if face_image.shape[:2] != (size, size):
            face = cv2.resize(face_image, (size, size))
        else:
            face = face_image

        face = cv2.cvtColor(face, cv2.COLOR_BGR2RGB)

        face = torch.from_numpy(face).float()
        face = face.permute(2, 0, 1)  # HWC to CHW
        face = (face - 127.5) / 128.0

        return face.unsqueeze(0).to(self.device)

    def extract(self, face_image):
        """
        Extract an L2-normalized 512-dim descriptor, or None
        """
        if face_image is None or face_image.size == 0:
            return None

        face_tensor = self.preprocess_face(face_image)
        with self._lock, torch.no_grad():
            embedding = self.model(face_tensor)

        embedding = embedding.cpu().numpy()[0]
        norm = np.linalg.norm(embedding)
        if norm <= 1e-6:
            return None
        return embedding / norm
