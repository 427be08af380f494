"""
Face descriptor comparator
Euclidean nearest-match over enrolled descriptors
"""
from dataclasses import dataclass

import numpy as np

from config import liveness


@dataclass(frozen=True)
class MatchResult:
    label: str
    distance: float


class FaceMatcher:
    """Labels the best enrolled match, or 'unknown' beyond distance_threshold"""

    def __init__(self, distance_threshold=liveness.UNKNOWN_LABEL_DISTANCE):
        self.distance_threshold = distance_threshold

    @staticmethod
    def distance(desc_a, desc_b):
        a = np.asarray(desc_a, dtype=np.float32)
        b = np.asarray(desc_b, dtype=np.float32)
        if a.shape != b.shape:
            return float('inf')
        return float(np.linalg.norm(a - b))

    def compare(self, descriptor, enrolled):
        """
        Find the closest enrolled descriptor

        Args:
            descriptor: Query descriptor
            enrolled: List of descriptors, or dict of label -> descriptor

        Returns:
            MatchResult(label, distance)
        """
        if isinstance(enrolled, dict):
            candidates = list(enrolled.items())
        else:
            candidates = [(f"person {i + 1}", d) for i, d in enumerate(enrolled or [])]

        best_label, best_distance = 'unknown', float('inf')
        for label, stored in candidates:
            if stored is None:
                continue
            dist = self.distance(descriptor, stored)
            if dist < best_distance:
                best_label, best_distance = label, dist

        if best_distance > self.distance_threshold:
            best_label = 'unknown'
        return MatchResult(best_label, best_distance)
