import json
import logging
import os

import numpy as np

from .feed import ChangeEvent

logger = logging.getLogger(__name__)

TABLE = 'faces'


class EmbeddingDB:
    """One enrolled face descriptor per employee, overwritten on re-registration"""

    def __init__(self, db_path='data/faces.json', feed=None):
        self.db_path = db_path
        self.feed = feed
        self.last_mtime = 0
        self.data = self.load()

    def load(self):
        if os.path.exists(self.db_path):
            self.last_mtime = os.path.getmtime(self.db_path)
            with open(self.db_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        return {}

    def save(self):
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.db_path, 'w', encoding='utf-8') as f:
            json.dump(self.data, f)
        self.last_mtime = os.path.getmtime(self.db_path)

    def _refresh(self):
        # Auto-reload if file changed on disk by another process
        if os.path.exists(self.db_path):
            current_mtime = os.path.getmtime(self.db_path)
            if current_mtime > self.last_mtime:
                logger.info("Face DB changed on disk, reloading")
                self.data = self.load()

    def upsert(self, employee_id, descriptor):
        emb = descriptor.tolist() if hasattr(descriptor, 'tolist') else list(descriptor)
        if not emb:
            raise ValueError(f"Empty descriptor for {employee_id}")
        self.data[employee_id] = [float(v) for v in emb]
        self.save()
        if self.feed is not None:
            self.feed.publish(ChangeEvent(TABLE, 'upsert', employee_id, new=self.get(employee_id)))
        logger.info("Enrolled face for %s", employee_id)

    def get(self, employee_id):
        self._refresh()
        emb = self.data.get(employee_id)
        if emb is None:
            return None
        return np.asarray(emb, dtype=np.float32)

    def delete(self, employee_id):
        if employee_id not in self.data:
            return False
        del self.data[employee_id]
        self.save()
        if self.feed is not None:
            self.feed.publish(ChangeEvent(TABLE, 'delete', employee_id))
        return True
