import json
import os


class EmployeeRoster:
    """Employee records keyed by id: {"E001": {"name": "...", "active": true}}"""

    def __init__(self, path='data/employees.json', data=None):
        self.path = path
        self.data = data if data is not None else self.load()

    def load(self):
        if os.path.exists(self.path):
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        return {}

    def get(self, employee_id):
        """Case-insensitive lookup; returns (canonical_id, record) or (None, None)"""
        wanted = str(employee_id).strip().lower()
        for key, record in self.data.items():
            if key.lower() == wanted:
                return key, record
        return None, None
