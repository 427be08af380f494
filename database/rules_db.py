import json
import os


class RulesDB:
    """Geofence rules as raw JSON rows; numeric fields may be comma-decimal strings"""

    def __init__(self, rules_path='data/geofence_rules.json', rows=None):
        self.rules_path = rules_path
        self._rows = rows

    def load_rows(self):
        if self._rows is not None:
            return list(self._rows)
        if not os.path.exists(self.rules_path):
            return []
        with open(self.rules_path, 'r', encoding='utf-8') as f:
            rows = json.load(f)
        return rows if isinstance(rows, list) else []
