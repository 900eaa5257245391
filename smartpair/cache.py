"""
Result cache keyed by scan, validated by content signature
"""

import sqlite3
import json
import logging
from datetime import datetime
from typing import Dict, Optional

# Initialize logger
logger = logging.getLogger(__name__)


class ResultCache:
    def __init__(self, db_path: str = "smartpair_cache.db"):
        """Open (or create) the cache database"""
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.cursor = self.conn.cursor()
        self.init_database()

    def init_database(self):
        """Create the scan results table"""
        self.cursor.execute('''
            CREATE TABLE IF NOT EXISTS scan_results (
                scan_key TEXT PRIMARY KEY,
                signature TEXT,
                result_json TEXT,
                cached_at TIMESTAMP,
                hit_count INTEGER DEFAULT 0
            )
        ''')
        self.conn.commit()

    def get(self, scan_key: str, signature: str) -> Optional[Dict]:
        """
        Cached result for a scan, only when its signature still matches.

        Args:
            scan_key: Folder or manifest the scan was run on
            signature: Content signature of the current inputs

        Returns:
            Result dictionary or None on a miss
        """
        row = self.cursor.execute('''
            SELECT * FROM scan_results WHERE scan_key = ?
        ''', (scan_key,)).fetchone()

        if not row or row['signature'] != signature:
            return None

        self.cursor.execute('''
            UPDATE scan_results SET hit_count = hit_count + 1
            WHERE scan_key = ?
        ''', (scan_key,))
        self.conn.commit()

        try:
            return json.loads(row['result_json'])
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding unreadable cache entry for {scan_key}: {str(e)}")
            return None

    def put(self, scan_key: str, signature: str, result: Dict):
        """Store (or replace) the result for a scan"""
        self.cursor.execute('''
            INSERT OR REPLACE INTO scan_results
            (scan_key, signature, result_json, cached_at, hit_count)
            VALUES (?, ?, ?, ?, 0)
        ''', (scan_key, signature, json.dumps(result), datetime.now().isoformat()))
        self.conn.commit()

    def close(self):
        """Close database connection"""
        self.conn.close()
