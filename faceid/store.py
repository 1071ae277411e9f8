"""
Descriptor Store Module

Reference storage collaborator for enrolled descriptors.

Descriptors are stored as:
- .npz files: the float vector plus its algorithm tag and metadata
- SQLite database: student index and scan history for efficient querying

Re-enrolling a student replaces the stored descriptor wholesale; the
student keeps its original roster position.

Usage:
    from faceid.store import DescriptorStore, load_gallery

    store = DescriptorStore(storage_dir="storage/descriptors", db_path="storage/faceid.sqlite")
    store.save_descriptor("S-001", descriptor, student_name="Alice")
    gallery = load_gallery(store, expected_tag="block_pattern/1")
"""

import json
import logging
import re
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from faceid.descriptors.interfaces import Descriptor
from faceid.matching import EnrollmentEntry, Gallery, MatchResult

logger = logging.getLogger(__name__)

# Student ids double as descriptor file names
STUDENT_ID_PATTERN = r"^[A-Za-z0-9_-][A-Za-z0-9_.-]{0,63}$"


class DescriptorStore:
    """
    Persists descriptors on disk with a SQLite index.

    Attributes:
        storage_dir: Directory where .npz descriptor files are stored.
        db_path: Path to the SQLite database file.
    """

    def __init__(self, storage_dir: str, db_path: str):
        self.storage_dir = Path(storage_dir)
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"DescriptorStore initialized: storage={self.storage_dir}, db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            # Shared between API worker threads; writes go through self._lock
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self) -> None:
        """
        Create tables if they don't exist:
        - students: one row per enrolled student, in roster order (rowid)
        - scan_logs: verification / identification history
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS students (
                student_id TEXT PRIMARY KEY,
                student_name TEXT,
                descriptor_path TEXT NOT NULL,
                algorithm TEXT NOT NULL,
                version TEXT NOT NULL,
                length INTEGER NOT NULL,
                enrolled_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS scan_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                student_id TEXT,
                timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                mode TEXT NOT NULL,
                score REAL,
                matched BOOLEAN,
                outing_type TEXT,
                attempts_made INTEGER
            )
        """)

        conn.commit()
        logger.debug("Database schema initialized")

    def _get_descriptor_path(self, student_id: str) -> Path:
        """
        Raises:
            ValueError: If the id is not a plain file name inside storage_dir.
        """
        if not re.fullmatch(STUDENT_ID_PATTERN, student_id):
            raise ValueError(f"Invalid student_id {student_id!r}: use letters, digits, '_', '-' or '.'")

        path = (self.storage_dir / f"{student_id}.npz").resolve()
        if path.parent != self.storage_dir.resolve():
            raise ValueError(f"student_id {student_id!r} escapes the descriptor directory")
        return path

    def save_descriptor(
        self,
        student_id: str,
        descriptor: Descriptor,
        student_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Save (or replace) a student's descriptor.

        Args:
            student_id: Student identifier.
            descriptor: Tagged descriptor to persist.
            student_name: Optional display name.
            metadata: Optional JSON-serializable enrollment details.

        Returns:
            Path to the saved .npz file.

        Raises:
            ValueError: If student_id is not usable as a file name.
        """
        meta = dict(metadata or {})
        meta.update({
            "student_id": student_id,
            "student_name": student_name,
            "enrolled_at": datetime.now().isoformat(),
        })

        path = self._get_descriptor_path(student_id)

        with self._lock:
            np.savez_compressed(
                str(path),
                values=descriptor.values,
                algorithm=descriptor.algorithm,
                version=descriptor.version,
                metadata=json.dumps(meta),
            )

            conn = self._get_connection()
            conn.execute("""
                INSERT INTO students (student_id, student_name, descriptor_path, algorithm, version, length)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(student_id) DO UPDATE SET
                    student_name = excluded.student_name,
                    descriptor_path = excluded.descriptor_path,
                    algorithm = excluded.algorithm,
                    version = excluded.version,
                    length = excluded.length,
                    enrolled_at = CURRENT_TIMESTAMP
            """, (student_id, student_name, str(path), descriptor.algorithm,
                  descriptor.version, len(descriptor)))
            conn.commit()

        logger.info(f"Saved descriptor for {student_id} ({descriptor.tag}, length={len(descriptor)})")
        return str(path)

    def load_descriptor(self, student_id: str) -> Optional[Descriptor]:
        """
        Load one student's descriptor.

        Returns:
            The Descriptor, or None if the student is unknown or the file
            is missing or unreadable.
        """
        row = self._get_connection().execute(
            "SELECT descriptor_path FROM students WHERE student_id = ?", (student_id,)
        ).fetchone()

        if row is None:
            return None

        path = Path(row["descriptor_path"])
        if not path.exists():
            logger.warning(f"Descriptor file missing for {student_id}: {path}")
            return None

        try:
            with np.load(str(path), allow_pickle=False) as data:
                return Descriptor(
                    values=data["values"],
                    algorithm=str(data["algorithm"]),
                    version=str(data["version"]),
                )
        except (OSError, KeyError, ValueError) as e:
            logger.error(f"Failed to load descriptor {student_id}: {e}")
            return None

    def load_entries(self) -> List[EnrollmentEntry]:
        """
        Load every enrolled student, in roster order.

        Students whose descriptor file is unreadable come back with
        descriptor=None.
        """
        rows = self._get_connection().execute(
            "SELECT student_id, student_name FROM students ORDER BY rowid"
        ).fetchall()

        entries = [
            EnrollmentEntry(
                student_id=row["student_id"],
                descriptor=self.load_descriptor(row["student_id"]),
                metadata={"student_name": row["student_name"]},
            )
            for row in rows
        ]

        logger.info(f"Loaded {len(entries)} enrollment entries")
        return entries

    def delete_student(self, student_id: str) -> bool:
        """
        Delete a student from both filesystem and database.

        Returns:
            True if deleted, False if the student was not found.
        """
        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                "SELECT descriptor_path FROM students WHERE student_id = ?", (student_id,)
            ).fetchone()

            if row is None:
                logger.warning(f"Cannot delete: student {student_id} not found")
                return False

            conn.execute("DELETE FROM students WHERE student_id = ?", (student_id,))
            conn.execute("DELETE FROM scan_logs WHERE student_id = ?", (student_id,))
            conn.commit()

        path = Path(row["descriptor_path"])
        if path.exists():
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete descriptor file {path}: {e}")

        logger.info(f"Deleted student {student_id}")
        return True

    def _row_to_student(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "student_id": row["student_id"],
            "student_name": row["student_name"],
            "algorithm": row["algorithm"],
            "version": row["version"],
            "length": row["length"],
            "enrolled_at": row["enrolled_at"],
        }

    def list_students(self) -> List[Dict[str, Any]]:
        """List all enrolled students in roster order."""
        rows = self._get_connection().execute("""
            SELECT student_id, student_name, algorithm, version, length, enrolled_at
            FROM students
            ORDER BY rowid
        """).fetchall()
        return [self._row_to_student(row) for row in rows]

    def get_student(self, student_id: str) -> Optional[Dict[str, Any]]:
        row = self._get_connection().execute("""
            SELECT student_id, student_name, algorithm, version, length, enrolled_at
            FROM students
            WHERE student_id = ?
        """, (student_id,)).fetchone()

        if row is None:
            return None
        return self._row_to_student(row)

    def log_scan(
        self,
        mode: str,
        result: MatchResult,
        student_id: Optional[str] = None,
        outing_type: Optional[str] = None,
        attempts_made: Optional[int] = None,
    ) -> int:
        """
        Record a verification or identification for auditing.

        Args:
            mode: "verify", "identify" or "scan".
            result: The match result.
            student_id: Claimed or matched student; defaults to the candidate.
            outing_type: Kiosk outing type, for scans.
            attempts_made: Failed attempts so far, for scans.

        Returns:
            The log entry ID.
        """
        if student_id is None:
            student_id = result.candidate_id

        score = result.score if np.isfinite(result.score) else None

        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("""
                INSERT INTO scan_logs (student_id, mode, score, matched, outing_type, attempts_made)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (student_id, mode, score, result.matched, outing_type, attempts_made))
            conn.commit()
            log_id = cursor.lastrowid

        logger.debug(f"Logged {mode}: id={log_id}, student={student_id}, matched={result.matched}")
        return log_id

    def get_scan_logs(self, student_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        conn = self._get_connection()

        if student_id:
            rows = conn.execute("""
                SELECT * FROM scan_logs
                WHERE student_id = ?
                ORDER BY id DESC
                LIMIT ?
            """, (student_id, limit)).fetchall()
        else:
            rows = conn.execute("""
                SELECT * FROM scan_logs
                ORDER BY id DESC
                LIMIT ?
            """, (limit,)).fetchall()

        return [
            {
                "id": row["id"],
                "student_id": row["student_id"],
                "timestamp": row["timestamp"],
                "mode": row["mode"],
                "score": row["score"],
                "matched": bool(row["matched"]),
                "outing_type": row["outing_type"],
                "attempts_made": row["attempts_made"],
            }
            for row in rows
        ]

    def get_stats(self) -> Dict[str, Any]:
        """
        Returns:
            Dictionary with total_students, total_scans and successful_scans.
        """
        conn = self._get_connection()
        students = conn.execute("SELECT COUNT(*) AS count FROM students").fetchone()
        scans = conn.execute(
            "SELECT COUNT(*) AS total, SUM(matched) AS successes FROM scan_logs"
        ).fetchone()

        return {
            "total_students": students["count"] or 0,
            "total_scans": scans["total"] or 0,
            "successful_scans": int(scans["successes"] or 0),
        }

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Database connection closed")


def load_gallery(store: DescriptorStore, expected_tag: Optional[str] = None) -> Gallery:
    """
    Build an in-memory Gallery from the store.

    Entries written by another algorithm version are left out with a
    warning; those students must be re-enrolled.

    Args:
        store: The descriptor store.
        expected_tag: Algorithm tag of the running pipeline.

    Returns:
        Gallery in roster order.
    """
    gallery = Gallery(expected_tag=expected_tag)

    for entry in store.load_entries():
        descriptor = entry.descriptor
        if descriptor is not None and expected_tag is not None and descriptor.tag != expected_tag:
            logger.warning(
                f"Skipping {entry.student_id}: stored {descriptor.tag}, "
                f"pipeline uses {expected_tag} (re-enroll required)"
            )
            continue
        gallery.enroll(entry.student_id, descriptor, entry.metadata)

    return gallery


# Singleton instance for the store
_store_instance: Optional[DescriptorStore] = None


def get_store(storage_dir: Optional[str] = None, db_path: Optional[str] = None) -> DescriptorStore:
    """
    Get or create the shared DescriptorStore.

    Args:
        storage_dir: Descriptor directory. If None, uses value from config.
        db_path: SQLite path. If None, uses value from config.
    """
    global _store_instance

    if _store_instance is None:
        if storage_dir is None or db_path is None:
            from faceid.config import get_project_root, get_storage_config

            storage_config = get_storage_config()
            project_root = get_project_root()

            if storage_dir is None:
                storage_dir = str(project_root / storage_config["descriptors_dir"])
            if db_path is None:
                db_path = str(project_root / storage_config["db_path"])

        _store_instance = DescriptorStore(storage_dir, db_path)

    return _store_instance
