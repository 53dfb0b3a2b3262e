"""SQLite persistence for knowledge records.

One table, ``knowledge_records``, holds every stored chunk with its
embedding and metadata (both as JSON text) and its provenance
(``source_tag``, ``source_file``). Records are append-only; the only
mutation is bulk deletion by provenance key.
"""
import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog

from brandkb import config
from brandkb.errors import StoreError

logger = structlog.get_logger()

# Columns that may be used as delete/aggregate keys
KEY_COLUMNS = ("source_tag", "source_file")

_COLUMNS = "id, source_tag, source_file, text, embedding_json, metadata_json, created_at"


class KnowledgeDB:
    """Thin SQLite wrapper; opens a short-lived connection per call."""

    def __init__(self, db_path: Path = None):
        """Open (and if needed create) the database.

        Args:
            db_path: Path to the SQLite file (default from config)

        Raises:
            StoreError: If the database can't be created
        """
        self.db_path = Path(db_path or config.DB_PATH)
        self.init_database()

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection to the SQLite database.

        Returns:
            sqlite3.Connection with row_factory set to sqlite3.Row
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _connect(self) -> sqlite3.Connection:
        try:
            return self.get_connection()
        except sqlite3.Error as e:
            logger.error("database_connect_failed", db_path=str(self.db_path), error=str(e))
            raise StoreError(f"Cannot open knowledge database: {e}") from e

    def init_database(self) -> None:
        """Initialize the database schema.

        Creates the ``knowledge_records`` table and its provenance indexes
        if they don't exist.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create database directory: {e}") from e

        conn = self._connect()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS knowledge_records (
                    id TEXT PRIMARY KEY,
                    source_tag TEXT NOT NULL,
                    source_file TEXT,
                    text TEXT NOT NULL,
                    embedding_json TEXT NOT NULL,
                    metadata_json TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_records_source_tag
                ON knowledge_records(source_tag)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_records_source_file
                ON knowledge_records(source_file)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_records_created_at
                ON knowledge_records(created_at DESC)
            """)

            conn.commit()
            logger.debug("database_initialized", db_path=str(self.db_path))

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("database_init_failed", error=str(e))
            raise StoreError(f"Failed to initialize knowledge database: {e}") from e
        finally:
            conn.close()

    def insert_records(self, rows: Iterable[Dict[str, Any]]) -> int:
        """Insert knowledge records in a single transaction.

        Args:
            rows: Dicts with id, source_tag, source_file, text, embedding,
                metadata and created_at keys

        Returns:
            Number of rows inserted

        Raises:
            StoreError: If a record can't be serialized or written
        """
        try:
            params = [
                (
                    row["id"],
                    row["source_tag"],
                    row.get("source_file"),
                    row["text"],
                    json.dumps(row["embedding"]),
                    json.dumps(row["metadata"]) if row.get("metadata") else None,
                    row["created_at"],
                )
                for row in rows
            ]
        except (TypeError, ValueError) as e:
            logger.error("records_serialize_failed", error=str(e))
            raise StoreError(f"Failed to serialize knowledge records: {e}") from e

        if not params:
            return 0

        conn = self._connect()
        cursor = conn.cursor()

        try:
            cursor.executemany(f"""
                INSERT INTO knowledge_records ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, params)
            conn.commit()
            return len(params)

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("records_insert_failed", error=str(e), count=len(params))
            raise StoreError(f"Failed to insert knowledge records: {e}") from e
        finally:
            conn.close()

    def query_records(
        self,
        source_tags: Optional[Sequence[str]] = None,
        source_file: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch records matching the provenance filter, newest first.

        Args:
            source_tags: Restrict to these tags (None = any tag)
            source_file: Restrict to this file name

        Returns:
            List of record dicts with decoded ``embedding`` and ``metadata``
        """
        clauses = []
        params: List[Any] = []

        if source_tags is not None:
            if not source_tags:
                return []
            placeholders = ",".join("?" * len(source_tags))
            clauses.append(f"source_tag IN ({placeholders})")
            params.extend(source_tags)

        if source_file is not None:
            clauses.append("source_file = ?")
            params.append(source_file)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = self._connect()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {_COLUMNS}
                FROM knowledge_records
                {where}
                ORDER BY created_at DESC
            """, params)

            records = []
            for row in cursor.fetchall():
                record = dict(row)
                record["embedding"] = json.loads(record.pop("embedding_json"))
                metadata_json = record.pop("metadata_json")
                record["metadata"] = json.loads(metadata_json) if metadata_json else {}
                records.append(record)

            return records

        except (sqlite3.Error, ValueError) as e:
            logger.error("records_query_failed", error=str(e))
            raise StoreError(f"Failed to query knowledge records: {e}") from e
        finally:
            conn.close()

    def delete_by_key(self, key: str, value: str) -> int:
        """Delete every record whose ``key`` column equals ``value``.

        Args:
            key: One of KEY_COLUMNS
            value: Value to match

        Returns:
            Number of records deleted
        """
        if key not in KEY_COLUMNS:
            raise ValueError(f"Unsupported delete key: {key}")

        conn = self._connect()
        cursor = conn.cursor()

        try:
            cursor.execute(f"DELETE FROM knowledge_records WHERE {key} = ?", (value,))
            conn.commit()
            count = cursor.rowcount
            logger.info("records_deleted", key=key, value=value, count=count)
            return count

        except sqlite3.Error as e:
            conn.rollback()
            logger.error("records_delete_failed", key=key, value=value, error=str(e))
            raise StoreError(f"Failed to delete knowledge records: {e}") from e
        finally:
            conn.close()

    def aggregate_counts(self, group_by: str) -> Dict[str, int]:
        """Count records per distinct value of ``group_by``.

        Rows with a NULL key are left out.
        """
        if group_by not in KEY_COLUMNS:
            raise ValueError(f"Unsupported group key: {group_by}")

        conn = self._connect()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {group_by} AS key, COUNT(*) AS count
                FROM knowledge_records
                WHERE {group_by} IS NOT NULL
                GROUP BY {group_by}
            """)
            return {row["key"]: row["count"] for row in cursor.fetchall()}

        except sqlite3.Error as e:
            logger.error("records_aggregate_failed", group_by=group_by, error=str(e))
            raise StoreError(f"Failed to count knowledge records: {e}") from e
        finally:
            conn.close()

    def count_records(self) -> int:
        """Get the total number of stored records."""
        conn = self._connect()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT COUNT(*) FROM knowledge_records")
            return cursor.fetchone()[0]

        except sqlite3.Error as e:
            logger.error("record_count_failed", error=str(e))
            raise StoreError(f"Failed to count knowledge records: {e}") from e
        finally:
            conn.close()
