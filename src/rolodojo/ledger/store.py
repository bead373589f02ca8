"""SQLite storage for the ledger (rolos), registry (records) and vault (attributes)."""

import json
import logging
import sqlite3
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import AttributeNotFoundError, AuditIntegrityError
from ..uri import Namespace, ROOT
from .models import (
    AppliedFact,
    Attribute,
    AttributeHistoryEntry,
    Record,
    Rolo,
    RoloKind,
    RoloMetadata,
    SenseiResponse,
    Triple,
)

logger = logging.getLogger(__name__)

SENSITIVE_KEY_TOKENS = frozenset({"password", "passcode", "pin", "ssn", "secret"})
SENSITIVE_KEYS = frozenset({"gate_code", "door_code", "alarm_code", "lock_code"})

_ROLO_COLUMNS = (
    "rolo_id, kind, summoning_text, target_uri, parent_rolo_id, metadata, timestamp"
)
_RECORD_COLUMNS = "uri, display_name, payload, last_rolo_id, updated_at"
_SENSEI_COLUMNS = (
    "sensei_id, input_rolo_id, target_uri, response_text, provider, model, "
    "confidence_score, created_at"
)
_ATTRIBUTE_COLUMNS = (
    "subject_uri, attr_key, attr_value, last_rolo_id, is_sensitive, updated_at"
)


def is_sensitive_key(key: str) -> bool:
    """True for keys that usually hold secrets (gate codes, PINs, passwords)."""
    return key in SENSITIVE_KEYS or bool(SENSITIVE_KEY_TOKENS & set(key.split("_")))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _like(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class LedgerStore:
    """Persistent storage for the three-table Dojo model using SQLite.

    - ``tbl_rolos``: the append-only ledger. There is no delete operation.
    - ``tbl_records``: one row per URI, pointing at the rolo that last touched it.
    - ``tbl_attributes``: one row per (URI, key); a NULL value is a soft delete.
    - ``tbl_sensei``: the reply given to each summoning, keyed to its rolo.

    Every vault write checks that its audit rolo exists, and foreign keys are
    enforced, so an attribute can never point at a missing ledger entry.
    Writes are committed one statement at a time; a crash between the ledger
    write and the vault write leaves an orphan rolo and nothing else.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def init_db(self) -> None:
        """Create the tables if they don't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS tbl_rolos (
                rolo_id         TEXT PRIMARY KEY,
                kind            TEXT NOT NULL,
                summoning_text  TEXT NOT NULL,
                target_uri      TEXT,
                parent_rolo_id  TEXT,
                metadata        TEXT NOT NULL DEFAULT '{}',
                timestamp       TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS tbl_records (
                uri           TEXT PRIMARY KEY,
                display_name  TEXT NOT NULL,
                payload       TEXT NOT NULL DEFAULT '{}',
                last_rolo_id  TEXT REFERENCES tbl_rolos(rolo_id),
                updated_at    TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS tbl_attributes (
                subject_uri   TEXT NOT NULL,
                attr_key      TEXT NOT NULL,
                attr_value    TEXT,
                last_rolo_id  TEXT NOT NULL REFERENCES tbl_rolos(rolo_id),
                is_sensitive  INTEGER NOT NULL DEFAULT 0,
                updated_at    TEXT NOT NULL,
                PRIMARY KEY (subject_uri, attr_key)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS tbl_sensei (
                sensei_id         TEXT PRIMARY KEY,
                input_rolo_id     TEXT NOT NULL REFERENCES tbl_rolos(rolo_id),
                target_uri        TEXT,
                response_text     TEXT NOT NULL,
                provider          TEXT,
                model             TEXT,
                confidence_score  REAL,
                created_at        TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_rolos_target ON tbl_rolos(target_uri)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_rolos_parent ON tbl_rolos(parent_rolo_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_attributes_key ON tbl_attributes(attr_key)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sensei_input ON tbl_sensei(input_rolo_id)")
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Ledger (tbl_rolos)
    # ------------------------------------------------------------------

    def record_summoning(
        self,
        text: str,
        metadata: RoloMetadata | None = None,
        *,
        kind: RoloKind = RoloKind.INPUT,
        target_uri: str | None = None,
        parent_rolo_id: str | None = None,
        rolo_id: str | None = None,
    ) -> Rolo:
        """Append a new entry to the ledger.

        Args:
            text: The raw summoning text.
            metadata: Caller-supplied context, stored verbatim.
            kind: INPUT, REQUEST or SYNTHESIS.
            target_uri: The URI the entry is about, if one was resolved.
            parent_rolo_id: The entry this one derives from or replies to.
            rolo_id: Explicit id; a random uuid4 hex is used when None.

        Returns:
            The stored Rolo.
        """
        rolo = Rolo(
            id=rolo_id or uuid.uuid4().hex,
            kind=kind,
            summoning_text=text,
            timestamp=_now(),
            target_uri=target_uri,
            parent_rolo_id=parent_rolo_id,
            metadata=metadata or RoloMetadata(),
        )
        conn = self._get_connection()
        conn.execute(
            f"INSERT INTO tbl_rolos ({_ROLO_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                rolo.id,
                rolo.kind.value,
                rolo.summoning_text,
                rolo.target_uri,
                rolo.parent_rolo_id,
                json.dumps(rolo.metadata.to_dict()),
                rolo.timestamp.isoformat(),
            ),
        )
        conn.commit()
        return rolo

    def get_rolo(self, rolo_id: str) -> Rolo | None:
        """Get a ledger entry by id, or None if it does not exist."""
        conn = self._get_connection()
        row = conn.execute(
            f"SELECT {_ROLO_COLUMNS} FROM tbl_rolos WHERE rolo_id = ?", (rolo_id,)
        ).fetchone()
        return self._row_to_rolo(row) if row else None

    def get_recent_rolos(self, limit: int = 50, offset: int = 0) -> list[Rolo]:
        """Get the newest ledger entries first."""
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_ROLO_COLUMNS} FROM tbl_rolos "
            "ORDER BY timestamp DESC, rowid DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [self._row_to_rolo(row) for row in cursor.fetchall()]

    def get_rolos_by_target(self, uri: str) -> list[Rolo]:
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_ROLO_COLUMNS} FROM tbl_rolos WHERE target_uri = ? "
            "ORDER BY timestamp DESC, rowid DESC",
            (uri,),
        )
        return [self._row_to_rolo(row) for row in cursor.fetchall()]

    def get_rolos_by_parent(self, parent_rolo_id: str) -> list[Rolo]:
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_ROLO_COLUMNS} FROM tbl_rolos WHERE parent_rolo_id = ? "
            "ORDER BY timestamp ASC, rowid ASC",
            (parent_rolo_id,),
        )
        return [self._row_to_rolo(row) for row in cursor.fetchall()]

    def search_rolos(self, query: str) -> list[Rolo]:
        """Substring search over summoning text."""
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_ROLO_COLUMNS} FROM tbl_rolos "
            "WHERE summoning_text LIKE ? ESCAPE '\\' ORDER BY timestamp DESC, rowid DESC",
            (_like(query),),
        )
        return [self._row_to_rolo(row) for row in cursor.fetchall()]

    def count_rolos(self) -> int:
        conn = self._get_connection()
        return conn.execute("SELECT COUNT(*) FROM tbl_rolos").fetchone()[0]

    def rewrite_summoning_text(self, rolo_id: str, text: str) -> Rolo | None:
        """Replace a rolo's text with a compact summary (the ghost transform).

        Id, kind, target, parent, metadata and timestamp are preserved.

        Returns:
            The updated Rolo, or None if it does not exist.
        """
        conn = self._get_connection()
        cursor = conn.execute(
            "UPDATE tbl_rolos SET summoning_text = ? WHERE rolo_id = ?",
            (text, rolo_id),
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_rolo(rolo_id)

    # ------------------------------------------------------------------
    # Registry (tbl_records)
    # ------------------------------------------------------------------

    def upsert_record(self, record: Record) -> Record:
        """Insert or replace a registry entry.

        Raises:
            AuditIntegrityError: If ``last_rolo_id`` names a missing rolo.
        """
        if record.last_rolo_id is not None:
            self._require_rolo(record.last_rolo_id)
        conn = self._get_connection()
        conn.execute(
            f"""
            INSERT INTO tbl_records ({_RECORD_COLUMNS})
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(uri) DO UPDATE SET
                display_name = excluded.display_name,
                payload = excluded.payload,
                last_rolo_id = excluded.last_rolo_id,
                updated_at = excluded.updated_at
            """,
            (
                record.uri,
                record.display_name,
                json.dumps(record.payload),
                record.last_rolo_id,
                record.updated_at or _now().isoformat(),
            ),
        )
        conn.commit()
        return record

    def get_record(self, uri: str) -> Record | None:
        conn = self._get_connection()
        row = conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM tbl_records WHERE uri = ?", (uri,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def record_exists(self, uri: str) -> bool:
        conn = self._get_connection()
        row = conn.execute("SELECT 1 FROM tbl_records WHERE uri = ? LIMIT 1", (uri,)).fetchone()
        return row is not None

    def search_records_by_name(self, query: str) -> list[Record]:
        """Substring search over display names, case-insensitive."""
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM tbl_records "
            "WHERE display_name LIKE ? ESCAPE '\\' ORDER BY display_name ASC",
            (_like(query),),
        )
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def get_records_by_namespace(self, namespace: Namespace) -> list[Record]:
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM tbl_records "
            "WHERE uri LIKE ? ESCAPE '\\' ORDER BY uri ASC",
            (f"{ROOT}.{namespace.prefix}.%",),
        )
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def get_all_records(self, limit: int | None = None, offset: int = 0) -> list[Record]:
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM tbl_records ORDER BY uri ASC LIMIT ? OFFSET ?",
            (-1 if limit is None else limit, offset),
        )
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def count_records(self) -> int:
        conn = self._get_connection()
        return conn.execute("SELECT COUNT(*) FROM tbl_records").fetchone()[0]

    def delete_record(self, uri: str) -> bool:
        """Hard-delete a registry entry.

        Discouraged: the record's audit trail becomes unreachable from the
        registry. Vault rows for the URI are left in place.

        Returns:
            True if a record was deleted.
        """
        logger.warning("Hard-deleting registry entry %s breaks audit traceability", uri)
        conn = self._get_connection()
        cursor = conn.execute("DELETE FROM tbl_records WHERE uri = ?", (uri,))
        conn.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Vault (tbl_attributes)
    # ------------------------------------------------------------------

    def apply_extraction(self, triple: Triple, rolo_id: str) -> AppliedFact:
        """Write a fact to the registry and vault under one audit receipt.

        The record is created with the triple's display name if absent,
        otherwise only its pointer and timestamp move to ``rolo_id``. The
        attribute is upserted with the new value and the same receipt.
        Re-applying the same triple with the same rolo changes nothing.

        Args:
            triple: The fact to write.
            rolo_id: The ledger entry that produced the fact.

        Returns:
            The resulting record, attribute, and whether the record is new.

        Raises:
            AuditIntegrityError: If ``rolo_id`` is not in the ledger.
        """
        self._require_rolo(rolo_id)
        uri = str(triple.subject_uri)
        now = _now().isoformat()

        existing = self.get_record(uri)
        created = existing is None
        if existing is None:
            record = self.upsert_record(
                Record(
                    uri=uri,
                    display_name=triple.subject_name,
                    last_rolo_id=rolo_id,
                    updated_at=now,
                )
            )
        elif existing.last_rolo_id == rolo_id:
            record = existing
        else:
            record = self.upsert_record(
                replace(existing, last_rolo_id=rolo_id, updated_at=now)
            )

        current = self.get_attribute(uri, triple.key)
        if (
            current is not None
            and current.value == triple.value
            and current.last_rolo_id == rolo_id
        ):
            return AppliedFact(record=record, attribute=current, created_record=created)

        attribute = Attribute(
            subject_uri=uri,
            key=triple.key,
            value=triple.value,
            last_rolo_id=rolo_id,
            is_sensitive=triple.is_sensitive,
            updated_at=now,
        )
        conn = self._get_connection()
        conn.execute(
            f"""
            INSERT INTO tbl_attributes ({_ATTRIBUTE_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(subject_uri, attr_key) DO UPDATE SET
                attr_value = excluded.attr_value,
                last_rolo_id = excluded.last_rolo_id,
                is_sensitive = excluded.is_sensitive,
                updated_at = excluded.updated_at
            """,
            (
                attribute.subject_uri,
                attribute.key,
                attribute.value,
                attribute.last_rolo_id,
                int(attribute.is_sensitive),
                attribute.updated_at,
            ),
        )
        conn.commit()
        return AppliedFact(record=record, attribute=attribute, created_record=created)

    def soft_delete(self, uri: str, key: str, deletion_rolo_id: str) -> Attribute:
        """Null an attribute's value and repoint its receipt to the deletion.

        The row and key are kept so the deletion stays auditable.

        Raises:
            AuditIntegrityError: If the deletion rolo is not in the ledger.
            AttributeNotFoundError: If there is no such attribute.
        """
        self._require_rolo(deletion_rolo_id)
        conn = self._get_connection()
        cursor = conn.execute(
            """
            UPDATE tbl_attributes
            SET attr_value = NULL, last_rolo_id = ?, updated_at = ?
            WHERE subject_uri = ? AND attr_key = ?
            """,
            (deletion_rolo_id, _now().isoformat(), uri, key),
        )
        conn.commit()
        attribute = self.get_attribute(uri, key) if cursor.rowcount else None
        if attribute is None:
            raise AttributeNotFoundError(f"No attribute {key!r} for {uri}")
        return attribute

    def get_attribute(self, uri: str, key: str) -> Attribute | None:
        """Get one attribute, including soft-deleted ones."""
        conn = self._get_connection()
        row = conn.execute(
            f"SELECT {_ATTRIBUTE_COLUMNS} FROM tbl_attributes "
            "WHERE subject_uri = ? AND attr_key = ?",
            (uri, key),
        ).fetchone()
        return self._row_to_attribute(row) if row else None

    def get_attributes(self, uri: str, include_deleted: bool = False) -> list[Attribute]:
        """Get a URI's attributes ordered by key.

        Args:
            uri: The subject URI.
            include_deleted: Also return soft-deleted rows.
        """
        where = "subject_uri = ?"
        if not include_deleted:
            where += " AND attr_value IS NOT NULL"
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_ATTRIBUTE_COLUMNS} FROM tbl_attributes WHERE {where} "
            "ORDER BY attr_key ASC",
            (uri,),
        )
        return [self._row_to_attribute(row) for row in cursor.fetchall()]

    def get_attributes_by_key(self, key: str) -> list[Attribute]:
        """Get live attributes with this key across all subjects."""
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_ATTRIBUTE_COLUMNS} FROM tbl_attributes "
            "WHERE attr_key = ? AND attr_value IS NOT NULL ORDER BY subject_uri ASC",
            (key,),
        )
        return [self._row_to_attribute(row) for row in cursor.fetchall()]

    def search_attributes(self, query: str) -> list[Attribute]:
        """Substring search over live attribute keys and values."""
        pattern = _like(query)
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_ATTRIBUTE_COLUMNS} FROM tbl_attributes "
            "WHERE attr_value IS NOT NULL "
            "AND (attr_key LIKE ? ESCAPE '\\' OR attr_value LIKE ? ESCAPE '\\') "
            "ORDER BY subject_uri ASC, attr_key ASC",
            (pattern, pattern),
        )
        return [self._row_to_attribute(row) for row in cursor.fetchall()]

    def get_attribute_history(self, uri: str, key: str) -> list[AttributeHistoryEntry]:
        """Reconstruct an attribute's history from the ledger.

        Returns the statement rolos that targeted ``uri`` and mention the key,
        plus the current audit receipt, newest first.
        """
        attribute = self.get_attribute(uri, key)
        if attribute is None:
            return []

        conn = self._get_connection()
        cursor = conn.execute(
            """
            SELECT rolo_id, summoning_text, timestamp FROM tbl_rolos
            WHERE rolo_id = ?
               OR (target_uri = ? AND kind != ?
                   AND (summoning_text LIKE ? ESCAPE '\\' OR summoning_text LIKE ? ESCAPE '\\'))
            ORDER BY timestamp DESC, rowid DESC
            """,
            (
                attribute.last_rolo_id,
                uri,
                RoloKind.REQUEST.value,
                _like(key),
                _like(key.replace("_", " ")),
            ),
        )
        return [
            AttributeHistoryEntry(
                rolo_id=row["rolo_id"],
                summoning_text=row["summoning_text"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
            )
            for row in cursor.fetchall()
        ]

    def origin_of(self, attribute: Attribute) -> Rolo | None:
        """The ledger entry behind an attribute, or None if the origin is unknown."""
        return self.get_rolo(attribute.last_rolo_id)

    # ------------------------------------------------------------------
    # Replies (tbl_sensei)
    # ------------------------------------------------------------------

    def record_sensei_response(
        self,
        input_rolo_id: str,
        response_text: str,
        *,
        target_uri: str | None = None,
        provider: str | None = None,
        model: str | None = None,
        confidence_score: float | None = None,
    ) -> SenseiResponse:
        """Store the reply given to a summoning.

        Raises:
            AuditIntegrityError: If ``input_rolo_id`` is not in the ledger.
        """
        self._require_rolo(input_rolo_id)
        response = SenseiResponse(
            id=uuid.uuid4().hex,
            input_rolo_id=input_rolo_id,
            response_text=response_text,
            created_at=_now(),
            target_uri=target_uri,
            provider=provider,
            model=model,
            confidence_score=confidence_score,
        )
        conn = self._get_connection()
        conn.execute(
            f"INSERT INTO tbl_sensei ({_SENSEI_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                response.id,
                response.input_rolo_id,
                response.target_uri,
                response.response_text,
                response.provider,
                response.model,
                response.confidence_score,
                response.created_at.isoformat(),
            ),
        )
        conn.commit()
        return response

    def get_sensei_responses(self, input_rolo_id: str) -> list[SenseiResponse]:
        """Replies given to one ledger entry, newest first."""
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_SENSEI_COLUMNS} FROM tbl_sensei WHERE input_rolo_id = ? "
            "ORDER BY created_at DESC, rowid DESC",
            (input_rolo_id,),
        )
        return [self._row_to_sensei_response(row) for row in cursor.fetchall()]

    def get_recent_sensei_responses(self, limit: int = 50, offset: int = 0) -> list[SenseiResponse]:
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_SENSEI_COLUMNS} FROM tbl_sensei "
            "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [self._row_to_sensei_response(row) for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_rolo(self, rolo_id: str) -> None:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT 1 FROM tbl_rolos WHERE rolo_id = ? LIMIT 1", (rolo_id,)
        ).fetchone()
        if row is None:
            raise AuditIntegrityError(f"Audit receipt {rolo_id} is not in the ledger")

    def _row_to_rolo(self, row: sqlite3.Row) -> Rolo:
        """Convert a database row to a Rolo."""
        return Rolo(
            id=row["rolo_id"],
            kind=RoloKind.from_string(row["kind"]),
            summoning_text=row["summoning_text"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            target_uri=row["target_uri"],
            parent_rolo_id=row["parent_rolo_id"],
            metadata=RoloMetadata.from_dict(_load_json(row["metadata"])),
        )

    def _row_to_record(self, row: sqlite3.Row) -> Record:
        """Convert a database row to a Record."""
        return Record(
            uri=row["uri"],
            display_name=row["display_name"],
            payload=_load_json(row["payload"]),
            last_rolo_id=row["last_rolo_id"],
            updated_at=row["updated_at"],
        )

    def _row_to_attribute(self, row: sqlite3.Row) -> Attribute:
        """Convert a database row to an Attribute."""
        return Attribute(
            subject_uri=row["subject_uri"],
            key=row["attr_key"],
            value=row["attr_value"],
            last_rolo_id=row["last_rolo_id"],
            is_sensitive=bool(row["is_sensitive"]),
            updated_at=row["updated_at"],
        )

    def _row_to_sensei_response(self, row: sqlite3.Row) -> SenseiResponse:
        """Convert a database row to a SenseiResponse."""
        score = row["confidence_score"]
        return SenseiResponse(
            id=row["sensei_id"],
            input_rolo_id=row["input_rolo_id"],
            response_text=row["response_text"],
            created_at=datetime.fromisoformat(row["created_at"]),
            target_uri=row["target_uri"],
            provider=row["provider"],
            model=row["model"],
            confidence_score=float(score) if score is not None else None,
        )


def _load_json(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed JSON column: %r", raw[:80])
        return {}
    return data if isinstance(data, dict) else {}
