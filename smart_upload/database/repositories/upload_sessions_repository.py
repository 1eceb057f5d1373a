from enum import Enum
from typing import Any

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from smart_upload.database.connection import get_connection
from smart_upload.parts.models import PartDescriptor
from smart_upload.processor.exceptions import SessionNotFoundError
from smart_upload.processor.models import (
    ParseStatus,
    RoutingDecision,
    SecondPassStatus,
    UploadSession,
)

_SESSION_COLUMNS = """
    id, file_id, uploaded_by, file_name, storage_key, file_size_bytes, mime_type,
    parse_status, second_pass_status, routing_decision, requires_human_review,
    auto_committed_at, extraction_confidence, segmentation_confidence,
    final_confidence, total_pages, extracted_metadata, parsed_parts,
    error_message, created_at, updated_at
"""

# Columns the processors may write; identity columns belong to the uploader.
UPDATABLE_COLUMNS = frozenset(
    {
        "parse_status",
        "second_pass_status",
        "routing_decision",
        "requires_human_review",
        "auto_committed_at",
        "extraction_confidence",
        "segmentation_confidence",
        "final_confidence",
        "total_pages",
        "extracted_metadata",
        "parsed_parts",
        "error_message",
    }
)

_JSON_COLUMNS = frozenset({"extracted_metadata", "parsed_parts"})


class UploadSessionsRepository:
    """Database operations for the smart_upload_sessions table."""

    def find_by_id(self, session_id: str) -> UploadSession:
        """Find an upload session by ID.

        Raises:
            SessionNotFoundError: if no session with this ID exists.
        """
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_SESSION_COLUMNS}
                    FROM smart_upload_sessions
                    WHERE id = %s
                    """,
                    (session_id,),
                )
                row = cur.fetchone()

        if row is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return _row_to_session(row)

    def update(self, session_id: str, **fields: Any) -> None:
        """Write the given columns in a single UPDATE statement.

        Enum values are stored by value, parsed_parts may be a list of
        PartDescriptor, and JSON columns are wrapped in Jsonb.

        Raises:
            ValueError: if a field is not an updatable column.
            SessionNotFoundError: if no session with this ID exists.
        """
        if not fields:
            return
        unknown = sorted(set(fields) - UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update session columns: {unknown}")

        names = sorted(fields)
        assignments = [
            sql.SQL("{} = %s").format(sql.Identifier(name)) for name in names
        ]
        assignments.append(sql.SQL("updated_at = NOW()"))
        query = sql.SQL("UPDATE smart_upload_sessions SET {} WHERE id = %s").format(
            sql.SQL(", ").join(assignments)
        )
        params = [_to_db_value(name, fields[name]) for name in names]
        params.append(session_id)

        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                if cur.rowcount == 0:
                    raise SessionNotFoundError(f"Session {session_id} not found")
            conn.commit()


def _to_db_value(name: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if name == "parsed_parts" and value is not None:
        return Jsonb(
            [p.to_dict() if isinstance(p, PartDescriptor) else p for p in value]
        )
    if name in _JSON_COLUMNS and value is not None:
        return Jsonb(value)
    return value


def _row_to_session(row: dict[str, Any]) -> UploadSession:
    routing = row["routing_decision"]
    return UploadSession(
        id=str(row["id"]),
        file_id=row["file_id"],
        uploaded_by=row["uploaded_by"],
        file_name=row["file_name"],
        storage_key=row["storage_key"],
        file_size_bytes=row["file_size_bytes"],
        mime_type=row["mime_type"],
        parse_status=ParseStatus(row["parse_status"]),
        second_pass_status=SecondPassStatus(row["second_pass_status"]),
        routing_decision=RoutingDecision(routing) if routing else None,
        requires_human_review=bool(row["requires_human_review"]),
        auto_committed_at=row["auto_committed_at"],
        extraction_confidence=row["extraction_confidence"],
        segmentation_confidence=row["segmentation_confidence"],
        final_confidence=row["final_confidence"],
        total_pages=row["total_pages"],
        extracted_metadata=row["extracted_metadata"] or {},
        parsed_parts=[PartDescriptor.from_dict(p) for p in row["parsed_parts"] or []],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
