"""
SQLite implementation of the tenant record source.

Used for local deployments, demos and tests. The schema mirrors the parts
of the tenant data store the exporters read; each query joins the related
rows a record needs and hands them to a per-type converter that builds the
typed record.

JSON columns (cor_elements_json, form_data_json, attachments_json,
signatures_json) hold lists or objects. Dates are ISO 8601 strings.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, TypeVar

from corsync.records.models import (
    CertificationRecord,
    DocumentRecord,
    FormSubmissionRecord,
    FormTemplate,
    MaintenanceAttachment,
    MaintenanceRecord,
    Person,
    TrainingRecord,
)
from corsync.records.source import DateRange, RecordSource, RecordSourceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Below SQLite's default limit on bound parameters per statement
QUERY_CHUNK_SIZE = 500


RECORD_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS people (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    full_name TEXT,
    employee_number TEXT
);

CREATE TABLE IF NOT EXISTS form_templates (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    name TEXT,
    form_code TEXT,
    cor_elements_json TEXT
);

CREATE TABLE IF NOT EXISTS form_submissions (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    template_id TEXT,
    submitted_by TEXT,
    form_number TEXT,
    status TEXT NOT NULL,
    submitted_at TEXT,
    created_at TEXT,
    form_data_json TEXT,
    attachments_json TEXT,
    signatures_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_forms_tenant ON form_submissions(tenant_id, status);

CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    control_number TEXT,
    title TEXT,
    description TEXT,
    document_type_code TEXT,
    status TEXT NOT NULL,
    version TEXT,
    folder_name TEXT,
    cor_elements_json TEXT,
    effective_date TEXT,
    review_date TEXT,
    file_path TEXT,
    file_name TEXT,
    file_type TEXT,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_documents_tenant ON documents(tenant_id, status);

CREATE TABLE IF NOT EXISTS certification_types (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    name TEXT,
    code TEXT
);

CREATE TABLE IF NOT EXISTS worker_certifications (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    worker_id TEXT,
    certification_type_id TEXT,
    certificate_number TEXT,
    issue_date TEXT,
    expiry_date TEXT,
    issuing_organization TEXT,
    status TEXT NOT NULL,
    file_path TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS equipment (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    equipment_number TEXT,
    equipment_type TEXT
);

CREATE TABLE IF NOT EXISTS maintenance_records (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    equipment_id TEXT,
    maintenance_type TEXT,
    work_description TEXT,
    work_performed TEXT,
    vendor TEXT,
    cost REAL,
    status TEXT NOT NULL,
    actual_date TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS maintenance_attachments (
    id TEXT PRIMARY KEY,
    maintenance_record_id TEXT NOT NULL,
    file_name TEXT,
    file_path TEXT NOT NULL,
    file_type TEXT,
    is_receipt INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS training_records (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    worker_id TEXT,
    training_type TEXT,
    topic TEXT,
    duration_hours REAL,
    trainer TEXT,
    training_date TEXT,
    passed INTEGER,
    location TEXT,
    created_at TEXT
);
"""

RECORD_TABLES = (
    "people",
    "form_templates",
    "form_submissions",
    "documents",
    "certification_types",
    "worker_certifications",
    "equipment",
    "maintenance_records",
    "maintenance_attachments",
    "training_records",
)


def _load_json(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed JSON column value")
        return default


def _parse_date(value: Any, column: str, errors: list[str]) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        errors.append(f"{column}: invalid date {value!r}")
        return None


def _parse_datetime(value: Any, column: str, errors: list[str]) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        errors.append(f"{column}: invalid timestamp {value!r}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _elements(value: str | None, column: str, errors: list[str]) -> list[int]:
    raw = _load_json(value, [])
    if not isinstance(raw, list):
        errors.append(f"{column}: expected a list of COR elements")
        return []
    elements = []
    for element in raw:
        try:
            elements.append(int(element))
        except (TypeError, ValueError):
            errors.append(f"{column}: invalid COR element {element!r}")
    return elements


def _date_clause(column: str, date_range: DateRange | None) -> tuple[str, list[str]]:
    if date_range is None:
        return "", []
    clauses = []
    params = []
    if date_range.start:
        clauses.append(f"date({column}) >= ?")
        params.append(date_range.start.isoformat())
    if date_range.end:
        clauses.append(f"date({column}) <= ?")
        params.append(date_range.end.isoformat())
    if not clauses:
        return "", []
    return " AND " + " AND ".join(clauses), params


class SqliteRecordSource(RecordSource):
    """
    Record source backed by a SQLite database file.

    Example:
        source = SqliteRecordSource(Path("records.db"))
        forms = source.get_submitted_forms("tenant-1", DateRange(start=date(2025, 1, 1)))
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.executescript(RECORD_TABLES_SQL)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _query(self, sql: str, params: list[Any]) -> list[sqlite3.Row]:
        try:
            with self._get_connection() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise RecordSourceError(f"Record query failed: {e}") from e

    def _convert(self, converter: Callable[..., T], row: sqlite3.Row, *args: Any) -> T:
        try:
            return converter(row, *args)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise RecordSourceError(f"Cannot read record {row['id']}: {e}") from e

    def insert_rows(self, table: str, rows: list[dict[str, Any]]) -> None:
        """
        Insert raw rows into a record table.

        Lists and dicts are stored as JSON; dates as ISO strings.

        Raises:
            ValueError: If the table is unknown.
        """
        if table not in RECORD_TABLES:
            raise ValueError(f"Unknown record table: {table}")
        with self._get_connection() as conn:
            for row in rows:
                values = []
                for value in row.values():
                    if isinstance(value, (list, dict)):
                        value = json.dumps(value)
                    elif isinstance(value, (date, datetime)):
                        value = value.isoformat()
                    elif isinstance(value, bool):
                        value = int(value)
                    values.append(value)
                columns = ", ".join(row)
                placeholders = ", ".join("?" for _ in row)
                conn.execute(
                    f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", values
                )

    # -------------------------------------------------------------------------
    # Converters
    # -------------------------------------------------------------------------

    def _row_to_person(self, row: sqlite3.Row, prefix: str) -> Person | None:
        person_id = row[f"{prefix}_id"]
        if person_id is None:
            return None
        return Person(
            id=person_id,
            full_name=row[f"{prefix}_name"],
            employee_number=row[f"{prefix}_employee_number"],
        )

    def _row_to_form_submission(self, row: sqlite3.Row) -> FormSubmissionRecord:
        errors: list[str] = []
        template = None
        if row["template_id"] is not None:
            template = FormTemplate(
                id=row["template_id"],
                name=row["template_name"],
                form_code=row["template_code"],
                cor_elements=_elements(row["template_elements"], "template cor_elements", errors),
            )
        return FormSubmissionRecord(
            id=row["id"],
            status=row["status"],
            template=template,
            submitter=self._row_to_person(row, "submitter"),
            form_number=row["form_number"],
            submitted_at=_parse_datetime(row["submitted_at"], "submitted_at", errors),
            created_at=_parse_datetime(row["created_at"], "created_at", errors),
            form_data=_load_json(row["form_data_json"], {}),
            attachments=list(_load_json(row["attachments_json"], [])),
            signatures=list(_load_json(row["signatures_json"], [])),
            data_errors=errors,
        )

    def _row_to_document(self, row: sqlite3.Row) -> DocumentRecord:
        errors: list[str] = []
        return DocumentRecord(
            id=row["id"],
            title=row["title"],
            status=row["status"],
            control_number=row["control_number"],
            description=row["description"],
            document_type_code=row["document_type_code"],
            version=row["version"],
            folder_name=row["folder_name"],
            cor_elements=_elements(row["cor_elements_json"], "cor_elements", errors),
            effective_date=_parse_date(row["effective_date"], "effective_date", errors),
            review_date=_parse_date(row["review_date"], "review_date", errors),
            file_path=row["file_path"],
            file_name=row["file_name"],
            file_type=row["file_type"],
            created_at=_parse_datetime(row["created_at"], "created_at", errors),
            data_errors=errors,
        )

    def _row_to_certification(self, row: sqlite3.Row) -> CertificationRecord:
        errors: list[str] = []
        return CertificationRecord(
            id=row["id"],
            worker=self._row_to_person(row, "worker"),
            certification_name=row["type_name"],
            certification_code=row["type_code"],
            certificate_number=row["certificate_number"],
            issue_date=_parse_date(row["issue_date"], "issue_date", errors),
            expiry_date=_parse_date(row["expiry_date"], "expiry_date", errors),
            issuing_organization=row["issuing_organization"],
            status=row["status"],
            file_path=row["file_path"],
            created_at=_parse_datetime(row["created_at"], "created_at", errors),
            data_errors=errors,
        )

    def _row_to_maintenance(
        self, row: sqlite3.Row, attachments: list[MaintenanceAttachment]
    ) -> MaintenanceRecord:
        errors: list[str] = []
        return MaintenanceRecord(
            id=row["id"],
            status=row["status"],
            equipment_number=row["equipment_number"],
            equipment_type=row["equipment_type"],
            maintenance_type=row["maintenance_type"],
            work_description=row["work_description"],
            work_performed=row["work_performed"],
            vendor=row["vendor"],
            cost=row["cost"],
            actual_date=_parse_date(row["actual_date"], "actual_date", errors),
            attachments=attachments,
            created_at=_parse_datetime(row["created_at"], "created_at", errors),
            data_errors=errors,
        )

    def _row_to_attachment(self, row: sqlite3.Row) -> MaintenanceAttachment:
        return MaintenanceAttachment(
            id=row["id"],
            file_path=row["file_path"],
            file_name=row["file_name"],
            file_type=row["file_type"],
            is_receipt=bool(row["is_receipt"]),
        )

    def _row_to_training(self, row: sqlite3.Row) -> TrainingRecord:
        errors: list[str] = []
        return TrainingRecord(
            id=row["id"],
            worker=self._row_to_person(row, "worker"),
            training_type=row["training_type"],
            topic=row["topic"],
            duration_hours=row["duration_hours"],
            trainer=row["trainer"],
            training_date=_parse_date(row["training_date"], "training_date", errors),
            passed=None if row["passed"] is None else bool(row["passed"]),
            location=row["location"],
            created_at=_parse_datetime(row["created_at"], "created_at", errors),
            data_errors=errors,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_submitted_forms(
        self, tenant_id: str, date_range: DateRange | None = None
    ) -> list[FormSubmissionRecord]:
        clause, params = _date_clause("s.submitted_at", date_range)
        rows = self._query(
            f"""
            SELECT s.*,
                t.name AS template_name, t.form_code AS template_code,
                t.cor_elements_json AS template_elements,
                p.id AS submitter_id, p.full_name AS submitter_name,
                p.employee_number AS submitter_employee_number
            FROM form_submissions s
            LEFT JOIN form_templates t ON t.id = s.template_id
            LEFT JOIN people p ON p.id = s.submitted_by
            WHERE s.tenant_id = ? AND s.status = 'submitted'{clause}
            ORDER BY s.submitted_at, s.id
            """,
            [tenant_id, *params],
        )
        return [self._convert(self._row_to_form_submission, row) for row in rows]

    def get_active_documents(
        self, tenant_id: str, document_types: list[str] | None = None
    ) -> list[DocumentRecord]:
        sql = "SELECT * FROM documents WHERE tenant_id = ? AND status = 'active'"
        params: list[Any] = [tenant_id]
        if document_types:
            sql += f" AND document_type_code IN ({', '.join('?' for _ in document_types)})"
            params.extend(document_types)
        sql += " ORDER BY created_at, id"
        return [self._convert(self._row_to_document, row) for row in self._query(sql, params)]

    def get_active_certifications(self, tenant_id: str) -> list[CertificationRecord]:
        rows = self._query(
            """
            SELECT c.*,
                ct.name AS type_name, ct.code AS type_code,
                p.full_name AS worker_name,
                p.employee_number AS worker_employee_number
            FROM worker_certifications c
            LEFT JOIN certification_types ct ON ct.id = c.certification_type_id
            LEFT JOIN people p ON p.id = c.worker_id
            WHERE c.tenant_id = ? AND c.status = 'active'
            ORDER BY c.created_at, c.id
            """,
            [tenant_id],
        )
        return [self._convert(self._row_to_certification, row) for row in rows]

    def get_completed_maintenance(
        self, tenant_id: str, date_range: DateRange | None = None
    ) -> list[MaintenanceRecord]:
        clause, params = _date_clause("m.actual_date", date_range)
        rows = self._query(
            f"""
            SELECT m.*, e.equipment_number, e.equipment_type
            FROM maintenance_records m
            LEFT JOIN equipment e ON e.id = m.equipment_id
            WHERE m.tenant_id = ? AND m.status = 'completed'{clause}
            ORDER BY m.actual_date, m.id
            """,
            [tenant_id, *params],
        )
        if not rows:
            return []

        record_ids = [row["id"] for row in rows]
        attachments: dict[str, list[MaintenanceAttachment]] = {}
        for start in range(0, len(record_ids), QUERY_CHUNK_SIZE):
            chunk = record_ids[start:start + QUERY_CHUNK_SIZE]
            attachment_rows = self._query(
                f"""
                SELECT * FROM maintenance_attachments
                WHERE maintenance_record_id IN ({', '.join('?' for _ in chunk)})
                ORDER BY rowid
                """,
                chunk,
            )
            for att in attachment_rows:
                attachments.setdefault(att["maintenance_record_id"], []).append(
                    self._convert(self._row_to_attachment, att)
                )

        return [
            self._convert(self._row_to_maintenance, row, attachments.get(row["id"], []))
            for row in rows
        ]

    def get_training_records(
        self, tenant_id: str, date_range: DateRange | None = None
    ) -> list[TrainingRecord]:
        clause, params = _date_clause("r.training_date", date_range)
        rows = self._query(
            f"""
            SELECT r.*,
                p.full_name AS worker_name,
                p.employee_number AS worker_employee_number
            FROM training_records r
            LEFT JOIN people p ON p.id = r.worker_id
            WHERE r.tenant_id = ?{clause}
            ORDER BY r.training_date, r.id
            """,
            [tenant_id, *params],
        )
        return [self._convert(self._row_to_training, row) for row in rows]
