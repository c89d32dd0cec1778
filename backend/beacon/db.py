from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator
from uuid import uuid4

from beacon.config import settings
from beacon.enforcement.models import (
    AmbiguityFlag,
    AttributedParagraph,
    ChecklistItem,
    ExportAttestation,
    ExportAuditRecord,
    GenerationMetadataRecord,
    ProposalSnapshot,
    SectionSnapshot,
    VerifiedClaim,
)


def _database_path() -> Path:
    prefix = "sqlite:///"
    if not settings.database_url.startswith(prefix):
        raise RuntimeError("Only sqlite:/// DATABASE_URL is supported.")
    return Path(settings.database_url[len(prefix) :])


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db() -> None:
    db_path = _database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS organizations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                mission TEXT,
                geography TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                name TEXT NOT NULL,
                document_type TEXT NOT NULL,
                program_area TEXT,
                document_date TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(organization_id) REFERENCES organizations(id)
            );

            CREATE TABLE IF NOT EXISTS chunks (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                document_id TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                text TEXT NOT NULL,
                embedding_json TEXT NOT NULL,
                embedding_provider TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(organization_id) REFERENCES organizations(id),
                FOREIGN KEY(document_id) REFERENCES documents(id)
            );

            CREATE INDEX IF NOT EXISTS idx_chunks_organization_id ON chunks(organization_id);

            CREATE TABLE IF NOT EXISTS proposals (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                title TEXT NOT NULL,
                funder_name TEXT,
                program_title TEXT,
                funder_instructions TEXT,
                enforcement_failure INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                FOREIGN KEY(organization_id) REFERENCES organizations(id)
            );

            CREATE TABLE IF NOT EXISTS sections (
                id TEXT PRIMARY KEY,
                proposal_id TEXT NOT NULL,
                name TEXT NOT NULL,
                position INTEGER NOT NULL,
                description TEXT,
                required INTEGER NOT NULL DEFAULT 1,
                word_limit INTEGER,
                char_limit INTEGER,
                content TEXT NOT NULL DEFAULT '',
                used_generic_knowledge INTEGER NOT NULL DEFAULT 0,
                enforcement_applied INTEGER NOT NULL DEFAULT 0,
                paragraphs_json TEXT,
                claims_json TEXT NOT NULL DEFAULT '[]',
                resolved_placeholder_ids_json TEXT NOT NULL DEFAULT '[]',
                updated_at TEXT NOT NULL,
                FOREIGN KEY(proposal_id) REFERENCES proposals(id)
            );

            CREATE INDEX IF NOT EXISTS idx_sections_proposal ON sections(proposal_id, position ASC);

            CREATE TABLE IF NOT EXISTS generation_metadata (
                generation_id TEXT PRIMARY KEY,
                section_id TEXT NOT NULL,
                organization_id TEXT NOT NULL,
                proposal_id TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(section_id) REFERENCES sections(id)
            );

            CREATE INDEX IF NOT EXISTS idx_generation_metadata_section
                ON generation_metadata(section_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS ambiguity_flags (
                id TEXT PRIMARY KEY,
                proposal_id TEXT NOT NULL,
                type TEXT NOT NULL,
                description TEXT NOT NULL,
                source_texts_json TEXT NOT NULL,
                suggested_resolutions_json TEXT NOT NULL,
                requires_user_input INTEGER NOT NULL,
                resolved INTEGER NOT NULL DEFAULT 0,
                resolution TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(proposal_id) REFERENCES proposals(id)
            );

            CREATE TABLE IF NOT EXISTS checklist_items (
                id TEXT PRIMARY KEY,
                proposal_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                required INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                FOREIGN KEY(proposal_id) REFERENCES proposals(id)
            );

            CREATE TABLE IF NOT EXISTS checklist_mappings (
                checklist_item_id TEXT NOT NULL,
                section_id TEXT NOT NULL,
                confidence REAL,
                mapping_type TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY(checklist_item_id, section_id),
                FOREIGN KEY(checklist_item_id) REFERENCES checklist_items(id),
                FOREIGN KEY(section_id) REFERENCES sections(id)
            );

            CREATE TABLE IF NOT EXISTS export_audit_log (
                id TEXT PRIMARY KEY,
                proposal_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                export_format TEXT NOT NULL,
                decision TEXT NOT NULL,
                blocks_json TEXT NOT NULL,
                warnings_json TEXT NOT NULL,
                snapshot_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(proposal_id) REFERENCES proposals(id)
            );

            CREATE INDEX IF NOT EXISTS idx_export_audit_proposal
                ON export_audit_log(proposal_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS export_attestations (
                id TEXT PRIMARY KEY,
                audit_record_id TEXT NOT NULL,
                attestation_text TEXT NOT NULL,
                attested_at TEXT NOT NULL,
                FOREIGN KEY(audit_record_id) REFERENCES export_audit_log(id)
            );

            CREATE TRIGGER IF NOT EXISTS export_audit_log_no_update
                BEFORE UPDATE ON export_audit_log
            BEGIN
                SELECT RAISE(ABORT, 'export_audit_log is append-only');
            END;

            CREATE TRIGGER IF NOT EXISTS export_audit_log_no_delete
                BEFORE DELETE ON export_audit_log
            BEGIN
                SELECT RAISE(ABORT, 'export_audit_log is append-only');
            END;

            CREATE TRIGGER IF NOT EXISTS export_attestations_no_update
                BEFORE UPDATE ON export_attestations
            BEGIN
                SELECT RAISE(ABORT, 'export_attestations is append-only');
            END;
            """
        )


@contextmanager
def get_conn() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(_database_path())
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
        conn.commit()
    finally:
        conn.close()


def create_organization(name: str, mission: str | None = None, geography: str | None = None) -> dict[str, object]:
    organization = {
        "id": str(uuid4()),
        "name": name,
        "mission": mission,
        "geography": geography,
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        conn.execute(
            "INSERT INTO organizations (id, name, mission, geography, created_at) VALUES (?, ?, ?, ?, ?)",
            (
                organization["id"],
                organization["name"],
                organization["mission"],
                organization["geography"],
                organization["created_at"],
            ),
        )
    return organization


def get_organization(organization_id: str) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(
            "SELECT id, name, mission, geography, created_at FROM organizations WHERE id = ?",
            (organization_id,),
        ).fetchone()
    if row is None:
        return None
    return dict(row)


def create_document(
    organization_id: str,
    name: str,
    document_type: str = "other",
    program_area: str | None = None,
    document_date: str | None = None,
) -> dict[str, object]:
    document = {
        "id": str(uuid4()),
        "organization_id": organization_id,
        "name": name,
        "document_type": document_type,
        "program_area": program_area,
        "document_date": document_date,
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO documents (
                id, organization_id, name, document_type, program_area, document_date, created_at
            )
            VALUES (:id, :organization_id, :name, :document_type, :program_area, :document_date, :created_at)
            """,
            document,
        )
    return document


def create_chunks(
    organization_id: str,
    document_id: str,
    chunks: list[dict[str, object]],
) -> list[dict[str, object]]:
    now = _utc_now_iso()
    rows: list[dict[str, object]] = []
    for chunk in chunks:
        rows.append(
            {
                "id": str(uuid4()),
                "organization_id": organization_id,
                "document_id": document_id,
                "chunk_index": int(chunk["chunk_index"]),
                "text": str(chunk["text"]),
                "embedding_json": json.dumps(chunk["embedding"]),
                "embedding_provider": str(chunk.get("embedding_provider") or "hash"),
                "created_at": now,
            }
        )

    if not rows:
        return []

    with get_conn() as conn:
        conn.executemany(
            """
            INSERT INTO chunks (
                id, organization_id, document_id, chunk_index, text, embedding_json, embedding_provider, created_at
            )
            VALUES (
                :id, :organization_id, :document_id, :chunk_index, :text, :embedding_json, :embedding_provider, :created_at
            )
            """,
            rows,
        )
    return rows


def list_chunks(organization_id: str) -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT
                c.id,
                c.organization_id,
                c.document_id,
                d.name AS document_name,
                d.document_type,
                d.program_area,
                d.document_date,
                c.chunk_index,
                c.text,
                c.embedding_json,
                c.embedding_provider
            FROM chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE c.organization_id = ?
            ORDER BY d.created_at ASC, c.chunk_index ASC
            """,
            (organization_id,),
        ).fetchall()

    parsed: list[dict[str, object]] = []
    for row in rows:
        item = dict(row)
        item["embedding"] = json.loads(item.pop("embedding_json"))
        parsed.append(item)
    return parsed


def create_proposal(
    organization_id: str,
    title: str,
    *,
    funder_name: str | None = None,
    program_title: str | None = None,
    funder_instructions: str | None = None,
) -> dict[str, object]:
    proposal = {
        "id": str(uuid4()),
        "organization_id": organization_id,
        "title": title,
        "funder_name": funder_name,
        "program_title": program_title,
        "funder_instructions": funder_instructions,
        "enforcement_failure": False,
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO proposals (
                id, organization_id, title, funder_name, program_title, funder_instructions,
                enforcement_failure, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (
                proposal["id"],
                organization_id,
                title,
                funder_name,
                program_title,
                funder_instructions,
                proposal["created_at"],
            ),
        )
    return proposal


def get_proposal(proposal_id: str) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(
            """
            SELECT id, organization_id, title, funder_name, program_title, funder_instructions,
                   enforcement_failure, created_at
            FROM proposals
            WHERE id = ?
            """,
            (proposal_id,),
        ).fetchone()
    if row is None:
        return None
    item = dict(row)
    item["enforcement_failure"] = bool(item["enforcement_failure"])
    return item


def clear_enforcement_failure(proposal_id: str) -> bool:
    with get_conn() as conn:
        cursor = conn.execute("UPDATE proposals SET enforcement_failure = 0 WHERE id = ?", (proposal_id,))
    return cursor.rowcount > 0


def create_section(
    proposal_id: str,
    name: str,
    *,
    description: str | None = None,
    required: bool = True,
    word_limit: int | None = None,
    char_limit: int | None = None,
    content: str = "",
) -> dict[str, object]:
    now = _utc_now_iso()
    section_id = str(uuid4())
    with get_conn() as conn:
        row = conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 AS next_position FROM sections WHERE proposal_id = ?",
            (proposal_id,),
        ).fetchone()
        conn.execute(
            """
            INSERT INTO sections (
                id, proposal_id, name, position, description, required, word_limit, char_limit,
                content, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                section_id,
                proposal_id,
                name,
                int(row["next_position"]),
                description,
                int(required),
                word_limit,
                char_limit,
                content,
                now,
            ),
        )
    section = get_section(section_id)
    assert section is not None
    return section


def _section_row(row: sqlite3.Row) -> dict[str, object]:
    item = dict(row)
    for key in ("required", "used_generic_knowledge", "enforcement_applied"):
        item[key] = bool(item[key])
    paragraphs_json = item.pop("paragraphs_json")
    item["paragraphs"] = json.loads(paragraphs_json) if paragraphs_json is not None else None
    item["claims"] = json.loads(item.pop("claims_json"))
    item["resolved_placeholder_ids"] = json.loads(item.pop("resolved_placeholder_ids_json"))
    return item


_SECTION_COLUMNS = """
    id, proposal_id, name, position, description, required, word_limit, char_limit, content,
    used_generic_knowledge, enforcement_applied, paragraphs_json, claims_json,
    resolved_placeholder_ids_json, updated_at
"""


def get_section(section_id: str) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(f"SELECT {_SECTION_COLUMNS} FROM sections WHERE id = ?", (section_id,)).fetchone()
    if row is None:
        return None
    return _section_row(row)


def list_sections(proposal_id: str) -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            f"SELECT {_SECTION_COLUMNS} FROM sections WHERE proposal_id = ? ORDER BY position ASC",
            (proposal_id,),
        ).fetchall()
    return [_section_row(row) for row in rows]


def update_section_content(section_id: str, content: str) -> bool:
    """Store a user edit. Attribution data from the last generation is kept as-is."""
    with get_conn() as conn:
        cursor = conn.execute(
            "UPDATE sections SET content = ?, updated_at = ? WHERE id = ?",
            (content, _utc_now_iso(), section_id),
        )
    return cursor.rowcount > 0


def resolve_placeholder(section_id: str, placeholder_id: str, token: str, resolved_content: str) -> bool:
    section = get_section(section_id)
    if section is None:
        return False
    content = str(section["content"]).replace(token, resolved_content)
    resolved_ids = list(section["resolved_placeholder_ids"])  # type: ignore[arg-type]
    if placeholder_id not in resolved_ids:
        resolved_ids.append(placeholder_id)
    with get_conn() as conn:
        conn.execute(
            "UPDATE sections SET content = ?, resolved_placeholder_ids_json = ?, updated_at = ? WHERE id = ?",
            (content, json.dumps(resolved_ids), _utc_now_iso(), section_id),
        )
    return True


def record_generation(
    metadata: GenerationMetadataRecord,
    *,
    content: str,
    paragraphs: list[AttributedParagraph] | None,
    claims: list[VerifiedClaim],
) -> None:
    """Upsert the metadata row, snapshot the section and raise the failure flag in one transaction."""
    now = _utc_now_iso()
    paragraphs_json = (
        json.dumps([paragraph.model_dump(mode="json") for paragraph in paragraphs]) if paragraphs is not None else None
    )
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO generation_metadata (
                generation_id, section_id, organization_id, proposal_id, payload_json, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(generation_id) DO UPDATE SET payload_json = excluded.payload_json
            """,
            (
                metadata.generation_id,
                metadata.section_id,
                metadata.organization_id,
                metadata.proposal_id,
                metadata.model_dump_json(),
                now,
            ),
        )
        conn.execute(
            """
            UPDATE sections
            SET content = ?,
                used_generic_knowledge = ?,
                enforcement_applied = ?,
                paragraphs_json = ?,
                claims_json = ?,
                resolved_placeholder_ids_json = '[]',
                updated_at = ?
            WHERE id = ?
            """,
            (
                content,
                int(metadata.used_generic_knowledge),
                int(metadata.enforcement_applied),
                paragraphs_json,
                json.dumps([claim.model_dump(mode="json") for claim in claims]),
                now,
                metadata.section_id,
            ),
        )
        if metadata.enforcement_failure:
            conn.execute(
                "UPDATE proposals SET enforcement_failure = 1 WHERE id = ?",
                (metadata.proposal_id,),
            )


def get_generation_metadata(generation_id: str) -> GenerationMetadataRecord | None:
    with get_conn() as conn:
        row = conn.execute(
            "SELECT payload_json FROM generation_metadata WHERE generation_id = ?",
            (generation_id,),
        ).fetchone()
    if row is None:
        return None
    return GenerationMetadataRecord.model_validate_json(row["payload_json"])


def list_generation_metadata(section_id: str) -> list[GenerationMetadataRecord]:
    with get_conn() as conn:
        rows = conn.execute(
            "SELECT payload_json FROM generation_metadata WHERE section_id = ? ORDER BY created_at DESC",
            (section_id,),
        ).fetchall()
    return [GenerationMetadataRecord.model_validate_json(row["payload_json"]) for row in rows]


def create_ambiguity_flags(proposal_id: str, flags: list[AmbiguityFlag]) -> None:
    now = _utc_now_iso()
    with get_conn() as conn:
        conn.executemany(
            """
            INSERT INTO ambiguity_flags (
                id, proposal_id, type, description, source_texts_json, suggested_resolutions_json,
                requires_user_input, resolved, resolution, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    flag.id,
                    proposal_id,
                    flag.type,
                    flag.description,
                    json.dumps(flag.source_texts),
                    json.dumps(flag.suggested_resolutions),
                    int(flag.requires_user_input),
                    int(flag.resolved),
                    flag.resolution,
                    now,
                )
                for flag in flags
            ],
        )


def list_ambiguity_flags(proposal_id: str) -> list[AmbiguityFlag]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, type, description, source_texts_json, suggested_resolutions_json,
                   requires_user_input, resolved, resolution
            FROM ambiguity_flags
            WHERE proposal_id = ?
            ORDER BY created_at ASC
            """,
            (proposal_id,),
        ).fetchall()
    return [
        AmbiguityFlag(
            id=row["id"],
            type=row["type"],
            description=row["description"],
            source_texts=json.loads(row["source_texts_json"]),
            suggested_resolutions=json.loads(row["suggested_resolutions_json"]),
            requires_user_input=bool(row["requires_user_input"]),
            resolved=bool(row["resolved"]),
            resolution=row["resolution"],
        )
        for row in rows
    ]


def resolve_ambiguity_flag(proposal_id: str, flag_id: str, resolution: str) -> bool:
    with get_conn() as conn:
        cursor = conn.execute(
            "UPDATE ambiguity_flags SET resolved = 1, resolution = ? WHERE id = ? AND proposal_id = ?",
            (resolution, flag_id, proposal_id),
        )
    return cursor.rowcount > 0


def create_checklist_item(
    proposal_id: str,
    name: str,
    *,
    description: str | None = None,
    required: bool = True,
) -> dict[str, object]:
    item = {
        "id": str(uuid4()),
        "proposal_id": proposal_id,
        "name": name,
        "description": description,
        "required": required,
        "created_at": _utc_now_iso(),
    }
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO checklist_items (id, proposal_id, name, description, required, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (item["id"], proposal_id, name, description, int(required), item["created_at"]),
        )
    return item


def list_checklist_items(proposal_id: str) -> list[ChecklistItem]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, name, description, required
            FROM checklist_items
            WHERE proposal_id = ?
            ORDER BY created_at ASC
            """,
            (proposal_id,),
        ).fetchall()
        mapping_rows = conn.execute(
            """
            SELECT m.checklist_item_id, m.section_id
            FROM checklist_mappings m
            JOIN checklist_items i ON i.id = m.checklist_item_id
            WHERE i.proposal_id = ?
            ORDER BY m.created_at ASC
            """,
            (proposal_id,),
        ).fetchall()

    mapped: dict[str, list[str]] = {}
    for row in mapping_rows:
        mapped.setdefault(row["checklist_item_id"], []).append(row["section_id"])
    return [
        ChecklistItem(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            required=bool(row["required"]),
            mapped_section_ids=mapped.get(row["id"], []),
        )
        for row in rows
    ]


def create_checklist_mapping(
    checklist_item_id: str,
    section_id: str,
    *,
    confidence: float | None = None,
    mapping_type: str = "MANUAL",
) -> None:
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO checklist_mappings (checklist_item_id, section_id, confidence, mapping_type, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(checklist_item_id, section_id)
            DO UPDATE SET confidence = excluded.confidence, mapping_type = excluded.mapping_type
            """,
            (checklist_item_id, section_id, confidence, mapping_type, _utc_now_iso()),
        )


def load_proposal_snapshot(proposal_id: str) -> ProposalSnapshot | None:
    proposal = get_proposal(proposal_id)
    if proposal is None:
        return None
    sections = [
        SectionSnapshot(
            id=str(section["id"]),
            name=str(section["name"]),
            content=str(section["content"]),
            required=bool(section["required"]),
            word_limit=section["word_limit"],  # type: ignore[arg-type]
            char_limit=section["char_limit"],  # type: ignore[arg-type]
            used_generic_knowledge=bool(section["used_generic_knowledge"]),
            enforcement_applied=bool(section["enforcement_applied"]),
            paragraphs=section["paragraphs"],  # type: ignore[arg-type]
            claims=section["claims"],  # type: ignore[arg-type]
            resolved_placeholder_ids=section["resolved_placeholder_ids"],  # type: ignore[arg-type]
        )
        for section in list_sections(proposal_id)
    ]
    return ProposalSnapshot(
        id=str(proposal["id"]),
        title=str(proposal["title"]),
        sections=sections,
        ambiguity_flags=list_ambiguity_flags(proposal_id),
        checklist=list_checklist_items(proposal_id),
        enforcement_failure=bool(proposal["enforcement_failure"]),
    )


def append_export_audit_record(record: ExportAuditRecord) -> None:
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO export_audit_log (
                id, proposal_id, user_id, export_format, decision, blocks_json, warnings_json,
                snapshot_json, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.proposal_id,
                record.user_id,
                record.export_format,
                record.decision,
                json.dumps([block.model_dump() for block in record.blocks]),
                json.dumps([warning.model_dump() for warning in record.warnings]),
                record.snapshot.model_dump_json(),
                record.created_at.isoformat(),
            ),
        )


def _audit_record(row: sqlite3.Row) -> ExportAuditRecord:
    return ExportAuditRecord(
        id=row["id"],
        proposal_id=row["proposal_id"],
        user_id=row["user_id"],
        export_format=row["export_format"],
        decision=row["decision"],
        blocks=json.loads(row["blocks_json"]),
        warnings=json.loads(row["warnings_json"]),
        snapshot=json.loads(row["snapshot_json"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def get_export_audit_record(record_id: str) -> ExportAuditRecord | None:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM export_audit_log WHERE id = ?", (record_id,)).fetchone()
    if row is None:
        return None
    return _audit_record(row)


def list_export_audit_records(proposal_id: str) -> list[ExportAuditRecord]:
    with get_conn() as conn:
        rows = conn.execute(
            "SELECT * FROM export_audit_log WHERE proposal_id = ? ORDER BY created_at DESC",
            (proposal_id,),
        ).fetchall()
    return [_audit_record(row) for row in rows]


def append_export_attestation(attestation: ExportAttestation) -> None:
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO export_attestations (id, audit_record_id, attestation_text, attested_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                attestation.id,
                attestation.audit_record_id,
                attestation.attestation_text,
                attestation.attested_at.isoformat(),
            ),
        )


def list_export_attestations(audit_record_id: str) -> list[ExportAttestation]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT id, audit_record_id, attestation_text, attested_at
            FROM export_attestations
            WHERE audit_record_id = ?
            ORDER BY attested_at ASC
            """,
            (audit_record_id,),
        ).fetchall()
    return [
        ExportAttestation(
            id=row["id"],
            audit_record_id=row["audit_record_id"],
            attestation_text=row["attestation_text"],
            attested_at=datetime.fromisoformat(row["attested_at"]),
        )
        for row in rows
    ]
