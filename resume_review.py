"""Utilities for importing, exporting and annotating candidate resumes."""

from __future__ import annotations

import io
import logging
import os
import re
import sqlite3
import uuid
from copy import deepcopy
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd
import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration helpers
# ---------------------------------------------------------------------------

STATUS_NEW = "New"
STATUS_SHORTLISTED = "Shortlisted"
STATUS_REJECTED = "Rejected"
STATUSES: List[str] = [STATUS_NEW, STATUS_SHORTLISTED, STATUS_REJECTED]

PLACEHOLDER_RESUME_URL = "https://example.com/resume-not-provided.pdf"
SPREADSHEET_COLUMNS: List[str] = ["job_id", "name", "email", "status", "pdf_url"]
EXPORT_HEADER = "Job ID,Name,Email,Status,Resume URL"
HOSTED_COLUMNS: List[str] = ["id", "job_id", "name", "email", "status", "pdf_url", "updated_at"]

DEFAULT_CONFIG: Dict = {
    "database": {"path": "resumes.sqlite", "table": "resumes"},
    "spreadsheet": {"csv_url": "", "path": "", "timeout_seconds": 10},
    "storage": {"dir": "resume_files", "public_base_url": ""},
    "session": {"empty_cache_ttl_seconds": 60, "fetch_workers": 4},
    "auth": {"users": {}},
    "ui": {"title": "Resume Review"},
    "logging": {"level": "INFO"},
}


class ReviewError(Exception):
    """Base exception for the resume review application."""


class ProfileSourceError(ReviewError):
    """Raised when a remote profile source cannot be read or written."""


class ProfileNotFoundError(ProfileSourceError):
    """Raised when a status update targets a row the hosted table does not have."""


class StatusUpdateError(ReviewError):
    """Raised when a shortlist/reject decision could not be persisted."""


def _merge(base: Dict, override: Mapping) -> Dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path | None = None) -> Dict:
    """Read the YAML config and overlay it on ``DEFAULT_CONFIG``.

    The path defaults to ``$RESUME_REVIEW_CONFIG`` and then ``config.yaml``;
    a missing file yields the defaults.
    """
    config_path = Path(path or os.environ.get("RESUME_REVIEW_CONFIG", "config.yaml"))
    data: Dict = {}
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    cfg = _merge(deepcopy(DEFAULT_CONFIG), data)
    cfg.setdefault("_meta", {})["config_path"] = str(config_path)
    return cfg


def get_users(cfg: Dict) -> Dict[str, Dict]:
    return cfg.get("auth", {}).get("users", {}) or {}


# ---------------------------------------------------------------------------
# Candidate records
# ---------------------------------------------------------------------------


def normalize_status(value) -> str:
    text = _clean(value).lower()
    for status in STATUSES:
        if status.lower() == text:
            return status
    return STATUS_NEW


def _clean(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and pd.isna(value):  # type: ignore[arg-type]
        return ""
    return str(value).strip()


_SHEET_ID_NAMESPACE = uuid.UUID("5c2f7a0e-3b8d-4f51-9a6e-1d0c4b7e2a90")


def new_profile_id() -> str:
    return uuid.uuid4().hex


def sheet_profile_id(job_id: str, email: str) -> str:
    """Stable id for a spreadsheet row, so repeated reads name the same candidate."""
    email = _clean(email).lower()
    if not email:
        return new_profile_id()
    return uuid.uuid5(_SHEET_ID_NAMESPACE, f"{_clean(job_id)}:{email}").hex


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class CandidateProfile:
    """One resume submission tied to a job."""

    id: str
    job_id: str
    name: str
    email: str
    status: str = STATUS_NEW
    pdf_url: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: Mapping) -> "CandidateProfile":
        """Build a profile from a hosted-table row or a camelCase payload."""

        def pick(*keys: str) -> str:
            for key in keys:
                if key in row:
                    return _clean(row[key])
            return ""

        return cls(
            id=pick("id"),
            job_id=pick("job_id", "jobId"),
            name=pick("name"),
            email=pick("email"),
            status=normalize_status(pick("status")),
            pdf_url=pick("pdf_url", "pdfUrl"),
            updated_at=pick("updated_at", "updatedAt"),
        )

    def to_row(self) -> Dict[str, Optional[str]]:
        row = asdict(self)
        row["updated_at"] = self.updated_at or None
        return row

    def with_status(self, status: str) -> "CandidateProfile":
        return replace(self, status=normalize_status(status))


@dataclass(frozen=True)
class BulkUploadResult:
    success: int = 0
    failed: int = 0


# ---------------------------------------------------------------------------
# CSV parsing
# ---------------------------------------------------------------------------

_SENTINEL = "\x1f"
_QUOTED_SPAN = re.compile(r'"[^"]*"')


def strip_quotes(field: str) -> str:
    field = field.strip()
    if len(field) >= 2 and field.startswith('"') and field.endswith('"'):
        return field[1:-1]
    return field


def parse_csv_line(line: str, delimiter: str = ",", unquote: bool = True) -> List[str]:
    """Split one delimited line, keeping delimiters that sit inside quotes.

    Quoted spans have the delimiter masked with a sentinel before the split
    and restored afterwards. Nested quotes are not understood and malformed
    input is split best-effort; this never raises.
    """
    masked = _QUOTED_SPAN.sub(lambda match: match.group(0).replace(delimiter, _SENTINEL), line)
    fields = [field.replace(_SENTINEL, delimiter) for field in masked.split(delimiter)]
    if unquote:
        fields = [strip_quotes(field) for field in fields]
    return fields


def parse_csv_text(text: str, delimiter: str = ",") -> List[List[str]]:
    return [parse_csv_line(line, delimiter) for line in (text or "").splitlines() if line.strip()]


def rows_to_profiles(rows: Iterable[List[str]], skip_header: bool = True) -> List[CandidateProfile]:
    """Map spreadsheet rows (``job_id, name, email, status, pdf_url``) to profiles.

    The spreadsheet has no ids; each row gets one derived from its job and
    email, so every read of the sheet yields the same ids.
    """
    profiles: List[CandidateProfile] = []
    for index, row in enumerate(rows):
        if skip_header and index == 0:
            continue
        padded = list(row) + [""] * (len(SPREADSHEET_COLUMNS) - len(row))
        values = dict(zip(SPREADSHEET_COLUMNS, padded))
        profiles.append(
            CandidateProfile(
                id=sheet_profile_id(values["job_id"], values["email"]),
                job_id=values["job_id"].strip(),
                name=values["name"].strip(),
                email=values["email"].strip(),
                status=normalize_status(values["status"]),
                pdf_url=values["pdf_url"].strip(),
            )
        )
    return profiles


def find_bulk_columns(header: List[str]) -> Dict[str, Optional[int]]:
    lowered = [col.strip().lower() for col in header]

    def first(*needles: str) -> Optional[int]:
        for idx, col in enumerate(lowered):
            if any(needle in col for needle in needles):
                return idx
        return None

    return {
        "name": first("name"),
        "email": first("email"),
        "pdf_url": first("pdf", "url", "resume"),
    }


def parse_bulk_upload(text: str, job_id: str) -> Tuple[List[CandidateProfile], int]:
    """Parse an admin bulk-upload CSV into new profiles for ``job_id``.

    Returns the usable profiles and the count of rows rejected for a
    missing name or email. Rows without a resume link get a placeholder.
    """
    if not (text or "").strip():
        return [], 0
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            engine="python",
            on_bad_lines="warn",
        )
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as exc:
        logger.warning("Bulk upload CSV unreadable: %s", exc)
        return [], 0
    header = [str(col) for col in df.columns]
    columns = find_bulk_columns(header)
    if columns["name"] is None or columns["email"] is None:
        logger.warning("Bulk upload header has no name/email column: %s", header)
    profiles: List[CandidateProfile] = []
    failed = 0
    for row in df.itertuples(index=False, name=None):
        name = _cell(row, columns["name"])
        email = _cell(row, columns["email"])
        if not name or not email:
            failed += 1
            continue
        profiles.append(
            CandidateProfile(
                id=new_profile_id(),
                job_id=job_id.strip(),
                name=name,
                email=email,
                status=STATUS_NEW,
                pdf_url=_cell(row, columns["pdf_url"]) or PLACEHOLDER_RESUME_URL,
            )
        )
    return profiles, failed


def _cell(row: Tuple, idx: Optional[int]) -> str:
    if idx is None or idx >= len(row):
        return ""
    return _clean(row[idx])


def _quoted(value: str) -> str:
    return '"{}"'.format(value.replace('"', '""'))


def profiles_to_csv(profiles: Iterable[CandidateProfile]) -> str:
    lines = [EXPORT_HEADER]
    for profile in profiles:
        lines.append(
            ",".join(
                [
                    profile.job_id,
                    _quoted(profile.name),
                    profile.email,
                    profile.status,
                    _quoted(profile.pdf_url),
                ]
            )
        )
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Document links
# ---------------------------------------------------------------------------

_GOOGLE_DOC = re.compile(r"^(https?://docs\.google\.com/document/d/[^/?#]+)(?:/(?:edit|preview)\b.*)?$")
_DRIVE_FILE = re.compile(r"^https?://drive\.google\.com/file/d/([^/?#]+)")


def download_url(url: str) -> str:
    """Rewrite known document-host links so they download as a PDF."""
    url = (url or "").strip()
    doc = _GOOGLE_DOC.match(url)
    if doc:
        return f"{doc.group(1)}/export?format=pdf"
    drive = _DRIVE_FILE.match(url)
    if drive:
        return f"https://drive.google.com/uc?export=download&id={drive.group(1)}"
    return url


def viewer_url(url: str) -> str:
    """Rewrite known document-host links into something an iframe can embed."""
    url = (url or "").strip()
    drive = _DRIVE_FILE.match(url)
    if drive:
        return f"https://drive.google.com/file/d/{drive.group(1)}/preview"
    return download_url(url)


# ---------------------------------------------------------------------------
# Database utilities
# ---------------------------------------------------------------------------


def init_db(db_path: str, table: str, columns: Iterable[str], unique_key: str) -> None:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    col_defs = []
    for col in columns:
        decl = '"{col}" TEXT'.format(col=col)
        if col == unique_key:
            decl += " PRIMARY KEY"
        col_defs.append(decl)
    cur.execute(
        'CREATE TABLE IF NOT EXISTS "{table}" ({cols})'.format(
            table=table, cols=", ".join(col_defs)
        )
    )
    cur.execute(f'CREATE INDEX IF NOT EXISTS "{table}_job_id" ON "{table}" ("job_id")')
    cur.execute(
        'CREATE TABLE IF NOT EXISTS "review_audit" (id INTEGER PRIMARY KEY AUTOINCREMENT, timestamp TEXT, actor TEXT, profile_id TEXT, field TEXT, value TEXT)'
    )
    conn.commit()
    conn.close()


def ensure_columns(db_path: str, table: str, columns: Iterable[str]) -> None:
    unique_columns = list(dict.fromkeys(columns))
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    cur.execute(f'PRAGMA table_info("{table}")')
    existing = {row[1] for row in cur.fetchall()}
    to_add = [col for col in unique_columns if col not in existing]
    for col in to_add:
        cur.execute(f'ALTER TABLE "{table}" ADD COLUMN "{col}" TEXT')
    if to_add:
        conn.commit()
    conn.close()


def record_audit(cur: sqlite3.Cursor, actor: Optional[str], profile_id: str, updates: Dict[str, Optional[str]]) -> None:
    ts = utc_now()
    for field, value in updates.items():
        cur.execute(
            'INSERT INTO "review_audit" (timestamp, actor, profile_id, field, value) VALUES (?,?,?,?,?)',
            (ts, actor or "", profile_id, field, value),
        )


def fetch_audit_log(db_path: str, limit: int = 200) -> pd.DataFrame:
    db_file = Path(db_path)
    if not db_file.exists():
        return pd.DataFrame(columns=["timestamp", "actor", "profile_id", "field", "value"])
    with sqlite3.connect(db_path) as conn:
        conn.execute('CREATE TABLE IF NOT EXISTS "review_audit" (id INTEGER PRIMARY KEY AUTOINCREMENT, timestamp TEXT, actor TEXT, profile_id TEXT, field TEXT, value TEXT)')
        query = 'SELECT timestamp, actor, profile_id, field, value FROM "review_audit" ORDER BY id DESC LIMIT ?'
        df = pd.read_sql_query(query, conn, params=(limit,))
    return df


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import argparse

    from profile_sources import init_context, teardown_context

    parser = argparse.ArgumentParser(description="Sync and export candidate resumes")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--import-sheet", metavar="JOB_ID", help="Copy spreadsheet rows for a job into the hosted table")
    parser.add_argument("--export", metavar="PATH", help="Write every hosted resume to a CSV report")
    args = parser.parse_args()

    cfg = load_config(args.config)
    logging.basicConfig(level=cfg["logging"]["level"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    context = init_context(cfg)
    try:
        if args.import_sheet:
            imported = context.source.import_from_spreadsheet(args.import_sheet)
            print(f"Imported {imported} rows for job {args.import_sheet}")
        if args.export:
            Path(args.export).write_text(profiles_to_csv(context.hosted.all_profiles()), encoding="utf-8")
            print(f"Wrote report to {args.export}")
    finally:
        teardown_context(context)
