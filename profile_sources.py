"""Remote profile sources: hosted table, spreadsheet export and resume storage.

The hosted table is authoritative once it holds rows for a job. When it has
none, the spreadsheet export is read instead and its rows are copied into the
hosted table in the background, so the next fetch for that job is served by
the table.
"""

from __future__ import annotations

import logging
import queue
import sqlite3
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import unquote, urlparse

import pandas as pd
import requests

from resume_review import (
    HOSTED_COLUMNS,
    STATUS_NEW,
    BulkUploadResult,
    CandidateProfile,
    ProfileNotFoundError,
    ProfileSourceError,
    ensure_columns,
    init_db,
    new_profile_id,
    normalize_status,
    parse_bulk_upload,
    parse_csv_text,
    record_audit,
    rows_to_profiles,
    utc_now,
)

logger = logging.getLogger(__name__)


class HostedTable:
    """Read/write candidate table backed by SQLite."""

    def __init__(self, db_path: str | Path, table: str = "resumes") -> None:
        self.db_path = str(db_path)
        self.table = table
        try:
            init_db(self.db_path, table, HOSTED_COLUMNS, "id")
            ensure_columns(self.db_path, table, HOSTED_COLUMNS)
        except sqlite3.Error as exc:
            raise ProfileSourceError(f"Cannot open hosted table {self.db_path}: {exc}") from exc

    def _read(self, sql: str, params: tuple = ()) -> pd.DataFrame:
        try:
            with sqlite3.connect(self.db_path, timeout=10) as conn:
                return pd.read_sql_query(sql, conn, params=params)
        except Exception as exc:
            raise ProfileSourceError(f"Hosted table query failed: {exc}") from exc

    def frame(self) -> pd.DataFrame:
        return self._read(f'SELECT {", ".join(HOSTED_COLUMNS)} FROM "{self.table}" ORDER BY rowid')

    def query(self, job_id: str) -> List[CandidateProfile]:
        df = self._read(
            f'SELECT {", ".join(HOSTED_COLUMNS)} FROM "{self.table}" WHERE "job_id"=? ORDER BY rowid',
            (str(job_id).strip(),),
        )
        return [CandidateProfile.from_row(row) for row in df.to_dict("records")]

    def emails(self, job_id: str) -> Set[str]:
        return {profile.email.lower() for profile in self.query(job_id) if profile.email}

    def all_profiles(self) -> List[CandidateProfile]:
        return [CandidateProfile.from_row(row) for row in self.frame().to_dict("records")]

    def insert(self, profile: CandidateProfile, actor: Optional[str] = None) -> CandidateProfile:
        """Insert a row, keeping the profile's id when it has one.

        A row whose id already exists is left untouched.
        """
        stored = CandidateProfile(
            id=profile.id or new_profile_id(),
            job_id=profile.job_id,
            name=profile.name,
            email=profile.email,
            status=normalize_status(profile.status),
            pdf_url=profile.pdf_url,
            updated_at=profile.updated_at or utc_now(),
        )
        row = stored.to_row()
        placeholders = ",".join(["?"] * len(HOSTED_COLUMNS))
        insert_cols = ",".join([f'"{col}"' for col in HOSTED_COLUMNS])
        conn = sqlite3.connect(self.db_path, timeout=10)
        try:
            cur = conn.cursor()
            cur.execute(
                f'INSERT OR IGNORE INTO "{self.table}" ({insert_cols}) VALUES ({placeholders})',
                [row[col] for col in HOSTED_COLUMNS],
            )
            if cur.rowcount and actor:
                record_audit(cur, actor, stored.id, {"created": stored.job_id})
            conn.commit()
        except sqlite3.Error as exc:
            raise ProfileSourceError(f"Insert failed for {stored.email or stored.id}: {exc}") from exc
        finally:
            conn.close()
        return stored

    def update_status(self, profile_id: str, status: str, actor: Optional[str] = None) -> str:
        updated_at = utc_now()
        conn = sqlite3.connect(self.db_path, timeout=10)
        try:
            cur = conn.cursor()
            cur.execute(
                f'UPDATE "{self.table}" SET "status"=?, "updated_at"=? WHERE "id"=?',
                (normalize_status(status), updated_at, profile_id),
            )
            if cur.rowcount == 0:
                raise ProfileNotFoundError(f"No hosted row with id {profile_id}")
            record_audit(cur, actor, profile_id, {"status": normalize_status(status)})
            conn.commit()
        except sqlite3.Error as exc:
            raise ProfileSourceError(f"Status update failed for {profile_id}: {exc}") from exc
        finally:
            conn.close()
        return updated_at


class SpreadsheetSource:
    """Read-only spreadsheet export, delivered as CSV over HTTP or from disk."""

    def __init__(
        self,
        csv_url: str = "",
        path: str = "",
        timeout: float = 10,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.csv_url = (csv_url or "").strip()
        self.path = (path or "").strip()
        self.timeout = timeout
        self._http = http or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.csv_url or self.path)

    def fetch_raw(self) -> str:
        if self.csv_url:
            try:
                resp = self._http.get(self.csv_url, timeout=self.timeout)
                resp.raise_for_status()
            except requests.RequestException as exc:
                raise ProfileSourceError(f"Spreadsheet download failed: {exc}") from exc
            return resp.text
        if self.path:
            try:
                return Path(self.path).read_text(encoding="utf-8-sig")
            except OSError as exc:
                raise ProfileSourceError(f"Spreadsheet file unreadable: {exc}") from exc
        return ""

    def fetch(self, job_id: str) -> List[CandidateProfile]:
        if not self.configured:
            return []
        wanted = str(job_id).strip()
        profiles = rows_to_profiles(parse_csv_text(self.fetch_raw()))
        return [profile for profile in profiles if profile.job_id == wanted]


class ResumeStorage:
    """Stores uploaded resume files and hands back a URL for them."""

    def __init__(self, root: str | Path, public_base_url: str = "") -> None:
        self.root = Path(root)
        self.public_base_url = (public_base_url or "").rstrip("/")

    def upload(self, data: bytes, filename: str, job_id: str) -> str:
        ext = Path(filename or "").suffix.lstrip(".").lower() or "pdf"
        name = f"{job_id}_{int(time.time() * 1000)}.{ext}"
        destination = self.root / "resumes" / name
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(data)
        except OSError as exc:
            raise ProfileSourceError(f"Could not store {filename}: {exc}") from exc
        if self.public_base_url:
            return f"{self.public_base_url}/resumes/{name}"
        return destination.resolve().as_uri()

    def read(self, url: str) -> Optional[bytes]:
        """Return the bytes of a locally stored resume, or None for remote links."""
        parsed = urlparse(url or "")
        if parsed.scheme != "file":
            return None
        path = Path(unquote(parsed.path))
        try:
            path.resolve().relative_to(self.root.resolve())
        except ValueError:
            return None
        return path.read_bytes() if path.exists() else None


class ImportQueue:
    """Background worker copying spreadsheet rows into the hosted table.

    Rows are queued as one batch per job, and a job is never queued twice
    while its batch is outstanding. The worker skips rows whose email the
    hosted table already holds for that job. Submitting never blocks on the
    inserts. Failed inserts are logged, kept in the bounded ``failures`` log
    and passed to ``on_failure`` when given.
    """

    def __init__(
        self,
        hosted: HostedTable,
        on_failure: Optional[Callable[[CandidateProfile, Exception], None]] = None,
        max_failures: int = 100,
    ) -> None:
        self._hosted = hosted
        self._on_failure = on_failure
        self._queue: queue.Queue[Tuple[str, List[CandidateProfile]]] = queue.Queue()
        self._stop = Event()
        self._lock = Lock()
        self._thread: Thread | None = None
        self._queued_jobs: Set[str] = set()
        self.failures: Deque[Tuple[CandidateProfile, str]] = deque(maxlen=max_failures)

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop.clear()
            self._thread = Thread(target=self._run_loop, daemon=True, name="resume-import-queue")
            self._thread.start()

    def submit(self, profiles: List[CandidateProfile]) -> int:
        """Queue rows for import; returns how many rows were actually queued."""
        batches: Dict[str, List[CandidateProfile]] = {}
        for profile in profiles:
            batches.setdefault(profile.job_id, []).append(profile)
        self.start()
        queued = 0
        for job_id, batch in batches.items():
            with self._lock:
                if job_id in self._queued_jobs:
                    logger.debug("Import for job %s already queued", job_id)
                    continue
                self._queued_jobs.add(job_id)
            self._queue.put((job_id, batch))
            queued += len(batch)
        if queued:
            logger.info("Queued %d spreadsheet rows for import", queued)
        return queued

    def is_queued(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._queued_jobs

    def pending(self) -> int:
        return self._queue.qsize()

    def join(self) -> None:
        self._queue.join()

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            self._stop.set()
        if thread is not None and thread.is_alive():
            thread.join(timeout=2.0)
        with self._lock:
            self._thread = None

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                job_id, batch = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                self._import_batch(job_id, batch)
            finally:
                with self._lock:
                    self._queued_jobs.discard(job_id)
                self._queue.task_done()

    def _import_batch(self, job_id: str, batch: List[CandidateProfile]) -> None:
        try:
            known = self._hosted.emails(job_id)
        except ProfileSourceError as exc:
            logger.warning("Could not read existing rows for job %s: %s", job_id, exc)
            known = set()
        for profile in batch:
            email = profile.email.lower()
            if email and email in known:
                continue
            try:
                self._hosted.insert(profile)
            except Exception as exc:
                logger.warning("Import of %s for job %s failed: %s", profile.email, profile.job_id, exc)
                self.failures.append((profile, str(exc)))
                if self._on_failure is not None:
                    self._on_failure(profile, exc)
                continue
            if email:
                known.add(email)


class ProfileSource:
    """Single fetch/update surface over the hosted table and the spreadsheet."""

    def __init__(self, hosted: HostedTable, spreadsheet: SpreadsheetSource, import_queue: ImportQueue) -> None:
        self.hosted = hosted
        self.spreadsheet = spreadsheet
        self.import_queue = import_queue

    def fetch(self, job_id: str) -> List[CandidateProfile]:
        profiles = self.hosted.query(job_id)
        if profiles:
            return profiles
        logger.info("No hosted rows for job %s; reading spreadsheet", job_id)
        fallback = self.spreadsheet.fetch(job_id)
        if fallback:
            self.import_queue.submit(fallback)
        return fallback

    def update_status(self, profile_id: str, status: str, actor: Optional[str] = None) -> str:
        return self.hosted.update_status(profile_id, status, actor=actor)

    def import_from_spreadsheet(self, job_id: str) -> int:
        """Synchronously copy a job's spreadsheet rows, skipping known emails."""
        known = self.hosted.emails(job_id)
        imported = 0
        for profile in self.spreadsheet.fetch(job_id):
            if profile.email.lower() in known:
                continue
            self.hosted.insert(profile)
            known.add(profile.email.lower())
            imported += 1
        return imported


def upload_resume(
    hosted: HostedTable,
    storage: ResumeStorage,
    job_id: str,
    name: str,
    email: str,
    data: bytes,
    filename: str,
    actor: Optional[str] = None,
) -> CandidateProfile:
    pdf_url = storage.upload(data, filename, job_id.strip())
    profile = CandidateProfile(
        id=new_profile_id(),
        job_id=job_id.strip(),
        name=name.strip(),
        email=email.strip(),
        status=STATUS_NEW,
        pdf_url=pdf_url,
    )
    return hosted.insert(profile, actor=actor)


def bulk_upload(hosted: HostedTable, csv_text: str, job_id: str, actor: Optional[str] = None) -> BulkUploadResult:
    profiles, failed = parse_bulk_upload(csv_text, job_id)
    success = 0
    for profile in profiles:
        try:
            hosted.insert(profile, actor=actor)
        except ProfileSourceError as exc:
            logger.warning("Bulk upload row for %s failed: %s", profile.email, exc)
            failed += 1
            continue
        success += 1
    logger.info("Bulk upload for job %s: %d added, %d failed", job_id, success, failed)
    return BulkUploadResult(success=success, failed=failed)


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


@dataclass
class ReviewContext:
    cfg: Dict
    hosted: HostedTable
    spreadsheet: SpreadsheetSource
    storage: ResumeStorage
    import_queue: ImportQueue
    executor: ThreadPoolExecutor
    source: ProfileSource = field(init=False)

    def __post_init__(self) -> None:
        self.source = ProfileSource(self.hosted, self.spreadsheet, self.import_queue)


def init_context(cfg: Dict) -> ReviewContext:
    db_cfg = cfg["database"]
    sheet_cfg = cfg.get("spreadsheet", {}) or {}
    storage_cfg = cfg.get("storage", {}) or {}
    session_cfg = cfg.get("session", {}) or {}
    hosted = HostedTable(db_cfg["path"], db_cfg.get("table", "resumes"))
    context = ReviewContext(
        cfg=cfg,
        hosted=hosted,
        spreadsheet=SpreadsheetSource(
            csv_url=sheet_cfg.get("csv_url", ""),
            path=sheet_cfg.get("path", ""),
            timeout=float(sheet_cfg.get("timeout_seconds", 10)),
        ),
        storage=ResumeStorage(storage_cfg.get("dir", "resume_files"), storage_cfg.get("public_base_url", "")),
        import_queue=ImportQueue(hosted),
        executor=ThreadPoolExecutor(
            max_workers=max(1, int(session_cfg.get("fetch_workers", 4))),
            thread_name_prefix="profile-fetch",
        ),
    )
    logger.info("Review context ready (db=%s, spreadsheet=%s)", hosted.db_path, context.spreadsheet.configured)
    return context


def teardown_context(context: ReviewContext) -> None:
    context.import_queue.join()
    context.import_queue.stop()
    context.executor.shutdown(wait=True)


class ContextHolder:
    """Keeps one live ``ReviewContext`` and replaces it when the config changes.

    The replaced context is torn down, so its fetch workers and import thread
    do not outlive it.
    """

    def __init__(
        self,
        factory: Callable[[Dict], ReviewContext] = init_context,
        teardown: Callable[[ReviewContext], None] = teardown_context,
    ) -> None:
        self._factory = factory
        self._teardown = teardown
        self._lock = Lock()
        self._key: Optional[str] = None
        self._context: Optional[ReviewContext] = None

    def get(self, cfg: Dict, key: str) -> ReviewContext:
        with self._lock:
            if self._context is not None and key == self._key:
                return self._context
            previous = self._context
            context = self._factory(cfg)
            self._context, self._key = context, key
        if previous is not None:
            logger.info("Config changed; replacing review context")
            self._teardown(previous)
        return context

    def close(self) -> None:
        with self._lock:
            context, self._context, self._key = self._context, None, None
        if context is not None:
            self._teardown(context)
