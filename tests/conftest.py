"""Shared test fixtures."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from threading import Event
from typing import Dict, List, Optional

import pytest

from profile_sources import HostedTable, ImportQueue, ProfileSource, SpreadsheetSource
from resume_review import CandidateProfile, ProfileNotFoundError, ProfileSourceError, new_profile_id


class FakeSource:
    """In-memory stand-in for ``ProfileSource`` that counts remote calls."""

    def __init__(self, data: Optional[Dict[str, List[CandidateProfile]]] = None) -> None:
        self.data = {job: list(profiles) for job, profiles in (data or {}).items()}
        self.fetch_calls: List[str] = []
        self.updates: List[tuple] = []
        self.fail_fetch = False
        self.fail_updates = False
        self.gates: Dict[str, Event] = {}

    def fetch(self, job_id: str) -> List[CandidateProfile]:
        self.fetch_calls.append(job_id)
        gate = self.gates.get(job_id)
        if gate is not None:
            gate.wait(timeout=5)
        if self.fail_fetch:
            raise ProfileSourceError("remote unavailable")
        return list(self.data.get(job_id, []))

    def update_status(self, profile_id: str, status: str, actor: Optional[str] = None) -> str:
        if self.fail_updates:
            raise ProfileSourceError("remote unavailable")
        for job, profiles in self.data.items():
            for idx, profile in enumerate(profiles):
                if profile.id == profile_id:
                    profiles[idx] = replace(profile, status=status)
                    self.updates.append((profile_id, status, actor))
                    return "2024-01-01T00:00:00+00:00"
        raise ProfileNotFoundError(profile_id)


@pytest.fixture()
def make_profile():
    def _make(job_id: str = "7", name: str = "Ann Lee", status: str = "New", **kwargs) -> CandidateProfile:
        return CandidateProfile(
            id=kwargs.pop("id", new_profile_id()),
            job_id=job_id,
            name=name,
            email=kwargs.pop("email", f"{name.split()[0].lower()}@example.com"),
            status=status,
            pdf_url=kwargs.pop("pdf_url", "https://example.com/resume.pdf"),
        )

    return _make


@pytest.fixture()
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture()
def hosted(tmp_path):
    return HostedTable(tmp_path / "resumes.sqlite")


@pytest.fixture()
def sheet_csv(tmp_path):
    """Spreadsheet export with two rows for job 42 and one for job 9."""
    content = """\
Job ID,Name,Email,Status,Resume URL
42,"Doe, John",john@example.com,New,https://example.com/john.pdf
42,Jane Roe,jane@example.com,Shortlisted,https://drive.google.com/file/d/abc123/view

9,Max Poe,max@example.com,Rejected,https://example.com/max.pdf
"""
    p = tmp_path / "sheet.csv"
    p.write_text(content)
    return p


@pytest.fixture()
def spreadsheet(sheet_csv):
    return SpreadsheetSource(path=str(sheet_csv))


@pytest.fixture()
def import_queue(hosted):
    worker = ImportQueue(hosted)
    yield worker
    worker.stop()


@pytest.fixture()
def source(hosted, spreadsheet, import_queue):
    return ProfileSource(hosted, spreadsheet, import_queue)


@pytest.fixture()
def fake_source():
    return FakeSource()


@pytest.fixture()
def tmp_config_yaml(tmp_path):
    """Write a minimal config.yaml and return its path."""
    content = """\
database:
  path: "{db}"
spreadsheet:
  path: "{sheet}"
storage:
  dir: "{storage}"
session:
  empty_cache_ttl_seconds: 5
  fetch_workers: 2
auth:
  users:
    admin:
      password: "hunter2"
      display_name: "Admin"
logging:
  level: "DEBUG"
""".format(
        db=str(tmp_path / "db" / "resumes.sqlite"),
        sheet=str(tmp_path / "sheet.csv"),
        storage=str(tmp_path / "files"),
    )
    p = tmp_path / "config.yaml"
    p.write_text(content)
    return p
