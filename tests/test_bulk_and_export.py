"""Tests for admin bulk upload and the CSV report."""

from __future__ import annotations

from profile_sources import bulk_upload
from resume_review import (
    EXPORT_HEADER,
    PLACEHOLDER_RESUME_URL,
    STATUS_NEW,
    CandidateProfile,
    find_bulk_columns,
    parse_bulk_upload,
    profiles_to_csv,
)

BULK_CSV = """\
Full Name,Email Address,Resume Link
Ann Lee,ann@example.com,https://example.com/ann.pdf
Bob Stone,,https://example.com/bob.pdf
"Poe, Max",max@example.com,
"""


def test_find_bulk_columns_by_substring():
    columns = find_bulk_columns(["Full Name", "Email Address", "Resume Link"])
    assert columns == {"name": 0, "email": 1, "pdf_url": 2}


def test_find_bulk_columns_missing():
    columns = find_bulk_columns(["Candidate", "Mail"])
    assert columns["name"] is None
    assert columns["email"] is None
    assert columns["pdf_url"] is None


def test_parse_bulk_upload_counts_failures():
    profiles, failed = parse_bulk_upload(BULK_CSV, " 12 ")
    assert failed == 1
    assert [p.name for p in profiles] == ["Ann Lee", "Poe, Max"]
    assert all(p.job_id == "12" for p in profiles)
    assert all(p.status == STATUS_NEW for p in profiles)


def test_parse_bulk_upload_placeholder_url():
    profiles, _ = parse_bulk_upload(BULK_CSV, "12")
    assert profiles[1].pdf_url == PLACEHOLDER_RESUME_URL


def test_parse_bulk_upload_empty():
    assert parse_bulk_upload("", "12") == ([], 0)


def test_bulk_upload_inserts_rows(hosted):
    result = bulk_upload(hosted, BULK_CSV, "12", actor="admin")
    assert result.success == 2
    assert result.failed == 1
    stored = hosted.query("12")
    assert {p.email for p in stored} == {"ann@example.com", "max@example.com"}


def test_profiles_to_csv_quotes_name_and_url():
    profile = CandidateProfile(
        id="1",
        job_id="7",
        name='Ann "A" Lee',
        email="ann@example.com",
        status="Shortlisted",
        pdf_url="https://example.com/a,b.pdf",
    )
    lines = profiles_to_csv([profile]).splitlines()
    assert lines[0] == EXPORT_HEADER
    assert lines[1] == '7,"Ann ""A"" Lee",ann@example.com,Shortlisted,"https://example.com/a,b.pdf"'


def test_profiles_to_csv_header_only():
    assert profiles_to_csv([]) == EXPORT_HEADER + "\n"


def test_parse_bulk_upload_escaped_quote():
    text = 'Name,Email,PDF\n"O""Neil, Pat",pat@example.com,https://example.com/pat.pdf\n'
    profiles, failed = parse_bulk_upload(text, "7")
    assert failed == 0
    assert profiles[0].name == 'O"Neil, Pat'


def test_report_reads_back_through_bulk_upload():
    profile = CandidateProfile(
        id="1",
        job_id="7",
        name='Ann "A" Lee',
        email="ann@example.com",
        status="Shortlisted",
        pdf_url="https://example.com/a,b.pdf",
    )
    profiles, failed = parse_bulk_upload(profiles_to_csv([profile]), "7")
    assert failed == 0
    assert (profiles[0].name, profiles[0].email, profiles[0].pdf_url) == (
        'Ann "A" Lee',
        "ann@example.com",
        "https://example.com/a,b.pdf",
    )
