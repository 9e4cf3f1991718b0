"""Tests for spreadsheet CSV parsing."""

from __future__ import annotations

from resume_review import STATUS_NEW, STATUS_REJECTED, parse_csv_line, parse_csv_text, rows_to_profiles


def test_quoted_delimiter_kept_in_field():
    fields = parse_csv_line('"Doe, John",john@x.com,Shortlisted')
    assert fields == ["Doe, John", "john@x.com", "Shortlisted"]


def test_plain_line():
    assert parse_csv_line("7,Ann,ann@x.com") == ["7", "Ann", "ann@x.com"]


def test_keep_quotes_when_asked():
    fields = parse_csv_line('"Doe, John",john@x.com', unquote=False)
    assert fields == ['"Doe, John"', "john@x.com"]


def test_custom_delimiter():
    assert parse_csv_line('a;"b;c";d', delimiter=";") == ["a", "b;c", "d"]


def test_unbalanced_quote_does_not_raise():
    assert parse_csv_line('"abc,def') == ['"abc', "def"]


def test_empty_fields_preserved():
    assert parse_csv_line("7,,x@y.com,,") == ["7", "", "x@y.com", "", ""]


def test_blank_lines_skipped():
    rows = parse_csv_text("a,b\n\n  \nc,d\n")
    assert rows == [["a", "b"], ["c", "d"]]


def test_rows_to_profiles_skips_header_and_pads():
    rows = parse_csv_text("Job ID,Name,Email,Status,Resume URL\n7,Ann Lee\n7,Bob,bob@x.com,rejected,https://x/bob.pdf\n")
    profiles = rows_to_profiles(rows)
    assert [p.name for p in profiles] == ["Ann Lee", "Bob"]
    assert profiles[0].email == ""
    assert profiles[0].status == STATUS_NEW
    assert profiles[1].status == STATUS_REJECTED
    assert profiles[1].pdf_url == "https://x/bob.pdf"


def test_rows_to_profiles_assigns_distinct_ids():
    rows = [["7", "A", "a@x.com"], ["7", "B", "b@x.com"]]
    profiles = rows_to_profiles(rows, skip_header=False)
    assert len({p.id for p in profiles}) == 2
    assert all(p.id for p in profiles)


def test_unknown_status_becomes_new():
    profiles = rows_to_profiles([["7", "A", "a@x.com", "Maybe"]], skip_header=False)
    assert profiles[0].status == STATUS_NEW


def test_spreadsheet_ids_stable_across_reads():
    text = "Job ID,Name,Email\n42,Ann,Ann@x.com\n42,Bob,bob@x.com\n"
    first = rows_to_profiles(parse_csv_text(text))
    second = rows_to_profiles(parse_csv_text(text))
    assert [p.id for p in first] == [p.id for p in second]
    assert first[0].id != first[1].id
