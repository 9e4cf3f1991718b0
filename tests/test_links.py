"""Tests for resume link rewriting."""

from __future__ import annotations

from resume_review import download_url, viewer_url


def test_google_doc_download():
    url = "https://docs.google.com/document/d/abc123/edit?usp=sharing"
    assert download_url(url) == "https://docs.google.com/document/d/abc123/export?format=pdf"


def test_google_doc_preview_download():
    url = "https://docs.google.com/document/d/abc123/preview"
    assert download_url(url) == "https://docs.google.com/document/d/abc123/export?format=pdf"


def test_drive_file_download():
    url = "https://drive.google.com/file/d/xyz789/view?usp=sharing"
    assert download_url(url) == "https://drive.google.com/uc?export=download&id=xyz789"


def test_drive_file_viewer():
    url = "https://drive.google.com/file/d/xyz789/view"
    assert viewer_url(url) == "https://drive.google.com/file/d/xyz789/preview"


def test_other_links_unchanged():
    url = "https://example.com/resume.pdf"
    assert download_url(url) == url
    assert viewer_url(url) == url


def test_empty_link():
    assert download_url("") == ""
    assert viewer_url(None) == ""
