"""Tests for config loading."""

from __future__ import annotations

from resume_review import DEFAULT_CONFIG, CandidateProfile, get_users, load_config


def test_load_config_merges_defaults(tmp_config_yaml):
    cfg = load_config(tmp_config_yaml)
    assert cfg["database"]["path"].endswith("resumes.sqlite")
    assert cfg["database"]["table"] == "resumes"
    assert cfg["session"]["empty_cache_ttl_seconds"] == 5
    assert cfg["ui"]["title"] == DEFAULT_CONFIG["ui"]["title"]
    assert cfg["_meta"]["config_path"] == str(tmp_config_yaml)


def test_missing_file_gives_defaults(tmp_path):
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg["database"] == DEFAULT_CONFIG["database"]
    assert get_users(cfg) == {}


def test_env_var_selects_file(tmp_config_yaml, monkeypatch):
    monkeypatch.setenv("RESUME_REVIEW_CONFIG", str(tmp_config_yaml))
    cfg = load_config()
    assert get_users(cfg)["admin"]["display_name"] == "Admin"


def test_defaults_not_mutated(tmp_config_yaml):
    load_config(tmp_config_yaml)
    assert DEFAULT_CONFIG["session"]["empty_cache_ttl_seconds"] == 60


def test_profile_from_camel_case_row():
    profile = CandidateProfile.from_row(
        {"id": "1", "jobId": " 7 ", "name": "Ann", "email": "a@x.com", "status": "shortlisted", "pdfUrl": "u"}
    )
    assert profile.job_id == "7"
    assert profile.status == "Shortlisted"
    assert profile.pdf_url == "u"
