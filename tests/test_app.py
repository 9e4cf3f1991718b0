"""Smoke tests driving the Streamlit script."""

from __future__ import annotations

from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

APP_PATH = Path(__file__).resolve().parents[1] / "streamlit_app.py"


@pytest.fixture()
def app(tmp_config_yaml, sheet_csv, monkeypatch):
    monkeypatch.setenv("RESUME_REVIEW_CONFIG", str(tmp_config_yaml))
    return AppTest.from_file(str(APP_PATH), default_timeout=30)


def _button(buttons, label):
    return next(button for button in buttons if button.label == label)


def test_landing_page(app):
    app.run()
    assert not app.exception
    assert app.title[0].value == "Resume Review"


def test_open_job_then_log_out(app):
    app.run()
    app.text_input[0].input("9")
    _button(app.button, "Review resumes").click().run()
    assert not app.exception
    assert app.title[0].value == "Job 9"
    assert app.session_state["profile_session"].job_id == "9"

    _button(app.sidebar.button, "Log out").click().run()
    assert not app.exception
    assert app.title[0].value == "Resume Review"
    assert app.session_state["profile_session"].job_id == ""
