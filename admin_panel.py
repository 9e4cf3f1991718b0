"""Admin dashboard sections for the Streamlit app."""

from datetime import datetime
from typing import List, Optional

import pandas as pd
import streamlit as st

from profile_sources import ReviewContext, bulk_upload, upload_resume
from resume_review import CandidateProfile, ReviewError, fetch_audit_log, profiles_to_csv

SEARCH_COLUMNS = ["name", "email", "job_id", "status"]


def render_upload_section(context: ReviewContext, actor: str) -> Optional[CandidateProfile]:
    """Single resume upload: PDF goes to storage, the row to the hosted table."""
    st.subheader("Upload Resume")
    st.caption("Add a new candidate resume to the system.")
    with st.form("single_upload_form", clear_on_submit=True):
        job_id = st.text_input("Job ID", placeholder="Enter job ID")
        name = st.text_input("Candidate name")
        email = st.text_input("Email")
        pdf_file = st.file_uploader("Resume PDF", type=["pdf"])
        submit = st.form_submit_button("Upload resume")
    if not submit:
        return None
    if not (job_id.strip() and name.strip() and email.strip()):
        st.error("Job ID, name and email are all required.")
        return None
    if pdf_file is None:
        st.error("Please select a PDF file.")
        return None
    try:
        profile = upload_resume(
            context.hosted,
            context.storage,
            job_id=job_id,
            name=name,
            email=email,
            data=pdf_file.getvalue(),
            filename=pdf_file.name,
            actor=actor,
        )
    except ReviewError as exc:
        st.error(f"Failed to upload resume. Please try again. ({exc})")
        return None
    st.session_state["admin_message"] = f"Uploaded resume for {profile.name} (job {profile.job_id})."
    return profile


def render_bulk_upload_section(context: ReviewContext, actor: str) -> Optional[str]:
    """Bulk CSV upload; returns the job id that received rows, if any."""
    st.subheader("Bulk Upload Resumes")
    st.caption(
        "CSV with a header row. Columns are matched by name: one containing 'name', "
        "one containing 'email' and one containing 'pdf', 'url' or 'resume'."
    )
    with st.form("bulk_upload_form", clear_on_submit=True):
        job_id = st.text_input("Job ID", placeholder="Enter job ID", key="bulk_job_id")
        csv_file = st.file_uploader("CSV file", type=["csv"])
        csv_text = st.text_area("…or paste CSV", height=150)
        submit = st.form_submit_button("Upload CSV")
    if not submit:
        return None
    if not job_id.strip():
        st.error("Please enter a Job ID.")
        return None
    data = csv_file.getvalue().decode("utf-8-sig") if csv_file is not None else csv_text
    if not data.strip():
        st.error("Please provide CSV data either by file upload or manual input.")
        return None
    result = bulk_upload(context.hosted, data, job_id.strip(), actor=actor)
    if result.success == 0:
        st.error("Failed to upload resumes. Please check the CSV format.")
        return None
    failed_note = f", {result.failed} failed" if result.failed else ""
    st.session_state["admin_message"] = f"Successfully uploaded {result.success} resumes{failed_note}."
    return job_id.strip()


def search_profiles(df: pd.DataFrame, search_text: str) -> pd.DataFrame:
    if not search_text or df.empty:
        return df
    needle = search_text.lower()
    cols = [col for col in SEARCH_COLUMNS if col in df.columns]
    mask = df.apply(lambda row: any(needle in str(row.get(col, "")).lower() for col in cols), axis=1)
    return df[mask]


def render_management_table(context: ReviewContext) -> Optional[CandidateProfile]:
    """Searchable table of every hosted resume; returns a profile to open."""
    st.subheader("Resume Management")
    try:
        df = context.hosted.frame()
    except ReviewError as exc:
        st.error(f"Failed to load resumes. Please try again. ({exc})")
        return None
    if df.empty:
        st.info("No resumes uploaded yet.")
        return None
    search_text = st.text_input("Search name, email, job or status", key="admin_search")
    filtered = search_profiles(df, search_text)
    display = filtered.rename(
        columns={"job_id": "Job ID", "name": "Name", "email": "Email", "status": "Status", "pdf_url": "Resume URL", "updated_at": "Updated"}
    )
    st.dataframe(display.drop(columns=["id"]), width="stretch", hide_index=True)
    profiles: List[CandidateProfile] = [CandidateProfile.from_row(row) for row in filtered.to_dict("records")]
    st.download_button(
        "Download CSV report",
        data=profiles_to_csv(profiles).encode("utf-8"),
        file_name=f"resume-report-{datetime.now().strftime('%Y-%m-%d')}.csv",
        mime="text/csv",
        key="dl_resume_report",
    )
    if not profiles:
        st.info("No resumes match the search.")
        return None
    labels = {profile.id: f"{profile.name} <{profile.email}> · job {profile.job_id} ({profile.status})" for profile in profiles}
    open_cols = st.columns([3, 1])
    selected = open_cols[0].selectbox(
        "Open resume",
        options=list(labels.keys()),
        format_func=lambda pid: labels.get(pid, pid),
        key="admin_open_resume",
    )
    if open_cols[1].button("View resume", key="admin_view_resume"):
        return next((profile for profile in profiles if profile.id == selected), None)
    return None


def render_audit_log(context: ReviewContext, limit: int = 200) -> None:
    with st.expander("Recent status changes", expanded=False):
        log_df = fetch_audit_log(context.hosted.db_path, limit=limit)
        if log_df.empty:
            st.caption("No changes recorded yet.")
        else:
            st.dataframe(log_df, width="stretch", hide_index=True)
