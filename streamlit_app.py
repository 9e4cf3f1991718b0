import atexit
import base64
import logging
from pathlib import Path
from typing import Dict, Optional

import streamlit as st
import streamlit.components.v1 as components

from admin_panel import (
    render_audit_log,
    render_bulk_upload_section,
    render_management_table,
    render_upload_section,
)
from profile_session import CATEGORIES, CATEGORY_LABELS, ProfileSession
from profile_sources import ContextHolder, ReviewContext
from resume_review import (
    STATUS_REJECTED,
    STATUS_SHORTLISTED,
    CandidateProfile,
    ReviewError,
    StatusUpdateError,
    download_url,
    load_config,
    viewer_url,
)

st.set_page_config(page_title="Resume Review", layout="wide")

logger = logging.getLogger("resume_review.app")

SESSION_KEYS = [
    "_auth_user",
    "_auth_display",
    "_auth_error",
    "view",
    "confirm_action",
    "pending_download",
    "review_message",
    "review_error",
    "admin_message",
]
DECISION_VERBS = {STATUS_SHORTLISTED: "shortlist", STATUS_REJECTED: "reject"}


def login(auth_cfg: Dict) -> tuple[str, Dict]:
    users = auth_cfg.get("users", {}) or {}
    if not users:
        st.error("Admin access is not configured. Add users under auth.users in config.yaml.")
        st.stop()

    session = st.session_state
    saved_user = session.get("_auth_user")
    if saved_user and saved_user in users:
        return saved_user, users[saved_user]

    st.title("Admin Login")
    with st.form("login_form", clear_on_submit=False):
        username = st.text_input("Username").strip()
        password = st.text_input("Password", type="password")
        submit = st.form_submit_button("Log in")
    if submit:
        profile = users.get(username)
        if profile and password == profile.get("password"):
            session["_auth_user"] = username
            session["_auth_display"] = profile.get("display_name", username)
            session.pop("_auth_error", None)
            logger.info("Admin %s logged in", username)
            st.rerun()
        else:
            session["_auth_error"] = "Invalid username or password."
            st.rerun()
    if session.get("_auth_error"):
        st.error(session["_auth_error"])
    st.stop()


def get_cfg() -> Dict:
    cfg = load_config()
    config_path = Path(cfg["_meta"]["config_path"])
    cfg["_meta"]["config_mtime"] = config_path.stat().st_mtime if config_path.exists() else 0.0
    return cfg


def configure_logging(cfg: Dict) -> None:
    level = str(cfg.get("logging", {}).get("level", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@st.cache_resource(show_spinner=False)
def get_context_holder() -> ContextHolder:
    holder = ContextHolder()
    atexit.register(holder.close)
    return holder


def get_context(cfg: Dict) -> ReviewContext:
    meta = cfg["_meta"]
    return get_context_holder().get(cfg, f"{meta['config_path']}:{meta['config_mtime']}")


def get_session(context: ReviewContext) -> ProfileSession:
    session = st.session_state.get("profile_session")
    if session is None or not session.bound_to(context):
        session = ProfileSession.from_context(context, job_store=st.query_params)
        st.session_state["profile_session"] = session
    return session


def go(view: str) -> None:
    st.session_state["view"] = view
    st.session_state.pop("confirm_action", None)


def load_profiles(session: ProfileSession) -> Optional[list]:
    try:
        with st.spinner("Loading resumes..."):
            return session.fetch_profiles()
    except ReviewError as exc:
        logger.warning("Fetching job %s failed: %s", session.job_id, exc)
        st.error("Failed to fetch profiles. Please try again.")
        return None


def open_job(session: ProfileSession, job_id: str) -> None:
    session.set_job(job_id)
    profiles = load_profiles(session)
    if profiles is None:
        return
    if not profiles:
        st.warning(f"No profiles found for job {session.job_id}.")
        return
    session.land()
    go("review")
    st.rerun()


def render_landing(session: ProfileSession, title: str) -> None:
    st.title(title)
    st.caption("Enter a job ID to start reviewing its candidate resumes.")
    with st.form("job_form"):
        job_id = st.text_input("Job ID", value=session.job_id, placeholder="e.g. 7")
        submit = st.form_submit_button("Review resumes", type="primary")
    if submit:
        if not job_id.strip():
            st.error("Please enter a Job ID.")
        else:
            open_job(session, job_id)


def render_stats(session: ProfileSession) -> None:
    stats = session.stats
    counts = {
        "all": stats.all,
        "pending": stats.new,
        "shortlisted": stats.shortlisted,
        "rejected": stats.rejected,
    }
    metric_cols = st.columns(len(CATEGORIES))
    for col, category in zip(metric_cols, CATEGORIES):
        col.metric(CATEGORY_LABELS[category], counts[category])
        if col.button(f"View {CATEGORY_LABELS[category].lower()}", key=f"stats_{category}"):
            session.set_active_category(category)
            st.session_state.pop("confirm_action", None)
            st.rerun()


def render_category_selector(session: ProfileSession) -> None:
    stats = session.stats
    choice = st.radio(
        "Category",
        CATEGORIES,
        index=CATEGORIES.index(session.active_category),
        format_func=lambda cat: f"{CATEGORY_LABELS[cat]} ({stats.for_category(cat)})",
        horizontal=True,
        label_visibility="collapsed",
    )
    if choice != session.active_category:
        session.set_active_category(choice)
        st.session_state.pop("confirm_action", None)
        st.rerun()


def render_pagination(session: ProfileSession) -> None:
    pages = session.page_numbers()
    if len(pages) <= 1:
        return
    nav_cols = st.columns(len(pages) + 2)
    if nav_cols[0].button("‹ Prev", key="page_prev", disabled=not session.has_previous):
        session.go_previous()
        st.session_state.pop("confirm_action", None)
        st.rerun()
    current = session.cursor + 1
    for idx, page in enumerate(pages, start=1):
        if page is None:
            nav_cols[idx].markdown("…")
            continue
        if nav_cols[idx].button(str(page), key=f"page_{page}", type="primary" if page == current else "secondary"):
            session.go_to_page(page)
            st.session_state.pop("confirm_action", None)
            st.rerun()
    if nav_cols[-1].button("Next ›", key="page_next", disabled=not session.has_next):
        session.go_next()
        st.session_state.pop("confirm_action", None)
        st.rerun()


def render_resume(context: ReviewContext, profile: CandidateProfile) -> None:
    local_bytes = context.storage.read(profile.pdf_url)
    if local_bytes is not None:
        encoded = base64.b64encode(local_bytes).decode("ascii")
        st.markdown(
            f'<iframe src="data:application/pdf;base64,{encoded}" width="100%" height="720" style="border:none;"></iframe>',
            unsafe_allow_html=True,
        )
    elif profile.pdf_url:
        components.iframe(viewer_url(profile.pdf_url), height=720, scrolling=True)
    else:
        st.info("No resume link on file for this candidate.")


def render_download(context: ReviewContext, name: str, url: str, key: str) -> None:
    local_bytes = context.storage.read(url)
    label = f"Download {name}'s resume" if name else "Download resume"
    if local_bytes is not None:
        st.download_button(label, data=local_bytes, file_name=f"{name or 'resume'}.pdf", mime="application/pdf", key=key)
    elif url:
        st.link_button(label, download_url(url))


def render_decision_controls(session: ProfileSession, profile: CandidateProfile, actor: Optional[str]) -> None:
    action_cols = st.columns(2)
    if action_cols[0].button("Reject", key=f"reject_{profile.id}", disabled=profile.status == STATUS_REJECTED):
        st.session_state["confirm_action"] = (profile.id, STATUS_REJECTED)
        st.rerun()
    if action_cols[1].button(
        "Shortlist",
        key=f"shortlist_{profile.id}",
        type="primary",
        disabled=profile.status == STATUS_SHORTLISTED,
    ):
        st.session_state["confirm_action"] = (profile.id, STATUS_SHORTLISTED)
        st.rerun()

    pending = st.session_state.get("confirm_action")
    if not pending or pending[0] != profile.id:
        return
    decision = pending[1]
    verb = DECISION_VERBS[decision]
    st.warning(f"Are you sure you want to {verb} {profile.name or 'this candidate'}?")
    confirm_cols = st.columns(2)
    if confirm_cols[0].button("Cancel", key="confirm_no"):
        st.session_state.pop("confirm_action", None)
        st.rerun()
    if confirm_cols[1].button(f"Yes, {verb}", key="confirm_yes", type="primary"):
        st.session_state.pop("confirm_action", None)
        try:
            outcome = session.decide(profile, decision, actor=actor)
        except StatusUpdateError as exc:
            st.session_state["review_error"] = f"Failed to update resume status. Please try again. ({exc})"
        else:
            st.session_state["review_message"] = f"Resume {decision.lower()} successfully."
            if outcome.download_url:
                st.session_state["pending_download"] = {"name": profile.name, "url": profile.pdf_url, "id": profile.id}
            if outcome.next_profile is None:
                st.session_state["review_message"] += " No more resumes to review for this job."
                go("landing")
        st.rerun()


def render_review(context: ReviewContext, session: ProfileSession, actor: Optional[str]) -> None:
    if not session.profiles:
        profiles = load_profiles(session)
        if profiles is None:
            if st.button("Retry", key="retry_fetch"):
                st.rerun()
            return
        if not profiles:
            st.warning(f"No profiles found for job {session.job_id}.")
            go("landing")
            return
        session.land()

    st.title(f"Job {session.job_id}")
    download = st.session_state.pop("pending_download", None)
    if download:
        render_download(context, download["name"], download["url"], key=f"shortlist_dl_{download['id']}")

    render_stats(session)
    render_category_selector(session)

    profile = session.current_profile
    if profile is None:
        st.info(f"No resumes in {CATEGORY_LABELS[session.active_category].lower()}.")
        return

    detail_col, resume_col = st.columns([1, 2])
    with detail_col:
        st.subheader(profile.name or "Unnamed candidate")
        st.markdown(f"**Email:** {profile.email or 'not provided'}")
        st.markdown(f"**Status:** {profile.status}")
        st.caption(f"Candidate {session.cursor + 1} of {len(session.filtered_profiles)}")
        render_decision_controls(session, profile, actor)
        render_download(context, profile.name, profile.pdf_url, key=f"dl_{profile.id}")
        with st.expander("Candidates in this category", expanded=False):
            labels = {item.id: f"{item.name} ({item.status})" for item in session.filtered_profiles}
            picked = st.selectbox(
                "Jump to",
                options=list(labels.keys()),
                index=session.cursor,
                format_func=lambda pid: labels.get(pid, pid),
                key=f"jump_{session.active_category}_{session.cursor}",
            )
            if picked != profile.id:
                session.select_profile(picked)
                st.session_state.pop("confirm_action", None)
                st.rerun()
    with resume_col:
        render_resume(context, profile)
    render_pagination(session)


def render_admin(context: ReviewContext, session: ProfileSession, cfg: Dict) -> None:
    username, _ = login(cfg.get("auth", {}))
    st.title("Admin Dashboard")
    upload_tab, bulk_tab, manage_tab = st.tabs(["Upload resume", "Bulk upload", "Manage resumes"])
    with upload_tab:
        uploaded = render_upload_section(context, username)
        if uploaded is not None:
            session.invalidate(uploaded.job_id)
            st.rerun()
    with bulk_tab:
        bulk_job = render_bulk_upload_section(context, username)
        if bulk_job:
            session.invalidate(bulk_job)
            st.rerun()
    with manage_tab:
        chosen = render_management_table(context)
        if chosen is not None:
            session.set_job(chosen.job_id)
            session.invalidate(chosen.job_id)
            if load_profiles(session) is not None and session.select_profile(chosen.id):
                go("review")
                st.rerun()
        render_audit_log(context)


def logout(session: ProfileSession) -> None:
    logger.info("Session for %s logged out", st.session_state.get("_auth_user", "anonymous"))
    session.logout()
    for key in SESSION_KEYS:
        st.session_state.pop(key, None)
    st.rerun()


cfg = get_cfg()
configure_logging(cfg)
context = get_context(cfg)
session = get_session(context)
title = cfg.get("ui", {}).get("title", "Resume Review")

if "view" not in st.session_state:
    st.session_state["view"] = "review" if session.job_id else "landing"

if st.session_state.get("review_message"):
    st.toast(st.session_state.pop("review_message"), icon="✅")
if st.session_state.get("admin_message"):
    st.toast(st.session_state.pop("admin_message"), icon="📄")
if st.session_state.get("review_error"):
    st.error(st.session_state.pop("review_error"))

with st.sidebar:
    st.markdown(f"### {title}")
    if session.job_id:
        st.markdown(f"**Job:** {session.job_id}")
        if st.session_state["view"] != "review" and st.button("Back to review", key="nav_review"):
            go("review")
            st.rerun()
        if st.button("Change job", key="nav_change_job"):
            session.set_job("")
            go("landing")
            st.rerun()
    if st.session_state["view"] != "admin" and st.button("Admin dashboard", key="nav_admin"):
        go("admin")
        st.rerun()
    if st.session_state.get("_auth_user"):
        display_name = st.session_state.get("_auth_display", st.session_state["_auth_user"])
        st.markdown(f"**Logged in as:** {display_name}")
    if st.button("Log out", key="logout_btn"):
        logout(session)
    if not context.spreadsheet.configured:
        st.caption("No spreadsheet fallback configured.")

current_actor = st.session_state.get("_auth_user")
view = st.session_state["view"]
if view == "admin":
    render_admin(context, session, cfg)
elif view == "review" and session.job_id:
    render_review(context, session, current_actor)
else:
    render_landing(session, title)
