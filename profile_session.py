"""Job-scoped candidate session: cache, category views, cursor and decisions."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, List, MutableMapping, Optional, Sequence, Tuple

from resume_review import (
    STATUS_NEW,
    STATUS_REJECTED,
    STATUS_SHORTLISTED,
    CandidateProfile,
    ProfileSourceError,
    StatusUpdateError,
    download_url,
    normalize_status,
)

logger = logging.getLogger(__name__)

CATEGORIES: List[str] = ["all", "pending", "shortlisted", "rejected"]
CATEGORY_LABELS: Dict[str, str] = {
    "all": "All",
    "pending": "Pending",
    "shortlisted": "Shortlisted",
    "rejected": "Rejected",
}
CATEGORY_STATUS: Dict[str, str] = {
    "pending": STATUS_NEW,
    "shortlisted": STATUS_SHORTLISTED,
    "rejected": STATUS_REJECTED,
}
LEGACY_CATEGORY_MAP = {"new": "pending"}
# Where to continue once the acted-on category is exhausted.
FALLBACK_CATEGORIES: List[str] = ["pending", "shortlisted", "rejected"]
DECISIONS = {STATUS_SHORTLISTED, STATUS_REJECTED}


# ---------------------------------------------------------------------------
# Navigation / category policy
# ---------------------------------------------------------------------------


def normalize_category(category: str) -> str:
    value = str(category or "").strip().lower()
    value = LEGACY_CATEGORY_MAP.get(value, value)
    if value not in CATEGORIES:
        raise ValueError(f"Unknown category: {category!r}")
    return value


def category_predicate(category: str) -> Callable[[CandidateProfile], bool]:
    status = CATEGORY_STATUS.get(normalize_category(category))
    if status is None:
        return lambda profile: True
    return lambda profile: profile.status == status


def filter_by_category(profiles: Sequence[CandidateProfile], category: str) -> List[CandidateProfile]:
    predicate = category_predicate(category)
    return [profile for profile in profiles if predicate(profile)]


def category_of(profile: CandidateProfile) -> str:
    for category, status in CATEGORY_STATUS.items():
        if profile.status == status:
            return category
    return "pending"


def first_to_show(profiles: Sequence[CandidateProfile]) -> Optional[CandidateProfile]:
    for profile in profiles:
        if profile.status == STATUS_NEW:
            return profile
    return profiles[0] if profiles else None


def next_after_decision(
    before: Sequence[CandidateProfile],
    after: Sequence[CandidateProfile],
    category: str,
    decided_id: str,
) -> Tuple[Optional[CandidateProfile], Optional[str]]:
    """Pick what to show after ``decided_id`` was shortlisted or rejected.

    ``before`` is the category view as it was when the decision was made and
    ``after`` the full list with the new status applied. The next profile
    comes from the same category, following the decided one's old position;
    otherwise from the first other category with members; otherwise nothing.
    """
    remaining = [profile for profile in filter_by_category(after, category) if profile.id != decided_id]
    if remaining:
        by_id = {profile.id: profile for profile in remaining}
        order = [profile.id for profile in before]
        if decided_id in order:
            for profile_id in order[order.index(decided_id) + 1 :]:
                if profile_id in by_id:
                    return by_id[profile_id], category
        return remaining[0], category
    for fallback in FALLBACK_CATEGORIES:
        if fallback == category:
            continue
        members = [profile for profile in filter_by_category(after, fallback) if profile.id != decided_id]
        if members:
            return members[0], fallback
    return None, None


def page_numbers(total: int, current: int) -> List[Optional[int]]:
    """1-based page controls; ``None`` marks an ellipsis."""
    if total <= 0:
        return []
    if total <= 5:
        return list(range(1, total + 1))
    items: List[Optional[int]] = [1]
    if current > 3:
        items.append(None)
    start = max(2, current - 1)
    end = min(total - 1, current + 1)
    items.extend(range(start, end + 1))
    if current < total - 2:
        items.append(None)
    items.append(total)
    return items


@dataclass(frozen=True)
class JobStats:
    all: int = 0
    new: int = 0
    shortlisted: int = 0
    rejected: int = 0

    def for_category(self, category: str) -> int:
        key = {"all": "all", "pending": "new", "shortlisted": "shortlisted", "rejected": "rejected"}
        return getattr(self, key[normalize_category(category)])


def compute_stats(profiles: Sequence[CandidateProfile]) -> JobStats:
    return JobStats(
        all=len(profiles),
        new=sum(1 for profile in profiles if profile.status == STATUS_NEW),
        shortlisted=sum(1 for profile in profiles if profile.status == STATUS_SHORTLISTED),
        rejected=sum(1 for profile in profiles if profile.status == STATUS_REJECTED),
    )


@dataclass(frozen=True)
class DecisionOutcome:
    profile: CandidateProfile
    next_profile: Optional[CandidateProfile]
    next_category: Optional[str]
    download_url: str = ""


# ---------------------------------------------------------------------------
# Session manager
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _CacheEntry:
    profiles: Tuple[CandidateProfile, ...]
    fetched_at: float


def _resolved(value) -> Future:
    future: Future = Future()
    future.set_result(value)
    return future


class ProfileSession:
    """Candidate list for the active job plus the per-job cache behind it.

    ``source`` needs ``fetch(job_id)`` and ``update_status(id, status, actor=)``;
    fetches run on ``executor``. The active job id is mirrored into
    ``job_store`` (the page query string in the app) so a reload resumes it.
    """

    JOB_KEY = "job"

    def __init__(
        self,
        source,
        executor: Executor,
        job_store: Optional[MutableMapping] = None,
        empty_cache_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._executor = executor
        self._job_store = job_store if job_store is not None else {}
        self._empty_cache_ttl = float(empty_cache_ttl)
        self._clock = clock
        self._lock = Lock()
        self._cache: Dict[str, _CacheEntry] = {}
        self._in_flight: Dict[Tuple[str, int], Future] = {}
        self._generation = 0
        self._profiles: Tuple[CandidateProfile, ...] = ()
        self.job_id = str(self._job_store.get(self.JOB_KEY, "") or "").strip()
        self.active_category = "all"
        self.cursor = 0

    @classmethod
    def from_context(cls, context, job_store: Optional[MutableMapping] = None) -> "ProfileSession":
        session_cfg = context.cfg.get("session", {}) or {}
        return cls(
            context.source,
            context.executor,
            job_store=job_store,
            empty_cache_ttl=float(session_cfg.get("empty_cache_ttl_seconds", 60)),
        )

    def bound_to(self, context) -> bool:
        return self._source is context.source and self._executor is context.executor

    # --- job & fetch -------------------------------------------------------

    def set_job(self, job_id: str) -> None:
        job_id = str(job_id or "").strip()
        with self._lock:
            changed = job_id != self.job_id
            self.job_id = job_id
        if changed:
            self.clear()
        if job_id:
            self._job_store[self.JOB_KEY] = job_id
        else:
            self._job_store.pop(self.JOB_KEY, None)

    def _entry_valid(self, entry: _CacheEntry) -> bool:
        if entry.profiles:
            return True
        return self._clock() - entry.fetched_at < self._empty_cache_ttl

    def start_fetch(self) -> Future:
        """Begin (or join) the fetch for the active job.

        A valid cache entry resolves immediately. While a fetch for the job is
        outstanding, every caller gets the same future.
        """
        with self._lock:
            job_id = self.job_id
            if not job_id:
                return _resolved([])
            entry = self._cache.get(job_id)
            if entry is not None and self._entry_valid(entry):
                self._profiles = entry.profiles
                self._clamp_cursor()
                return _resolved(list(entry.profiles))
            key = (job_id, self._generation)
            future = self._in_flight.get(key)
            if future is None:
                logger.debug("Fetching profiles for job %s", job_id)
                future = self._executor.submit(self._run_fetch, job_id, self._generation)
                self._in_flight[key] = future
            return future

    def fetch_profiles(self, timeout: Optional[float] = None) -> List[CandidateProfile]:
        return list(self.start_fetch().result(timeout=timeout))

    def _run_fetch(self, job_id: str, generation: int) -> List[CandidateProfile]:
        try:
            profiles = tuple(self._source.fetch(job_id))
        except Exception:
            with self._lock:
                self._in_flight.pop((job_id, generation), None)
            raise
        with self._lock:
            self._in_flight.pop((job_id, generation), None)
            if generation != self._generation:
                logger.debug("Dropping fetch for job %s started before logout", job_id)
                return list(profiles)
            self._cache[job_id] = _CacheEntry(profiles, self._clock())
            if self.job_id == job_id:
                self._profiles = profiles
                self._clamp_cursor()
            else:
                logger.debug("Fetch for job %s resolved after switching to %s", job_id, self.job_id)
        logger.info("Loaded %d profiles for job %s", len(profiles), job_id)
        return list(profiles)

    def is_loading(self) -> bool:
        with self._lock:
            return (self.job_id, self._generation) in self._in_flight

    # --- local state -------------------------------------------------------

    @property
    def profiles(self) -> List[CandidateProfile]:
        return list(self._profiles)

    @property
    def filtered_profiles(self) -> List[CandidateProfile]:
        return filter_by_category(self._profiles, self.active_category)

    @property
    def stats(self) -> JobStats:
        return compute_stats(self._profiles)

    @property
    def has_next(self) -> bool:
        return self.cursor < len(self.filtered_profiles) - 1

    @property
    def has_previous(self) -> bool:
        return self.cursor > 0

    @property
    def current_profile(self) -> Optional[CandidateProfile]:
        view = self.filtered_profiles
        if 0 <= self.cursor < len(view):
            return view[self.cursor]
        return None

    def set_active_category(self, category: str) -> None:
        self.active_category = normalize_category(category)
        self.cursor = 0

    def update_status_locally(self, profile_id: str, status: str) -> None:
        status = normalize_status(status)

        def swap(profiles: Tuple[CandidateProfile, ...]) -> Tuple[CandidateProfile, ...]:
            return tuple(p.with_status(status) if p.id == profile_id else p for p in profiles)

        with self._lock:
            self._profiles = swap(self._profiles)
            entry = self._cache.get(self.job_id)
            if entry is not None:
                self._cache[self.job_id] = _CacheEntry(swap(entry.profiles), entry.fetched_at)

    def invalidate(self, job_id: Optional[str] = None) -> None:
        """Forget the cached list for a job so the next fetch hits the source."""
        job_id = str(job_id if job_id is not None else self.job_id).strip()
        with self._lock:
            self._cache.pop(job_id, None)
            if job_id == self.job_id:
                self._profiles = ()
                self.cursor = 0

    def clear(self) -> None:
        with self._lock:
            self._profiles = ()
            self.cursor = 0

    def logout(self) -> None:
        with self._lock:
            self.job_id = ""
            self._profiles = ()
            self._cache.clear()
            self._in_flight.clear()
            self._generation += 1
            self.cursor = 0
            self.active_category = "all"
        self._job_store.pop(self.JOB_KEY, None)

    def _clamp_cursor(self) -> None:
        size = len(self.filtered_profiles)
        if self.cursor >= size:
            self.cursor = max(0, size - 1)

    # --- cursor ------------------------------------------------------------

    def land(self) -> Optional[CandidateProfile]:
        """Point the cursor at the first profile to review after a fresh fetch."""
        target = first_to_show(self._profiles)
        if target is None:
            return None
        self.set_active_category("pending" if target.status == STATUS_NEW else "all")
        self.select_profile(target.id)
        return target

    def go_next(self) -> bool:
        if not self.has_next:
            return False
        self.cursor += 1
        return True

    def go_previous(self) -> bool:
        if not self.has_previous:
            return False
        self.cursor -= 1
        return True

    def go_to_page(self, page: int) -> bool:
        if 1 <= page <= len(self.filtered_profiles):
            self.cursor = page - 1
            return True
        return False

    def select_profile(self, profile_id: str) -> bool:
        view = self.filtered_profiles
        for idx, profile in enumerate(view):
            if profile.id == profile_id:
                self.cursor = idx
                return True
        for profile in self._profiles:
            if profile.id == profile_id:
                self.set_active_category(category_of(profile))
                return self.select_profile(profile_id)
        return False

    def page_numbers(self) -> List[Optional[int]]:
        return page_numbers(len(self.filtered_profiles), self.cursor + 1)

    # --- decisions ---------------------------------------------------------

    def decide(self, profile: CandidateProfile, decision: str, actor: Optional[str] = None) -> DecisionOutcome:
        """Persist a shortlist/reject decision, then move the cursor on.

        Local state only changes once the hosted table accepted the update;
        on failure ``StatusUpdateError`` is raised and nothing moves.
        """
        decision = normalize_status(decision)
        if decision not in DECISIONS:
            raise ValueError(f"Decision must be Shortlisted or Rejected, got {decision!r}")
        if profile is None or not profile.id:
            raise StatusUpdateError("Profile has no identifier to update")
        category = self.active_category
        before = self.filtered_profiles
        try:
            self._source.update_status(profile.id, decision, actor=actor)
        except ProfileSourceError as exc:
            logger.warning("Status update for %s failed: %s", profile.id, exc)
            raise StatusUpdateError(f"Failed to mark {profile.name or profile.id} as {decision}") from exc
        self.update_status_locally(profile.id, decision)
        next_profile, next_category = next_after_decision(before, self._profiles, category, profile.id)
        if next_profile is not None and next_category is not None:
            if next_category != self.active_category:
                self.set_active_category(next_category)
            self.select_profile(next_profile.id)
        else:
            self._clamp_cursor()
        logger.info("Profile %s marked %s by %s", profile.id, decision, actor or "anonymous")
        return DecisionOutcome(
            profile=profile.with_status(decision),
            next_profile=next_profile,
            next_category=next_category,
            download_url=download_url(profile.pdf_url) if decision == STATUS_SHORTLISTED else "",
        )
