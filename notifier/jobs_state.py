import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from notifier.scheduler import get_scheduler

logger = logging.getLogger(__name__)


@dataclass
class JobStatus:
    last_run_at: Optional[str] = None
    last_ok: Optional[bool] = None
    last_error: Optional[str] = None
    last_summary: Optional[dict] = None
    next_run_at: Optional[str] = None


_job_states: dict[str, JobStatus] = {}


def _ensure_job_key(job_key: str) -> JobStatus:
    if job_key not in _job_states:
        _job_states[job_key] = JobStatus()
    return _job_states[job_key]


def _to_iso(dt: Optional[datetime]) -> Optional[str]:
    if not dt:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def mark_job_start(job_key: str) -> None:
    state = _ensure_job_key(job_key)
    state.last_run_at = _to_iso(datetime.now(timezone.utc))


def mark_job_success(job_key: str, summary: Optional[dict] = None) -> None:
    state = _ensure_job_key(job_key)
    state.last_ok = True
    state.last_error = None
    state.last_summary = summary


def mark_job_error(job_key: str, error: BaseException) -> None:
    state = _ensure_job_key(job_key)
    state.last_ok = False
    state.last_error = str(error)


def refresh_next_run(job_key: str) -> None:
    scheduler = get_scheduler()
    if not scheduler:
        return

    try:
        job = scheduler.get_job(job_key)
        next_run = job.next_run_time if job else None
        _ensure_job_key(job_key).next_run_at = _to_iso(next_run)
    except Exception as exc:
        logger.debug("Unable to refresh next run for %s: %s", job_key, exc)


def get_all_states() -> dict[str, dict[str, object]]:
    for job_key in list(_job_states.keys()):
        refresh_next_run(job_key)
    return {job_key: asdict(state) for job_key, state in _job_states.items()}


def reset_states() -> None:
    _job_states.clear()


def run_job(job_key: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    mark_job_start(job_key)
    try:
        result = func(*args, **kwargs)
        mark_job_success(job_key, result if isinstance(result, dict) else None)
        return result
    except Exception as exc:
        mark_job_error(job_key, exc)
        raise
    finally:
        refresh_next_run(job_key)
