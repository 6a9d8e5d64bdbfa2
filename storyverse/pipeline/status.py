"""Stage Status Updater - the job state machine's transition function.

Every change to a job's progress goes through ``update_job_stage``: it
reads the job, merges one stage's status and artifact into the six-slot
records (never replacing the other stages), and writes it back in one
locked transaction. Readers polling the job always see a consistent view.
"""

import logging
from typing import Optional

from ..db.job_store import STAGE_COUNT, STAGE_STATUSES, JobStore, empty_stage_statuses, stage_key
from .errors import JobNotFoundError
from .models import StageArtifacts

logger = logging.getLogger(__name__)

DEFAULT_USER_ERROR = "An unexpected error occurred."
DEFAULT_DEV_ERROR = "Unknown error"


def update_job_stage(
    store: JobStore,
    job_id: int,
    stage: int,
    status: str,
    artifacts: Optional[StageArtifacts] = None,
    error: Optional[dict] = None,
) -> dict:
    """Record a stage transition.

    Args:
        store: Job store holding the job.
        job_id: Job to update.
        stage: Stage index (0-5); becomes the job's current stage.
        status: New stage status (pending, running, done, failed).
        artifacts: The stage's artifact, merged under ``stage{n}``.
        error: Optional ``{"user": ..., "dev": ...}`` for failures.

    Returns:
        The updated job record.
    """
    _check_stage(stage)
    if status not in STAGE_STATUSES:
        raise ValueError(f"Unknown stage status: {status}")

    def merge(job: dict) -> dict:
        stage_statuses = dict(job["stage_statuses"] or empty_stage_statuses())
        stage_statuses[stage_key(stage)] = status

        current_artifacts = dict(job["artifacts"] or {})
        if artifacts is not None:
            current_artifacts[stage_key(stage)] = artifacts.to_dict()

        updates = {
            "stage_statuses": stage_statuses,
            "artifacts": current_artifacts,
            "current_stage": stage,
        }

        if status == "running":
            updates["status"] = "running"
        elif status == "failed":
            updates["status"] = "failed"
            updates["error_message_user"] = (error or {}).get("user") or DEFAULT_USER_ERROR
            updates["error_message_dev"] = (error or {}).get("dev") or DEFAULT_DEV_ERROR

        return updates

    job = store.modify_job(job_id, merge)
    if job is None:
        raise JobNotFoundError(job_id)

    logger.debug("Job %s stage %d -> %s", job_id, stage, status)
    return job


def reset_from_stage(store: JobStore, job_id: int, stage: int) -> dict:
    """Return a stage and everything after it to pending for a retry.

    Artifacts of those stages are dropped so they are recomputed; earlier
    stages keep their status and artifacts untouched. The job goes back to
    ``queued`` with its error messages cleared.
    """
    _check_stage(stage)

    def reset(job: dict) -> dict:
        stage_statuses = dict(job["stage_statuses"] or empty_stage_statuses())
        current_artifacts = dict(job["artifacts"] or {})
        for i in range(stage, STAGE_COUNT):
            stage_statuses[stage_key(i)] = "pending"
            current_artifacts.pop(stage_key(i), None)
        return {
            "status": "queued",
            "current_stage": stage,
            "stage_statuses": stage_statuses,
            "artifacts": current_artifacts,
            "output_universe_id": None,
            "error_message_user": None,
            "error_message_dev": None,
        }

    job = store.modify_job(job_id, reset)
    if job is None:
        raise JobNotFoundError(job_id)

    logger.info("Job %s reset from stage %d", job_id, stage)
    return job


def complete_job(store: JobStore, job_id: int, universe_id: int) -> dict:
    """Mark a job completed and record the universe it produced."""
    job = store.modify_job(job_id, lambda _job: {
        "status": "completed",
        "output_universe_id": universe_id,
    })
    if job is None:
        raise JobNotFoundError(job_id)
    return job


def first_unfinished_stage(job: dict) -> int:
    """Index of the first stage not marked done (STAGE_COUNT if all are)."""
    statuses = job["stage_statuses"] or empty_stage_statuses()
    for i in range(STAGE_COUNT):
        if statuses.get(stage_key(i)) != "done":
            return i
    return STAGE_COUNT


def _check_stage(stage: int) -> None:
    if not 0 <= stage < STAGE_COUNT:
        raise ValueError(f"Stage index out of range: {stage}")
