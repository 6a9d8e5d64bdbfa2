"""Stage Orchestrator - runs the six transformation stages for a job.

Stages execute strictly in order 0 -> 5. Each is a callable taking the
current PipelineContext and returning its artifact; the runner records
every transition through the Stage Status Updater and folds artifacts into
a new context. Any stage exception marks the job failed at that stage
with a user-safe message and halts the run.

A failed job is resumed from its first unfinished stage (or an explicit
``from_stage``): that stage and everything after it are reset, and earlier
stages are rebuilt from their stored artifacts without calling the
generation client again.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from ..config import PipelineSettings
from ..db.job_store import STAGE_COUNT, JobStore, stage_key
from .classify import ContentClassifier, normalize_text
from .errors import JobNotFoundError, JobStateError, StageFailure
from .identify import IdentityExtractor
from .materialize import ExperienceMaterializer
from .models import PipelineContext, artifact_from_dict
from .moments import MomentPlanner
from .read import StructuralReader
from .status import complete_job, first_unfinished_stage, reset_from_stage, update_job_stage
from .world import WorldExtractor

logger = logging.getLogger(__name__)

# Stage index -> (name, message shown to the user when the stage fails)
STAGES = {
    0: ("classify", "We couldn't process your input. Try a different format."),
    1: ("read", "We had trouble understanding your story's structure."),
    2: ("identify", "We couldn't identify the core story elements."),
    3: ("world", "We had trouble extracting characters and locations."),
    4: ("moments", "We couldn't shape the story into moments."),
    5: ("materialize", "We couldn't create the final story experience."),
}


class PipelineRunner:
    """Runs and resumes transformation jobs."""

    def __init__(
        self,
        store: JobStore,
        llm_gateway,
        prompt_registry,
        settings: Optional[PipelineSettings] = None,
        progress_fn: Optional[Callable[[str], None]] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            store: Job store holding jobs and universes.
            llm_gateway: Content-generation client used by stages 1-5.
            prompt_registry: Registry the stage instructions load from.
            settings: Pipeline settings (excerpt limits, hook pack override).
            progress_fn: Optional callback receiving progress messages.
            now_fn: Clock for card scheduling; UTC now by default.
        """
        self.store = store
        self.settings = settings or PipelineSettings()
        self._progress = progress_fn or (lambda msg: None)
        self.timings: dict[str, int] = {}

        args = (llm_gateway, prompt_registry, self.settings, self._progress)
        self._stages = {
            0: ContentClassifier(),
            1: StructuralReader(*args),
            2: IdentityExtractor(*args),
            3: WorldExtractor(*args),
            4: MomentPlanner(*args),
            5: ExperienceMaterializer(
                llm_gateway, prompt_registry, store, self.settings,
                progress_fn=self._progress, now_fn=now_fn,
            ),
        }

    def run(self, job_id: int, source_text: str, from_stage: Optional[int] = None) -> int:
        """Run (or resume) a job to completion.

        Args:
            job_id: Existing job record.
            source_text: Raw source text; re-supplied on every resume.
            from_stage: Force re-running from this stage. Required to rerun
                a completed job.

        Returns:
            Id of the universe the job produced.

        Raises:
            JobNotFoundError: No such job; nothing is run.
            JobStateError: The job is completed and no from_stage was given.
            StageFailure: A stage failed; the job is marked failed.
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        start = self._start_stage(job, from_stage)
        if start > 0 or job["status"] != "queued":
            job = reset_from_stage(self.store, job_id, start)

        ctx = PipelineContext(
            job_id=job_id,
            source_text=source_text,
            normalized_text=normalize_text(source_text),
            story_length=job["story_length"],
        )
        for stage in range(start):
            logger.info("Resuming - loading completed stage %d (%s)", stage, STAGES[stage][0])
            ctx = ctx.with_artifact(
                stage, artifact_from_dict(stage, job["artifacts"][stage_key(stage)])
            )

        logger.info("Running job %s from stage %d", job_id, start)
        for stage in range(start, STAGE_COUNT):
            ctx = self._run_stage(stage, ctx)
            if stage == 0:
                self.store.update_job(job_id, source_type=ctx.classification.detected_type)

        universe_id = ctx.artifacts[5].universe_id
        complete_job(self.store, job_id, universe_id)
        logger.info(
            "Job %s completed: universe %d (%dms total)",
            job_id, universe_id, sum(self.timings.values()),
        )
        return universe_id

    def _start_stage(self, job: dict, from_stage: Optional[int]) -> int:
        """First stage this run executes."""
        if from_stage is not None:
            if not 0 <= from_stage < STAGE_COUNT:
                raise ValueError(f"Stage index out of range: {from_stage}")
        elif job["status"] == "completed":
            raise JobStateError(
                f"Job {job['id']} is already completed; pass from_stage to rerun it"
            )

        start = first_unfinished_stage(job)
        # Every stage before the start must have an artifact to rebuild from
        for stage in range(min(start, STAGE_COUNT)):
            if stage_key(stage) not in job["artifacts"]:
                start = stage
                break

        if from_stage is not None:
            start = min(start, from_stage)
        return min(start, STAGE_COUNT - 1)

    def _run_stage(self, stage: int, ctx: PipelineContext) -> PipelineContext:
        """Run one stage inside the failure boundary."""
        name, user_message = STAGES[stage]
        self._progress(f"Stage {stage}: {name}")
        update_job_stage(self.store, ctx.job_id, stage, "running")

        start = time.time()
        try:
            artifact = self._stages[stage](ctx)
        except Exception as e:
            elapsed = time.time() - start
            self.timings[name] = round(elapsed * 1000)
            dev_message = str(e) or type(e).__name__
            update_job_stage(
                self.store, ctx.job_id, stage, "failed",
                error={"user": user_message, "dev": dev_message},
            )
            logger.error(
                "Job %s stage %d (%s) failed after %.1fs: %s",
                ctx.job_id, stage, name, elapsed, dev_message,
            )
            raise StageFailure(stage, user_message, dev_message) from e

        elapsed = time.time() - start
        self.timings[name] = round(elapsed * 1000)
        update_job_stage(self.store, ctx.job_id, stage, "done", artifacts=artifact)
        logger.info("Stage %d (%s) completed in %.1fs", stage, name, elapsed)
        return ctx.with_artifact(stage, artifact)


def run_pipeline(
    job_id: int,
    source_text: str,
    llm_gateway,
    store: JobStore,
    prompt_registry=None,
    settings: Optional[PipelineSettings] = None,
    progress_fn: Optional[Callable[[str], None]] = None,
    from_stage: Optional[int] = None,
) -> int:
    """Run a job with a default prompt registry. Returns the universe id."""
    if prompt_registry is None:
        from ..llm.prompt_registry import PromptRegistry
        prompt_registry = PromptRegistry()
    runner = PipelineRunner(
        store, llm_gateway, prompt_registry,
        settings=settings, progress_fn=progress_fn,
    )
    return runner.run(job_id, source_text, from_stage=from_stage)
