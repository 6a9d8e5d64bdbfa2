"""Pipeline exceptions."""


class PipelineError(Exception):
    """Base class for pipeline failures."""


class JobNotFoundError(PipelineError):
    """The job record a run was given does not exist."""

    def __init__(self, job_id: int):
        super().__init__(f"Transformation job {job_id} not found")
        self.job_id = job_id


class JobStateError(PipelineError):
    """The job is in a status the requested action cannot start from."""


class StageFailure(PipelineError):
    """A stage failed; the job has been marked failed at that stage."""

    def __init__(self, stage: int, user_message: str, dev_message: str):
        super().__init__(f"Stage {stage} failed: {dev_message}")
        self.stage = stage
        self.user_message = user_message
        self.dev_message = dev_message
