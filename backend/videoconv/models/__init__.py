from videoconv.models.job import Job, JobPhase, TERMINAL_PHASES, new_job_id

__all__ = ["Job", "JobPhase", "TERMINAL_PHASES", "new_job_id"]
