"""Job submission, background execution, cancellation and resume for one session."""

from __future__ import annotations

import asyncio
import logging

from sourcehive.config import JobsCfg
from sourcehive.db.models import JobState, JobStep, JobType, ResearchJob, new_id
from sourcehive.db.repository import SessionRepository
from sourcehive.errors import InvalidTransition, JobNotFound
from sourcehive.jobs.runner import ResearchJobRunner

logger = logging.getLogger(__name__)


class JobService:
    """Owns the running jobs of one session store.

    ``start`` schedules a job on the current event loop; ``run`` drives it to
    completion in the caller's task. Either way the cancel event registered
    here is what ``cancel`` sets for an in-process job. Jobs not running in
    this process are cancelled by writing the Cancelled state directly; their
    runner observes it before its next phase.
    """

    def __init__(
        self, repo: SessionRepository, runner: ResearchJobRunner, config: JobsCfg
    ) -> None:
        self._repo = repo
        self._runner = runner
        self._config = config
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._tasks: dict[str, asyncio.Task[ResearchJob]] = {}

    def submit(
        self,
        session_id: str,
        prompt: str,
        job_type: JobType = JobType.RESEARCH,
        *,
        target_source_count: int | None = None,
        max_iterations: int | None = None,
    ) -> ResearchJob:
        """Persist a new Pending job and return it.

        Raises:
            ValueError: If the prompt is empty or a limit is below 1.
        """
        if not prompt.strip():
            raise ValueError("research prompt must not be empty")
        target = target_source_count or self._config.target_source_count
        iterations = max_iterations or self._config.max_iterations
        if target < 1 or iterations < 1:
            raise ValueError("target_source_count and max_iterations must be >= 1")

        job = ResearchJob(
            id=new_id(),
            session_id=session_id,
            job_type=job_type,
            prompt=prompt.strip(),
            target_source_count=target,
            max_iterations=iterations,
        )
        self._repo.create_job(job)
        self._repo.add_step(job.id, "submitted", job.prompt[:200], JobState.PENDING)
        logger.info("job_submitted", extra={"job_id": job.id, "job_type": job_type.value})
        return job

    async def run(self, job_id: str) -> ResearchJob:
        """Run *job_id* in the current task until it reaches a terminal state."""
        event = self._cancel_events.setdefault(job_id, asyncio.Event())
        try:
            return await self._runner.run(job_id, event)
        finally:
            self._cancel_events.pop(job_id, None)
            self._tasks.pop(job_id, None)

    def start(self, job_id: str) -> asyncio.Task[ResearchJob]:
        """Schedule *job_id* on the running loop. Must be called from a coroutine."""
        if job_id in self._tasks:
            return self._tasks[job_id]
        self._cancel_events[job_id] = asyncio.Event()
        task = asyncio.get_running_loop().create_task(self.run(job_id), name=f"job-{job_id}")
        task.add_done_callback(_log_task_failure)
        self._tasks[job_id] = task
        return task

    def resume(self, job_id: str) -> asyncio.Task[ResearchJob]:
        """Restart a job left in a working state (e.g. after a crash).

        Raises:
            JobNotFound: If the job does not exist.
            InvalidTransition: If the job is terminal.
        """
        state = self._repo.get_job_state(job_id)
        if state is None:
            raise JobNotFound(job_id)
        if state.is_terminal:
            raise InvalidTransition(f"job {job_id} is {state.value} and cannot resume")
        return self.start(job_id)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation. Returns False if the job was already terminal.

        Raises:
            JobNotFound: If the job does not exist.
        """
        state = self._repo.get_job_state(job_id)
        if state is None:
            raise JobNotFound(job_id)
        if state.is_terminal:
            return False

        event = self._cancel_events.get(job_id)
        if event is not None:
            event.set()
        else:
            self._repo.update_job_state(job_id, JobState.CANCELLED)
            self._repo.add_step(job_id, "cancelled", "Cancelled by request", JobState.CANCELLED)
        logger.info("job_cancel_requested", extra={"job_id": job_id, "running": event is not None})
        return True

    def get_job(self, job_id: str) -> ResearchJob | None:
        return self._repo.get_job(job_id)

    def list_jobs(self, states: list[JobState] | None = None) -> list[ResearchJob]:
        return self._repo.list_jobs(states)

    def get_job_steps(self, job_id: str) -> list[JobStep]:
        return self._repo.get_job_steps(job_id)

    @property
    def running(self) -> list[str]:
        return sorted(self._cancel_events)


def _log_task_failure(task: asyncio.Task[ResearchJob]) -> None:
    # task.exception() marks the error as retrieved.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "job_task_failed",
            extra={"task": task.get_name(), "error": str(exc)},
            exc_info=exc,
        )
