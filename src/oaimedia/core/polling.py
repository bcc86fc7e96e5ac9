"""
Polling engine for asynchronous remote jobs.

A poll session drives one remote job (e.g. a video generation) from creation
to a terminal state. Status requests are strictly sequential: the next fetch
is never issued before the previous one has resolved.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ..models import JobStatus, VideoJob
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 10.0
DEFAULT_TIMEOUT_SECONDS = 600.0
DEFAULT_FAILURE_MESSAGE = "Video generation failed"

FetchJob = Callable[[str, Optional[CancellationToken]], Awaitable[VideoJob]]


class PollingError(Exception):
    """Base exception for polling outcomes other than completion."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


class JobFailedError(PollingError):
    """The remote job reached the failed state."""

    def __init__(self, message: str, job: VideoJob):
        super().__init__(message, job_id=job.id)
        self.job = job


class JobTimeoutError(PollingError):
    """The poll session exceeded its timeout."""

    def __init__(self, message: str, job_id: str, timeout_seconds: float):
        super().__init__(message, job_id=job_id)
        self.timeout_seconds = timeout_seconds


class PollingCancelledError(PollingError):
    """The poll session was cancelled through its token."""

    pass


@dataclass
class ProgressUpdate:
    """Progress snapshot handed to ``on_progress`` callbacks."""

    job_id: str
    status: JobStatus
    progress: int
    elapsed_seconds: float
    estimated_remaining_seconds: Optional[float] = None

    def describe(self) -> str:
        label = {
            JobStatus.QUEUED: "Queued",
            JobStatus.IN_PROGRESS: "Processing",
        }.get(self.status, self.status.value)
        text = (
            f"{label} ({self.progress}% complete, "
            f"{int(self.elapsed_seconds)}s elapsed"
        )
        if self.estimated_remaining_seconds is not None:
            text += f" - {int(self.estimated_remaining_seconds)}s remaining"
        return text + ")"


@dataclass
class PollSession:
    """State of a single wait-for-job call."""

    job_id: str
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    cancel_token: Optional[CancellationToken] = None
    started_at: float = field(default_factory=time.monotonic)
    last_progress: Optional[int] = None
    fetch_count: int = 0

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    def estimate_remaining(self, progress: Optional[int]) -> Optional[float]:
        """Linear extrapolation of the remaining time; informational only."""
        if progress is None or not 0 < progress < 100:
            return None
        elapsed = self.elapsed()
        estimated_total = elapsed / progress * 100
        return estimated_total - elapsed


async def wait_for_job(
    fetch_job: FetchJob,
    job_id: str,
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    cancel_token: Optional[CancellationToken] = None,
    on_progress: Optional[Callable[[ProgressUpdate], None]] = None,
) -> VideoJob:
    """
    Poll a remote job until it completes.

    Args:
        fetch_job: Coroutine function returning the current job record; it
            receives the job id and the cancellation token
        job_id: Remote job id
        interval_seconds: Sleep between status fetches
        timeout_seconds: Maximum duration of this session, measured from the
            start of polling (not from job creation)
        cancel_token: Cooperative cancellation token
        on_progress: Optional callback invoked after each non-terminal fetch

    Returns:
        VideoJob: The completed job record

    Raises:
        JobFailedError: The job reported failure
        JobTimeoutError: The session ran longer than ``timeout_seconds``
        PollingCancelledError: The token was cancelled
    """
    if not job_id:
        raise ValueError("Job ID is required")

    session = PollSession(
        job_id=job_id,
        interval_seconds=interval_seconds,
        timeout_seconds=timeout_seconds,
        cancel_token=cancel_token,
    )
    logger.info(f"Waiting for job completion: {job_id}")

    while True:
        if session.cancelled:
            logger.info(f"Polling cancelled for job {job_id}")
            raise PollingCancelledError("Video generation was cancelled", job_id)

        elapsed = session.elapsed()
        if elapsed > timeout_seconds:
            logger.warning(f"Polling timed out for job {job_id} after {elapsed:.1f}s")
            raise JobTimeoutError(
                f"Video generation timed out after {timeout_seconds:g}s",
                job_id,
                timeout_seconds,
            )

        try:
            job = await fetch_job(job_id, cancel_token)
        except Exception as e:
            # an in-flight fetch aborted by the token surfaces as cancellation
            if session.cancelled:
                raise PollingCancelledError(
                    "Video generation was cancelled", job_id
                ) from e
            raise
        session.fetch_count += 1

        if job.status is JobStatus.COMPLETED:
            logger.info(f"Job {job_id} completed after {session.fetch_count} polls")
            return job

        if job.status is JobStatus.FAILED:
            message = (job.error.message if job.error else None) or DEFAULT_FAILURE_MESSAGE
            logger.error(f"Job {job_id} failed: {message}")
            raise JobFailedError(message, job)

        progress = job.progress or 0
        session.last_progress = progress
        update = ProgressUpdate(
            job_id=job_id,
            status=job.status,
            progress=progress,
            elapsed_seconds=session.elapsed(),
            estimated_remaining_seconds=session.estimate_remaining(progress),
        )
        logger.debug(f"Job {job_id}: {update.describe()}")
        if on_progress is not None:
            on_progress(update)

        if cancel_token is not None:
            await cancel_token.sleep(interval_seconds)
        else:
            await asyncio.sleep(interval_seconds)
