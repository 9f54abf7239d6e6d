import asyncio
from typing import Awaitable, Callable
from loguru import logger

from tools.apify import JobHandle, JobState
from tools.errors import TransientQueryError

MAX_CONSECUTIVE_QUERY_ERRORS = 3


async def poll(
    client,
    handle: JobHandle,
    interval: float,
    max_attempts: int,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> JobState:
    """
    Wait for a job to reach a terminal state.

    Each attempt sleeps ``interval`` seconds and then queries the job once.
    A failed query uses up its attempt; three failures in a row give up with
    ABORTED. Running out of attempts returns TIMED_OUT even though the remote
    job may still be running.

    Args:
        client: Anything with an async ``query_status(handle)``
        handle: Job to watch
        interval: Seconds to sleep before each query
        max_attempts: Query budget
        sleep: Coroutine used for sleeping

    Returns:
        A terminal JobState
    """
    consecutive_errors = 0

    for attempt in range(1, max_attempts + 1):
        await sleep(interval)
        try:
            state = await client.query_status(handle)
        except TransientQueryError as e:
            consecutive_errors += 1
            logger.warning(
                f"Poll attempt {attempt}/{max_attempts} failed for job {handle.job_id}: {e}"
            )
            if consecutive_errors >= MAX_CONSECUTIVE_QUERY_ERRORS:
                logger.error(
                    f"Giving up on job {handle.job_id} after {consecutive_errors} failed status checks"
                )
                return JobState.ABORTED
            continue

        consecutive_errors = 0
        logger.debug(f"Job {handle.job_id} status: {state.value}")
        if state.is_terminal:
            return state

    logger.warning(f"Job {handle.job_id} still running after {max_attempts} attempts")
    return JobState.TIMED_OUT
