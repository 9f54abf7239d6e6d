import httpx
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, List, Optional
from loguru import logger

from tools.errors import (
    FetchError,
    SubmissionError,
    TransientProviderFault,
    TransientQueryError,
)
from tools.settings import APIFY_BASE


class JobState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ABORTED = "ABORTED"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobState.PENDING, JobState.RUNNING)


# Apify run statuses; TIMING-OUT and ABORTING are still in flight.
_APIFY_STATES = {
    "READY": JobState.PENDING,
    "RUNNING": JobState.RUNNING,
    "TIMING-OUT": JobState.RUNNING,
    "ABORTING": JobState.RUNNING,
    "SUCCEEDED": JobState.SUCCEEDED,
    "FAILED": JobState.FAILED,
    "TIMED-OUT": JobState.TIMED_OUT,
    "ABORTED": JobState.ABORTED,
}


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    dataset_ref: Optional[str] = None


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if payload.get("message"):
            return str(payload["message"])
    return fallback


class ApifyClient:
    """Actor-run client: submit a run, query its status, read its dataset.

    A fresh ``httpx.AsyncClient`` is opened per call, so one instance can be
    built per request and thrown away afterwards.
    """

    def __init__(
        self,
        token: str,
        base_url: str = APIFY_BASE,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Content-Type": "application/json",
            },
            transport=self._transport,
        )

    async def submit(self, actor_id: str, job_input: Dict[str, Any]) -> JobHandle:
        """
        Start an actor run.

        Args:
            actor_id: Actor name, ``owner~name`` or ``owner/name``
            job_input: Actor input payload

        Returns:
            Handle of the started run

        Raises:
            SubmissionError: the provider rejected the run (bad token, bad input)
            TransientProviderFault: network failure or provider-side 5xx
        """
        if not self.token:
            raise SubmissionError("APIFY_TOKEN is not configured")

        path = f"/acts/{actor_id.replace('/', '~')}/runs"
        try:
            async with self._client() as client:
                response = await client.post(path, json=job_input)
        except httpx.HTTPError as e:
            raise TransientProviderFault(f"Run submission failed: {e}") from e

        if response.status_code >= 500:
            raise TransientProviderFault(
                f"Run submission failed with status {response.status_code}"
            )
        if response.is_error:
            message = _error_message(response, f"Apify run failed ({response.status_code})")
            raise SubmissionError(message)

        try:
            data = response.json().get("data") or {}
            run_id = data["id"]
        except (ValueError, AttributeError, KeyError, TypeError) as e:
            raise SubmissionError("Run submission returned no run id") from e

        handle = JobHandle(job_id=str(run_id), dataset_ref=data.get("defaultDatasetId"))
        logger.info(f"Apify run started: {handle.job_id} ({actor_id})")
        return handle

    async def _read_run(self, job_id: str) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(f"/actor-runs/{job_id}")
                response.raise_for_status()
                data = response.json().get("data")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            raise TransientQueryError(f"Status check failed for run {job_id}: {e}") from e
        if not isinstance(data, dict):
            raise TransientQueryError(f"Status check for run {job_id} returned no data")
        return data

    async def query_status(self, handle: JobHandle) -> JobState:
        data = await self._read_run(handle.job_id)
        raw_status = data.get("status")
        state = _APIFY_STATES.get(str(raw_status).upper())
        if state is None:
            raise TransientQueryError(f"Unknown run status {raw_status!r} for run {handle.job_id}")
        return state

    async def fetch(self, handle: JobHandle) -> List[Dict[str, Any]]:
        """
        Read the output records of a finished run.

        An empty list is a valid result. Non-object items are dropped.

        Raises:
            FetchError: the dataset could not be located or read
        """
        dataset_ref = handle.dataset_ref
        if not dataset_ref:
            try:
                dataset_ref = (await self._read_run(handle.job_id)).get("defaultDatasetId")
            except TransientQueryError as e:
                raise FetchError(str(e)) from e
        if not dataset_ref:
            raise FetchError(f"No dataset for run {handle.job_id}")

        try:
            async with self._client() as client:
                response = await client.get(
                    f"/datasets/{dataset_ref}/items", params={"format": "json"}
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(f"Failed to fetch results for run {handle.job_id}: {e}") from e

        if isinstance(payload, dict) and isinstance(payload.get("items"), list):
            payload = payload["items"]
        if not isinstance(payload, list):
            raise FetchError(f"Unexpected dataset payload for run {handle.job_id}")

        records = [item for item in payload if isinstance(item, dict)]
        logger.info(f"Fetched {len(records)} records for run {handle.job_id}")
        return records
