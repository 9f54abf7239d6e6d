import asyncio
from typing import Awaitable, Callable, Dict, Any, List
from loguru import logger

from graph.state import Ok, Degraded, StageResult
from tools.apify import JobState
from tools.errors import EmptyResult, EnrichmentError
from tools.extractors import parse_analysis
from tools.lead_store import ANALYSIS, FIELD_GROUPS
from tools.polling import poll
from tools.settings import Settings, StageConfig

Extractor = Callable[[List[Dict[str, Any]]], Dict[str, Any]]


class StageRunner:
    """
    Runs one enrichment stage against its collaborators.

    Scrape stages go submit -> poll -> fetch -> extract -> persist. Any
    provider fault along the way becomes a Degraded result, which is persisted
    like an Ok one (neutral fields, completion flag off). Only record store
    failures escape.
    """

    def __init__(self, jobs, store, llm, settings: Settings, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.jobs = jobs
        self.store = store
        self.llm = llm
        self.settings = settings
        self.sleep = sleep

    async def run_job(self, lead_id: str, config: StageConfig, job_input: Dict[str, Any], extract: Extractor) -> StageResult:
        result = await self.attempt(lead_id, config, job_input, extract)
        return self.persist(lead_id, config.name, result)

    async def attempt(self, lead_id: str, config: StageConfig, job_input: Dict[str, Any], extract: Extractor) -> StageResult:
        """Run one job without persisting; every provider fault comes back as Degraded."""
        logger.info(f"Starting {config.name} stage for lead {lead_id}")
        try:
            return await self._scrape(config, job_input, extract)
        except EnrichmentError as e:
            return Degraded(str(e))
        except Exception as e:
            logger.error(f"Unexpected {config.name} stage failure for lead {lead_id}: {e!r}")
            return Degraded(f"Unexpected error: {e}")

    async def _scrape(self, config: StageConfig, job_input: Dict[str, Any], extract: Extractor) -> StageResult:
        handle = await self.jobs.submit(config.actor_id, job_input)
        state = await poll(self.jobs, handle, config.poll_interval, config.max_attempts, sleep=self.sleep)
        if state is not JobState.SUCCEEDED:
            return Degraded(f"Run {handle.job_id} ended with status {state.value}")

        records = await self.jobs.fetch(handle)
        if not records and config.require_records:
            raise EmptyResult(f"Run {handle.job_id} produced no records")
        return Ok(extract(records))

    async def run_analysis(self, lead_id: str) -> StageResult:
        """Summarize the lead with the LLM unless a complete analysis is already stored."""
        if self.store.has_group_data(lead_id, ANALYSIS):
            record = self.store.get(lead_id)
            logger.info(f"Using cached AI analysis for lead {lead_id}")
            cached = {k: record.get(k) for k in FIELD_GROUPS[ANALYSIS]}
            return Ok(cached, cached=True)

        record = self.store.get(lead_id)
        if not record.get("has_profile"):
            return self.persist(lead_id, ANALYSIS, Degraded("No profile data, run the profile stage first"))

        logger.info(f"Starting analysis stage for lead {lead_id}")
        try:
            content = await self.llm.analyze_lead(record)
            result = Ok(parse_analysis(content))
        except EnrichmentError as e:
            result = Degraded(str(e))
        except Exception as e:
            logger.error(f"Unexpected analysis stage failure for lead {lead_id}: {e!r}")
            result = Degraded(f"Unexpected error: {e}")
        return self.persist(lead_id, ANALYSIS, result)

    def skip(self, lead_id: str, stage: str, reason: str) -> StageResult:
        """Degrade a stage whose inputs are missing without contacting any provider."""
        return self.persist(lead_id, stage, Degraded(reason))

    def persist(self, lead_id: str, stage: str, result: StageResult) -> StageResult:
        """Write the stage's whole field group. Exactly one write per executed stage."""
        if isinstance(result, Ok):
            result.fields = self.store.replace_group(lead_id, stage, result.fields, complete=True)
            logger.info(f"Cached {stage} data for lead {lead_id}")
        else:
            result.fields = self.store.replace_group(lead_id, stage, {}, complete=False)
            logger.warning(f"{stage} stage degraded for lead {lead_id}: {result.reason}")
        return result
