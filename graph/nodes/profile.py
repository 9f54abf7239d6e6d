from typing import Dict, Any, Optional
from graph.state import EnrichState, Ok, StageResult, stage_status
from tools.extractors import extract_profile
from tools.lead_store import PROFILE
from loguru import logger


def profile_input(username: str) -> Dict[str, Any]:
    """Instagram scraper input for a single profile, details only."""
    return {
        "search": username,
        "searchType": "user",
        "searchLimit": 1,
        "resultsType": "details",
        "resultsLimit": 1,
        "proxy": {"useApifyProxy": True},
    }


def external_url_of(result: StageResult) -> Optional[str]:
    if not isinstance(result, Ok):
        return None
    return (result.fields.get("profile") or {}).get("external_url")


async def run_profile_stage(runner, lead_id: str, username: str) -> StageResult:
    return await runner.run_job(lead_id, runner.settings.profile, profile_input(username), extract_profile)


async def profile(state: EnrichState, runner) -> Dict[str, Any]:
    """Scrape the Instagram profile and remember its external link for the website stage."""
    result = await run_profile_stage(runner, state["lead_id"], state["username"])
    external_url = external_url_of(result)

    logger.info(f"Profile stage {result.status} for {state['lead_id']} (external url: {external_url or 'none'})")
    return {"external_url": external_url, "stages": [stage_status(PROFILE, result)]}
