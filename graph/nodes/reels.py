from functools import partial
from typing import Dict, Any
from graph.state import EnrichState, StageResult, stage_status
from tools.extractors import extract_reels
from tools.lead_store import REELS


def reels_input(username: str, limit: int) -> Dict[str, Any]:
    """Instagram scraper input for the user's reels feed."""
    return {
        "directUrls": [f"https://www.instagram.com/{username}/"],
        "resultsLimit": limit,
        "resultsType": "reels",
        "isUserReelFeedURL": True,
        "searchType": "user",
        "proxy": {"useApifyProxy": True},
    }


async def run_reels_stage(runner, lead_id: str, username: str) -> StageResult:
    limit = runner.settings.reels_limit
    return await runner.run_job(
        lead_id,
        runner.settings.reels,
        reels_input(username, limit),
        partial(extract_reels, limit=limit),
    )


async def reels(state: EnrichState, runner) -> Dict[str, Any]:
    result = await run_reels_stage(runner, state["lead_id"], state["username"])
    return {"stages": [stage_status(REELS, result)]}
