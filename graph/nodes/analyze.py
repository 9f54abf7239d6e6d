from typing import Dict, Any
from graph.state import EnrichState, stage_status
from tools.lead_store import ANALYSIS
from loguru import logger


async def analyze(state: EnrichState, runner) -> Dict[str, Any]:
    """Summarize the enriched lead with the LLM (cached once complete)."""
    logger.info(f"Starting AI analysis for lead: {state.get('lead_id', 'unknown')}")

    result = await runner.run_analysis(state["lead_id"])
    analysis = result.fields.get("ai_analysis") or {}

    logger.info(f"AI analysis {result.status} for {state['lead_id']}: niche={analysis.get('niche')!r}")
    return {"stages": [stage_status(ANALYSIS, result)]}
