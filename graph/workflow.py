from typing import Dict, Any
from langgraph.graph import StateGraph, START, END
from loguru import logger

from graph.state import EnrichState
from graph.nodes.load import load
from graph.nodes.profile import profile
from graph.nodes.reels import reels
from graph.nodes.website import website
from graph.nodes.analyze import analyze
from tools.lead_store import PROFILE, REELS, WEBSITE, ANALYSIS

STAGE_ORDER = [PROFILE, REELS, WEBSITE, ANALYSIS]


def build_workflow(runner):
    """Build the enrichment workflow with its collaborators bound into the nodes.

    load -> profile -> (reels, website in parallel) -> analyze
    """

    def load_node(state: EnrichState) -> Dict[str, Any]:
        return load(state, runner.store)

    async def profile_node(state: EnrichState) -> Dict[str, Any]:
        return await profile(state, runner)

    async def reels_node(state: EnrichState) -> Dict[str, Any]:
        return await reels(state, runner)

    async def website_node(state: EnrichState) -> Dict[str, Any]:
        return await website(state, runner)

    async def analyze_node(state: EnrichState) -> Dict[str, Any]:
        return await analyze(state, runner)

    workflow = StateGraph(EnrichState)

    # Add nodes
    workflow.add_node("load", load_node)
    workflow.add_node("profile", profile_node)
    workflow.add_node("reels", reels_node)
    workflow.add_node("website", website_node)
    workflow.add_node("analyze", analyze_node)

    # Add edges
    workflow.add_edge(START, "load")
    workflow.add_edge("load", "profile")

    # Reels and website share no data, they run in the same step
    workflow.add_edge("profile", "reels")
    workflow.add_edge("profile", "website")

    # Analysis waits for both branches
    workflow.add_edge(["reels", "website"], "analyze")
    workflow.add_edge("analyze", END)

    return workflow.compile()


async def run_pipeline(runner, lead_id: str) -> Dict[str, Any]:
    """
    Run every enrichment stage for a lead.

    Degraded stages are reported, not raised; the result is successful unless
    the lead itself is missing (RecordNotFound) or the store is unreachable,
    both of which propagate.

    Returns:
        ``{"success", "lead_id", "stages", "record"}`` with stages in pipeline order
    """
    logger.info(f"Starting enrichment pipeline for lead: {lead_id}")

    graph = build_workflow(runner)
    result = await graph.ainvoke({"lead_id": lead_id, "stages": []})

    stages = sorted(result.get("stages", []), key=lambda s: STAGE_ORDER.index(s["stage"]))
    degraded = [s["stage"] for s in stages if s["status"] == "degraded"]
    if degraded:
        logger.warning(f"Pipeline for {lead_id} finished with degraded stages: {degraded}")
    else:
        logger.info(f"Pipeline for {lead_id} finished with all stages complete")

    return {
        "success": True,
        "lead_id": lead_id,
        "stages": stages,
        "record": runner.store.get(lead_id),
    }
