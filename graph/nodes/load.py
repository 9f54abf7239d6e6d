from typing import Dict, Any
from graph.state import EnrichState
from loguru import logger


def load(state: EnrichState, store) -> Dict[str, Any]:
    """Locate the lead record; a missing lead aborts the whole run."""
    lead_id = state.get("lead_id") or ""
    logger.info(f"Loading lead: {lead_id or 'unknown'}")

    # RecordNotFound propagates
    record = store.get(lead_id)
    username = (record.get("username") or "").lstrip("@")

    logger.info(f"Loaded lead {lead_id} (@{username})")
    return {"username": username}
