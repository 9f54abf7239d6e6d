from functools import partial
from typing import Dict, Any, Optional
from urllib.parse import urlsplit, urlunsplit
from graph.state import Degraded, EnrichState, StageResult, stage_status
from tools.extractors import extract_website
from tools.lead_store import WEBSITE
from loguru import logger

REMOVE_ELEMENTS = (
    "nav, footer, script, style, noscript, svg, img[src^='data:'], "
    "[role=\"alert\"], [role=\"banner\"], [role=\"dialog\"], [role=\"alertdialog\"], "
    "[role=\"region\"][aria-label*=\"skip\" i], [aria-modal=\"true\"]"
)


def build_start_url(external_url: Optional[str], start_path: str = "") -> Optional[str]:
    """
    Turn a profile's external link into the crawl entry point.

    Adds a scheme when missing and appends ``start_path`` (e.g. the shop's
    ``collections/`` listing) unless the path already contains it.

    Returns:
        The start URL, or None when the link is not a usable web address
    """
    url = (external_url or "").strip()
    if not url:
        return None
    if "://" not in url:
        url = f"https://{url}"

    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None

    path = parts.path if parts.path.endswith("/") else f"{parts.path}/"
    segment = start_path.strip("/")
    if segment and segment not in path.split("/"):
        path = f"{path}{segment}/"

    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def website_input(start_url: str, max_pages: int, max_depth: int) -> Dict[str, Any]:
    """Website content crawler input: text only, no media or screenshots."""
    return {
        "startUrls": [{"url": start_url}],
        "proxy": {"useApifyProxy": True},
        "maxCrawlPages": max_pages,
        "maxCrawlDepth": max_depth,
        "saveMarkdown": False,
        "saveHtml": False,
        "saveScreenshots": False,
        "blockMedia": True,
        "removeElementsCssSelector": REMOVE_ELEMENTS,
        "htmlTransformer": "none",
    }


async def run_website_stage(runner, lead_id: str, external_url: Optional[str]) -> StageResult:
    """
    Crawl the shop listing under the external link.

    When that crawl degrades (a store without the listing path usually 404s
    into an empty or failed run) the bare site is crawled once instead. Only
    the final outcome is persisted.
    """
    settings = runner.settings
    start_url = build_start_url(external_url, settings.website_start_path)
    if not start_url:
        reason = "No external URL on profile" if not external_url else f"Invalid external URL: {external_url}"
        return runner.skip(lead_id, WEBSITE, reason)

    extract = partial(extract_website, input_url=external_url)
    logger.info(f"Crawling {start_url} for lead {lead_id}")
    result = await runner.attempt(lead_id, settings.website, _crawl_input(start_url, settings), extract)

    bare_url = build_start_url(external_url)
    if isinstance(result, Degraded) and bare_url != start_url:
        logger.info(f"Crawl of {start_url} degraded ({result.reason}), retrying with {bare_url}")
        result = await runner.attempt(lead_id, settings.website, _crawl_input(bare_url, settings), extract)

    return runner.persist(lead_id, WEBSITE, result)


def _crawl_input(start_url: str, settings) -> Dict[str, Any]:
    return website_input(start_url, settings.website_max_pages, settings.website_max_depth)


async def website(state: EnrichState, runner) -> Dict[str, Any]:
    result = await run_website_stage(runner, state["lead_id"], state.get("external_url"))
    return {"stages": [stage_status(WEBSITE, result)]}
