"""Pure mappings from provider records to lead field groups.

Every field read from a raw record has an explicit fallback, so a missing or
oddly typed value never leaks into the stored lead.
"""

import json
from datetime import datetime
from typing import Dict, Any, List, Optional

from tools.errors import SchemaFault


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _count(value: Any) -> int:
    """Non-negative integer count, 0 for anything unusable."""
    if isinstance(value, bool) or value is None:
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return max(number, 0)


def _flag(value: Any) -> bool:
    return value is True


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [_text(v) for v in value if _text(v)]


def _rate(engagement: int, views: int) -> float:
    if views <= 0:
        return 0.0
    return round(engagement / views * 100, 2)


# Profile stage

def extract_profile(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Map the first profile record to the profile field group."""
    if not records:
        raise SchemaFault("No profile record to extract")
    raw = _dict(records[0])

    related = []
    for item in _list(raw.get("relatedProfiles")):
        username = _text(_dict(item).get("username"))
        if username:
            related.append(username)

    profile = {
        "username": _text(raw.get("username")),
        "full_name": _text(raw.get("fullName")),
        "biography": _text(raw.get("biography")),
        "external_url": _optional_text(raw.get("externalUrl")),
        "followers_count": _count(raw.get("followersCount")),
        "follows_count": _count(raw.get("followsCount")),
        "posts_count": _count(raw.get("postsCount")),
        "profile_pic_url": _optional_text(raw.get("profilePicUrlHD")) or _optional_text(raw.get("profilePicUrl")),
        "is_private": _flag(raw.get("private")),
        "is_verified": _flag(raw.get("verified")),
        "is_business": _flag(raw.get("isBusinessAccount")),
        "business_category": _optional_text(raw.get("businessCategoryName")),
        "related_profiles": related,
    }
    return {"profile": profile}


# Reels stage

def _timestamp_key(reel: Dict[str, Any]) -> float:
    raw = _text(reel.get("timestamp"))
    if not raw:
        return float("-inf")
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return float("-inf")


def extract_reels(records: List[Dict[str, Any]], limit: int = 2) -> Dict[str, Any]:
    """
    Map reel records to the reels field group.

    Keeps the ``limit`` most recent reels. Each reel gets a ``ctr`` of
    (likes + comments) / views * 100. ``er_avg`` aggregates the same ratio over
    reels with views; a reel without views adds nothing to either side.
    """
    raws = [_dict(r) for r in records]
    recent = sorted(raws, key=_timestamp_key, reverse=True)[:max(limit, 0)]

    reels = []
    total_engagement = 0
    total_views = 0
    for raw in recent:
        likes = _count(raw.get("likesCount"))
        comments = _count(raw.get("commentsCount"))
        views = _count(raw.get("videoPlayCount")) or _count(raw.get("videoViewCount"))

        if views > 0:
            total_engagement += likes + comments
            total_views += views

        reels.append({
            "id": _text(raw.get("id")),
            "url": _text(raw.get("url")),
            "caption": _text(raw.get("caption")),
            "timestamp": _optional_text(raw.get("timestamp")),
            "likes_count": likes,
            "comments_count": comments,
            "video_play_count": views,
            "ctr": _rate(likes + comments, views),
        })

    er_avg = _rate(total_engagement, total_views) if total_views > 0 else None
    return {"reels": reels, "er_avg": er_avg}


# Website stage

def _page(raw: Dict[str, Any]) -> Dict[str, Any]:
    crawl = _dict(raw.get("crawl"))
    metadata = _dict(raw.get("metadata"))
    url = _text(raw.get("url")) or _text(raw.get("#url"))
    return {
        "url": url,
        "loaded_url": _text(crawl.get("loadedUrl")) or url,
        "depth": _count(crawl.get("depth")),
        "title": _text(metadata.get("title")),
        "description": _text(metadata.get("description")),
        "author": _optional_text(metadata.get("author")),
        "keywords": _optional_text(metadata.get("keywords")),
        "language": _text(metadata.get("languageCode"), "en"),
        "text": _text(raw.get("text")) or _text(raw.get("#text")),
        "markdown": _text(raw.get("markdown")) or _text(raw.get("#markdown")),
    }


def extract_website(records: List[Dict[str, Any]], input_url: str) -> Dict[str, Any]:
    """Map crawled pages to the website field group; the entry page is primary."""
    pages = [_page(_dict(r)) for r in records]
    if not pages:
        raise SchemaFault("No crawled pages to extract")

    primary = next((p for p in pages if p["depth"] == 0), pages[0])
    website_data = {
        "input_url": input_url,
        "pages_count": len(pages),
        "primary": primary,
        "all_pages": pages,
    }
    return {"website_data": website_data}


def summary_source(scraped: Any) -> Dict[str, Any]:
    """
    Reduce caller-supplied website data to what the summary prompt reads.

    Accepts the stored ``website_data`` shape or its camelCase variant; any
    field of the wrong type is treated as missing.
    """
    scraped = _dict(scraped)
    primary = _dict(scraped.get("primary"))
    pages = [_dict(p) for p in _list(scraped.get("all_pages") or scraped.get("allPages"))]
    return {
        "input_url": _text(scraped.get("input_url")) or _text(scraped.get("inputUrl")),
        "title": _text(primary.get("title")),
        "description": _text(primary.get("description")),
        "content": _text(primary.get("markdown")) or _text(primary.get("text")),
        "subpages": [_text(p.get("text")) for p in pages if _count(p.get("depth")) > 0],
    }


# LLM responses

def _load_json_object(content: Any) -> Dict[str, Any]:
    if not isinstance(content, str) or not content.strip():
        raise SchemaFault("Empty model response")
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as e:
        raise SchemaFault(f"Model response is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise SchemaFault("Model response is not a JSON object")
    return payload


def parse_analysis(content: Any) -> Dict[str, Any]:
    """Parse the lead analysis JSON; each missing field falls back on its own."""
    payload = _load_json_object(content)
    analysis = {
        "summary": _text(payload.get("summary")),
        "prices": _string_list(payload.get("prices")),
        "prices_low": _string_list(payload.get("pricesLow", payload.get("prices_low"))),
        "niche": _optional_text(payload.get("niche")),
        "other_contact": _text(payload.get("otherContact", payload.get("other_contact"))),
    }
    return {"ai_analysis": analysis}


def parse_website_summary(content: Any) -> Dict[str, Any]:
    """Parse the website summary JSON used by the concise endpoint."""
    payload = _load_json_object(content)
    return {
        "industry": _text(payload.get("industry")),
        "services": _string_list(payload.get("services")),
        "audience": _text(payload.get("audience")),
        "value_prop": _text(payload.get("valueProp", payload.get("value_prop"))),
        "contact_info": _optional_text(payload.get("contactInfo", payload.get("contact_info"))),
        "full_summary": _text(payload.get("fullSummary", payload.get("full_summary"))),
    }
