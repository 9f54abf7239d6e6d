import os
from dataclasses import dataclass, field
from typing import List
from loguru import logger

APIFY_BASE = "https://api.apify.com/v2"
INSTAGRAM_ACTOR = "apify~instagram-scraper"
WEBSITE_ACTOR = "apify~website-content-crawler"


@dataclass(frozen=True)
class StageConfig:
    """Per-stage job settings: which actor to run and how long to wait for it."""
    name: str
    actor_id: str
    poll_interval: float
    max_attempts: int
    require_records: bool = True


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid number for {name}={raw!r}, using {default}")
        return default


def _stage_from_env(name: str, actor_id: str, interval: float, attempts: int) -> StageConfig:
    prefix = name.upper()
    return StageConfig(
        name=name,
        actor_id=os.getenv(f"{prefix}_ACTOR_ID", actor_id),
        poll_interval=_env_float(f"{prefix}_POLL_INTERVAL", interval),
        max_attempts=_env_int(f"{prefix}_POLL_ATTEMPTS", attempts),
    )


@dataclass
class Settings:
    apify_token: str = ""
    apify_base_url: str = APIFY_BASE
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    redis_url: str = ""
    api_token: str = ""
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    http_timeout: float = 30.0

    reels_limit: int = 2
    website_max_pages: int = 2
    website_max_depth: int = 1
    website_start_path: str = "collections/"

    profile: StageConfig = StageConfig("profile", INSTAGRAM_ACTOR, 2.0, 20)
    reels: StageConfig = StageConfig("reels", INSTAGRAM_ACTOR, 8.0, 40)
    website: StageConfig = StageConfig("website", WEBSITE_ACTOR, 8.0, 40)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (call load_dotenv first)."""
        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
        settings = cls(
            apify_token=os.getenv("APIFY_TOKEN", ""),
            apify_base_url=os.getenv("APIFY_BASE_URL", APIFY_BASE),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            redis_url=os.getenv("REDIS_URL", ""),
            api_token=os.getenv("API_TOKEN", ""),
            cors_origins=origins or ["*"],
            http_timeout=_env_float("HTTP_TIMEOUT", 30.0),
            reels_limit=_env_int("REELS_LIMIT", 2),
            website_max_pages=_env_int("WEBSITE_MAX_PAGES", 2),
            website_max_depth=_env_int("WEBSITE_MAX_DEPTH", 1),
            website_start_path=os.getenv("WEBSITE_START_PATH", "collections/"),
            profile=_stage_from_env("profile", INSTAGRAM_ACTOR, 2.0, 20),
            reels=_stage_from_env("reels", INSTAGRAM_ACTOR, 8.0, 40),
            website=_stage_from_env("website", WEBSITE_ACTOR, 8.0, 40),
        )

        if not settings.apify_token:
            logger.warning("No APIFY_TOKEN provided, scrape stages will degrade")
        if not settings.openai_api_key:
            logger.warning("No OpenAI API key provided, AI analysis will degrade")

        return settings
