import hmac
import os
import time
from typing import Dict, Any, Optional
from fastapi import Depends, FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from loguru import logger
from dotenv import load_dotenv

# Import our modules
from graph.runner import StageRunner
from graph.state import Degraded, StageResult
from graph.nodes.profile import run_profile_stage
from graph.nodes.reels import run_reels_stage
from graph.nodes.website import run_website_stage
from graph.workflow import run_pipeline
from tools.apify import ApifyClient
from tools.errors import EnrichmentError, RecordNotFound, StoreError
from tools.extractors import parse_website_summary
from tools.lead_store import PROFILE, REELS, WEBSITE, ANALYSIS, InMemoryLeadStore, build_lead_store
from tools.llm import LLMClient
from tools.settings import Settings

VERSION = "1.0.0"

# Load environment variables
load_dotenv()
settings = Settings.from_env()

# Configure logging
LOG_FILE = os.getenv("LOG_FILE", "logs/app.log")
if LOG_FILE:
    logger.add(LOG_FILE, rotation="1 day", retention="7 days", level="INFO")

# Initialize FastAPI app
app = FastAPI(
    title="Instagram Lead Enricher",
    description="Profile, reels, website and AI enrichment for Instagram leads",
    version=VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

lead_store = build_lead_store(settings.redis_url)

if not settings.api_token:
    logger.warning("No API_TOKEN provided, requests are not authenticated")


# Dependencies

def get_store():
    return lead_store


def get_llm() -> LLMClient:
    return LLMClient(api_key=settings.openai_api_key, model=settings.openai_model)


def get_runner(store=Depends(get_store), llm: LLMClient = Depends(get_llm)) -> StageRunner:
    """Fresh provider clients per request; only the store is shared."""
    jobs = ApifyClient(
        token=settings.apify_token,
        base_url=settings.apify_base_url,
        timeout=settings.http_timeout,
    )
    return StageRunner(jobs=jobs, store=store, llm=llm, settings=settings)


def verify_token(request: Request):
    if not settings.api_token:
        return
    auth = request.headers.get("Authorization", "")
    token = auth[7:] if auth.lower().startswith("bearer ") else ""
    if not hmac.compare_digest(token, settings.api_token):
        raise HTTPException(status_code=401, detail="Invalid token")


# Request helpers

async def read_body(req: Request) -> Dict[str, Any]:
    try:
        payload = await req.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return payload


def require_text(payload: Dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=400, detail=f"Missing or invalid {name}")
    return value.strip()


def stage_response(lead_id: str, stage: str, result: StageResult) -> JSONResponse:
    """Handled stages always answer 200; degradation is reported in the body."""
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "leadId": lead_id,
            "stage": stage,
            "status": result.status,
            "degraded": isinstance(result, Degraded),
            "reason": result.reason if isinstance(result, Degraded) else None,
            "data": result.fields,
        }
    )


# Routes

@app.get("/health")
def health(store=Depends(get_store)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": VERSION,
        "services": {
            "store": "memory" if isinstance(store, InMemoryLeadStore) else ("connected" if store.ping() else "disconnected"),
            "apify": "configured" if settings.apify_token else "missing_token",
            "openai": "configured" if settings.openai_api_key else "missing_key",
            "workflow": "ready"
        }
    }


@app.post("/api/leads", dependencies=[Depends(verify_token)])
async def create_lead(req: Request, store=Depends(get_store)):
    """
    Create a lead from an Instagram username.

    Expected payload:
    {
        "username": "brand.handle"
    }
    """
    payload = await read_body(req)
    username = require_text(payload, "username").lstrip("@")
    if not username:
        raise HTTPException(status_code=400, detail="Missing or invalid username")

    record = store.create(username)
    return JSONResponse(status_code=200, content={"success": True, "leadId": record["id"], "data": record})


@app.get("/api/leads/{lead_id}", dependencies=[Depends(verify_token)])
def get_lead(lead_id: str, store=Depends(get_store)):
    return {"success": True, "leadId": lead_id, "data": store.get(lead_id)}


@app.post("/api/enrich", dependencies=[Depends(verify_token)])
async def enrich_lead(req: Request, runner: StageRunner = Depends(get_runner)):
    """Run the whole pipeline: profile, then reels and website, then AI analysis."""
    start_time = time.time()
    payload = await read_body(req)
    lead_id = require_text(payload, "leadId")

    result = await run_pipeline(runner, lead_id)

    processing_time = time.time() - start_time
    logger.info(f"Lead enrichment completed in {processing_time:.2f}s: {lead_id}")

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "leadId": lead_id,
            "processing_time": processing_time,
            "stages": result["stages"],
            "data": result["record"],
        }
    )


@app.post("/api/profile_run", dependencies=[Depends(verify_token)])
async def profile_run(req: Request, runner: StageRunner = Depends(get_runner)):
    payload = await read_body(req)
    lead_id = require_text(payload, "leadId")
    record = runner.store.get(lead_id)

    result = await run_profile_stage(runner, lead_id, record["username"])
    return stage_response(lead_id, PROFILE, result)


@app.post("/api/reels_run", dependencies=[Depends(verify_token)])
async def reels_run(req: Request, runner: StageRunner = Depends(get_runner)):
    payload = await read_body(req)
    lead_id = require_text(payload, "leadId")
    record = runner.store.get(lead_id)

    result = await run_reels_stage(runner, lead_id, record["username"])
    return stage_response(lead_id, REELS, result)


@app.post("/api/website_run", dependencies=[Depends(verify_token)])
async def website_run(req: Request, runner: StageRunner = Depends(get_runner)):
    """Crawl ``externalUrl``, or the profile's external link when it is omitted."""
    payload = await read_body(req)
    lead_id = require_text(payload, "leadId")
    record = runner.store.get(lead_id)

    external_url: Optional[str] = payload.get("externalUrl")
    if external_url is not None and not isinstance(external_url, str):
        raise HTTPException(status_code=400, detail="Missing or invalid externalUrl")
    if not external_url:
        external_url = (record.get("profile") or {}).get("external_url")

    result = await run_website_stage(runner, lead_id, external_url)
    return stage_response(lead_id, WEBSITE, result)


@app.post("/api/oai_run", dependencies=[Depends(verify_token)])
async def oai_run(req: Request, runner: StageRunner = Depends(get_runner)):
    payload = await read_body(req)
    lead_id = require_text(payload, "leadId")

    result = await runner.run_analysis(lead_id)
    return stage_response(lead_id, ANALYSIS, result)


@app.post("/api/concise_run", dependencies=[Depends(verify_token)])
async def concise_run(req: Request, llm: LLMClient = Depends(get_llm)):
    """Summarize already scraped website data without touching the lead record."""
    payload = await read_body(req)
    scraped = payload.get("scrapedData")
    if not isinstance(scraped, dict):
        raise HTTPException(status_code=400, detail="Missing or invalid scrapedData")
    lead_id = payload.get("leadId")
    if lead_id is not None and (isinstance(lead_id, bool) or not isinstance(lead_id, (str, int))):
        raise HTTPException(status_code=400, detail="Invalid leadId (optional)")

    try:
        summary = parse_website_summary(await llm.summarize_website(scraped))
    except EnrichmentError as e:
        logger.warning(f"Website summary degraded: {e}")
        return JSONResponse(
            status_code=200,
            content={"success": True, "degraded": True, "reason": str(e), "summary": None, "leadId": lead_id}
        )

    return JSONResponse(
        status_code=200,
        content={"success": True, "degraded": False, "summary": summary, "leadId": lead_id}
    )


# Error handlers
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})


@app.exception_handler(RecordNotFound)
async def record_not_found_handler(request: Request, exc: RecordNotFound):
    logger.warning(str(exc))
    return JSONResponse(status_code=404, content={"success": False, "error": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Lead store failure: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Lead store unavailable"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Instagram Lead Enricher")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info"
    )
