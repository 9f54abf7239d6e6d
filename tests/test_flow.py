import asyncio

import pytest

from graph.nodes.load import load
from graph.nodes.profile import profile
from graph.nodes.reels import run_reels_stage
from graph.nodes.website import run_website_stage, website
from graph.nodes.analyze import analyze
from graph.workflow import STAGE_ORDER, run_pipeline
from tools.apify import JobState
from tools.errors import RecordNotFound, SubmissionError
from tools.lead_store import InMemoryLeadStore
from fakes import (
    ANALYSIS_JSON,
    PROFILE_RECORD,
    REEL_RECORDS,
    WEBSITE_RECORDS,
    FakeJobClient,
    FakeLLM,
)


def healthy_jobs():
    return FakeJobClient(records={
        "profile": [PROFILE_RECORD],
        "reels": REEL_RECORDS,
        "website": WEBSITE_RECORDS,
    })


class TestEnrichmentNodes:
    """Test the individual workflow nodes."""

    def test_load_node_reads_username(self, store):
        lead = store.create("@glowskin.co")

        result = load({"lead_id": lead["id"]}, store)

        assert result == {"username": "glowskin.co"}

    def test_load_node_missing_lead(self, store):
        with pytest.raises(RecordNotFound):
            load({"lead_id": "missing"}, store)

    @pytest.mark.asyncio
    async def test_profile_node_passes_external_url(self, make_runner, store):
        lead = store.create("glowskin.co")
        runner = make_runner(jobs=healthy_jobs())

        result = await profile({"lead_id": lead["id"], "username": "glowskin.co"}, runner)

        assert result["external_url"] == "https://glowskin.example"
        assert result["stages"] == [{"stage": "profile", "status": "ok", "reason": None}]

    @pytest.mark.asyncio
    async def test_profile_node_degraded_has_no_external_url(self, make_runner, store):
        lead = store.create("glowskin.co")
        runner = make_runner(jobs=FakeJobClient(states={"profile": [JobState.FAILED]}))

        result = await profile({"lead_id": lead["id"], "username": "glowskin.co"}, runner)

        assert result["external_url"] is None
        assert result["stages"][0]["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_website_node_without_url_is_skipped(self, make_runner, store):
        lead = store.create("glowskin.co")
        jobs = FakeJobClient()

        result = await website({"lead_id": lead["id"], "external_url": None}, make_runner(jobs=jobs))

        assert result["stages"][0]["status"] == "degraded"
        assert result["stages"][0]["reason"] == "No external URL on profile"
        assert jobs.submitted == []

    @pytest.mark.asyncio
    async def test_analyze_node_reports_cache_hit(self, make_runner, store):
        lead = store.create("glowskin.co")
        store.replace_group(lead["id"], "profile", {"profile": {"username": "glowskin.co"}}, complete=True)
        runner = make_runner(llm=FakeLLM(content=ANALYSIS_JSON))

        first = await analyze({"lead_id": lead["id"]}, runner)
        second = await analyze({"lead_id": lead["id"]}, runner)

        assert first["stages"][0]["status"] == "ok"
        assert second["stages"][0]["status"] == "cached"


class TestEnrichmentPipeline:
    """Test the complete enrichment workflow."""

    @pytest.mark.asyncio
    async def test_complete_pipeline(self, make_runner, store):
        lead = store.create("glowskin.co")
        llm = FakeLLM(content=ANALYSIS_JSON)
        runner = make_runner(jobs=healthy_jobs(), llm=llm)

        result = await run_pipeline(runner, lead["id"])

        assert result["success"] is True
        assert [s["stage"] for s in result["stages"]] == STAGE_ORDER
        assert all(s["status"] == "ok" for s in result["stages"])

        record = result["record"]
        assert record["has_profile"] and record["has_reels"] and record["has_website"]
        assert record["ai_analysis_complete"] is True
        assert record["er_avg"] == 15.0
        assert record["website_data"]["primary"]["title"] == "Shop"
        assert llm.calls == 1

    @pytest.mark.asyncio
    async def test_analysis_sees_reels_and_website(self, make_runner, store):
        lead = store.create("glowskin.co")
        llm = FakeLLM(content=ANALYSIS_JSON)

        await run_pipeline(make_runner(jobs=healthy_jobs(), llm=llm), lead["id"])

        seen = llm.prompts[0]
        assert seen["has_reels"] is True
        assert seen["has_website"] is True

    @pytest.mark.asyncio
    async def test_failed_profile_degrades_dependents_only(self, make_runner, store):
        """Reels still run; website has no URL to crawl; analysis has no profile."""
        lead = store.create("glowskin.co")
        jobs = FakeJobClient(
            submit_errors={"profile": SubmissionError("Actor not found")},
            records={"reels": REEL_RECORDS},
        )
        llm = FakeLLM(content=ANALYSIS_JSON)

        result = await run_pipeline(make_runner(jobs=jobs, llm=llm), lead["id"])

        statuses = {s["stage"]: s for s in result["stages"]}
        assert result["success"] is True
        assert statuses["profile"]["status"] == "degraded"
        assert statuses["profile"]["reason"] == "Actor not found"
        assert statuses["reels"]["status"] == "ok"
        assert statuses["website"]["reason"] == "No external URL on profile"
        assert statuses["analysis"]["status"] == "degraded"
        assert llm.calls == 0
        assert [j["stage"] for j in jobs.submitted] == ["reels"]

    @pytest.mark.asyncio
    async def test_rerun_reuses_cached_analysis(self, make_runner, store):
        lead = store.create("glowskin.co")
        llm = FakeLLM(content=ANALYSIS_JSON)

        await run_pipeline(make_runner(jobs=healthy_jobs(), llm=llm), lead["id"])
        result = await run_pipeline(make_runner(jobs=healthy_jobs(), llm=llm), lead["id"])

        assert llm.calls == 1
        assert result["stages"][-1]["status"] == "cached"

    @pytest.mark.asyncio
    async def test_unknown_lead_fails_the_run(self, make_runner):
        jobs = healthy_jobs()

        with pytest.raises(RecordNotFound):
            await run_pipeline(make_runner(jobs=jobs), "missing")

        assert jobs.submitted == []


class TestStageIndependence:
    """Reels and website write disjoint field groups, so their order does not matter."""

    async def _run_branches(self, runner, lead_id, order):
        branches = {
            "reels": lambda: run_reels_stage(runner, lead_id, "glowskin.co"),
            "website": lambda: run_website_stage(runner, lead_id, "https://glowskin.example"),
        }
        if order == "concurrent":
            await asyncio.gather(branches["reels"](), branches["website"]())
        else:
            for name in order:
                await branches[name]()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order", [("reels", "website"), ("website", "reels"), "concurrent"])
    async def test_branch_order_gives_same_record(self, make_runner, order):
        store = InMemoryLeadStore()
        lead = store.create("glowskin.co")
        runner = make_runner(jobs=healthy_jobs(), runner_store=store)

        await self._run_branches(runner, lead["id"], order)

        record = store.get(lead["id"])
        assert record["has_reels"] is True
        assert record["has_website"] is True
        assert record["er_avg"] == 15.0
        assert record["website_data"]["pages_count"] == 2
        assert record["has_profile"] is False


if __name__ == "__main__":
    # Run tests
    pytest.main([__file__, "-v"])
