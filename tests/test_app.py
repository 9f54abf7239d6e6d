from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

import app as app_module
from app import app, get_llm, get_runner, get_store
from tools.apify import JobState
from tools.llm import LLMClient
from fakes import (
    ANALYSIS_JSON,
    PROFILE_RECORD,
    REEL_RECORDS,
    WEBSITE_RECORDS,
    FakeJobClient,
    FakeLLM,
)

SUMMARY_JSON = '{"industry": "Beauty", "services": ["Serums"], "audience": "Women 25-40", "valueProp": "Clean", "contactInfo": "hello@glowskin.example", "fullSummary": "A clean skincare brand."}'


class TestAPI:
    """Test the HTTP surface with fake providers."""

    @pytest.fixture(autouse=True)
    def client(self, make_runner, store):
        self.store = store
        self.jobs = FakeJobClient(records={
            "profile": [PROFILE_RECORD],
            "reels": REEL_RECORDS,
            "website": WEBSITE_RECORDS,
        })
        self.llm = FakeLLM(content=ANALYSIS_JSON, summary=SUMMARY_JSON)

        app.dependency_overrides[get_store] = lambda: store
        app.dependency_overrides[get_llm] = lambda: self.llm
        app.dependency_overrides[get_runner] = lambda: make_runner(jobs=self.jobs, llm=self.llm)
        self.client = TestClient(app)
        yield self.client
        app.dependency_overrides.clear()

    def _lead(self):
        return self.store.create("glowskin.co")["id"]

    def test_health(self):
        response = self.client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["store"] == "memory"

    def test_create_lead(self):
        response = self.client.post("/api/leads", json={"username": "@glowskin.co"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert self.store.get(body["leadId"])["username"] == "glowskin.co"

    def test_create_lead_requires_username(self):
        response = self.client.post("/api/leads", json={"username": "   "})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_get_lead(self):
        lead_id = self._lead()

        response = self.client.get(f"/api/leads/{lead_id}")

        assert response.status_code == 200
        assert response.json()["data"]["username"] == "glowskin.co"

    def test_unknown_lead_is_404(self):
        response = self.client.get("/api/leads/missing")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Lead not found: missing"}

    def test_enrich_runs_every_stage(self):
        lead_id = self._lead()

        response = self.client.post("/api/enrich", json={"leadId": lead_id})

        assert response.status_code == 200
        body = response.json()
        assert [s["stage"] for s in body["stages"]] == ["profile", "reels", "website", "analysis"]
        assert body["data"]["ai_analysis"]["niche"] == "skincare"
        assert "processing_time" in body

    def test_enrich_with_degraded_stages_is_still_200(self):
        lead_id = self._lead()
        self.jobs = FakeJobClient(states={"profile": [JobState.FAILED], "reels": [JobState.FAILED]})

        response = self.client.post("/api/enrich", json={"leadId": lead_id})

        assert response.status_code == 200
        statuses = {s["stage"]: s["status"] for s in response.json()["stages"]}
        assert statuses == {"profile": "degraded", "reels": "degraded", "website": "degraded", "analysis": "degraded"}

    def test_enrich_unknown_lead_is_404(self):
        response = self.client.post("/api/enrich", json={"leadId": "missing"})

        assert response.status_code == 404

    def test_invalid_json_is_400(self):
        response = self.client.post("/api/enrich", content=b"{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"

    @pytest.mark.parametrize("payload", [{}, {"leadId": ""}, {"leadId": None}, {"leadId": ["x"]}])
    def test_missing_lead_id_is_400(self, payload):
        response = self.client.post("/api/reels_run", json=payload)

        assert response.status_code == 400

    def test_profile_run(self):
        lead_id = self._lead()

        response = self.client.post("/api/profile_run", json={"leadId": lead_id})

        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["profile"]["external_url"] == "https://glowskin.example"

    def test_degraded_reels_run_is_200(self):
        lead_id = self._lead()
        self.jobs = FakeJobClient(records={"reels": []})

        response = self.client.post("/api/reels_run", json={"leadId": lead_id})

        assert response.status_code == 200
        body = response.json()
        assert body["degraded"] is True
        assert body["data"] == {"reels": [], "er_avg": None, "has_reels": False}

    def test_website_run_uses_profile_url(self):
        lead_id = self._lead()
        self.client.post("/api/profile_run", json={"leadId": lead_id})

        response = self.client.post("/api/website_run", json={"leadId": lead_id})

        assert response.json()["status"] == "ok"
        assert self.jobs.submitted[-1]["input"]["startUrls"] == [{"url": "https://glowskin.example/collections/"}]

    def test_website_run_with_explicit_url(self):
        lead_id = self._lead()

        response = self.client.post("/api/website_run", json={"leadId": lead_id, "externalUrl": "shop.example"})

        assert response.json()["status"] == "ok"
        assert response.json()["data"]["website_data"]["input_url"] == "shop.example"

    def test_oai_run_is_cached_after_first_call(self):
        lead_id = self._lead()
        self.client.post("/api/profile_run", json={"leadId": lead_id})

        first = self.client.post("/api/oai_run", json={"leadId": lead_id}).json()
        second = self.client.post("/api/oai_run", json={"leadId": lead_id}).json()

        assert first["status"] == "ok"
        assert second["status"] == "cached"
        assert self.llm.calls == 1

    def test_numeric_lead_id_is_accepted(self):
        response = self.client.post("/api/oai_run", json={"leadId": 42})

        assert response.status_code == 404
        assert response.json()["error"] == "Lead not found: 42"

    def test_concise_run(self):
        response = self.client.post("/api/concise_run", json={"scrapedData": {"input_url": "https://glowskin.example"}})

        body = response.json()
        assert response.status_code == 200
        assert body["degraded"] is False
        assert body["summary"]["industry"] == "Beauty"
        assert body["summary"]["full_summary"] == "A clean skincare brand."

    def test_concise_run_degrades_on_bad_output(self):
        self.llm.summary = "no json here"

        response = self.client.post("/api/concise_run", json={"scrapedData": {}})

        body = response.json()
        assert response.status_code == 200
        assert body["degraded"] is True
        assert body["summary"] is None

    @pytest.mark.parametrize("scraped", [
        {"primary": "just text"},
        {"primary": {"markdown": 5}},
        {"all_pages": [{"depth": "1"}]},
        {"primary": {"title": "Shop", "text": "Serums"}, "all_pages": [{"depth": 1, "text": "About"}]},
    ])
    def test_concise_run_tolerates_odd_scraped_data(self, scraped):
        message = SimpleNamespace(content=SUMMARY_JSON)
        create = AsyncMock(return_value=SimpleNamespace(choices=[SimpleNamespace(message=message)]))
        openai_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        app.dependency_overrides[get_llm] = lambda: LLMClient(api_key="sk-test", client=openai_client)

        response = self.client.post("/api/concise_run", json={"scrapedData": scraped})

        assert response.status_code == 200
        assert response.json()["summary"]["industry"] == "Beauty"
        create.assert_awaited_once()

    def test_concise_run_requires_scraped_data(self):
        response = self.client.post("/api/concise_run", json={"leadId": "abc"})

        assert response.status_code == 400


class TestAuth:

    @pytest.fixture(autouse=True)
    def client(self, store, monkeypatch):
        monkeypatch.setattr(app_module.settings, "api_token", "secret")
        app.dependency_overrides[get_store] = lambda: store
        self.client = TestClient(app)
        yield self.client
        app.dependency_overrides.clear()

    def test_missing_token_is_401(self):
        response = self.client.post("/api/leads", json={"username": "glowskin.co"})

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Invalid token"}

    def test_valid_token_is_accepted(self):
        response = self.client.post(
            "/api/leads",
            json={"username": "glowskin.co"},
            headers={"Authorization": "Bearer secret"},
        )

        assert response.status_code == 200

    def test_health_is_public(self):
        assert self.client.get("/health").status_code == 200
