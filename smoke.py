#!/usr/bin/env python3
"""
Smoke checks against a running Instagram Lead Enricher server.

Usage: python smoke.py [base_url] [instagram_username]
"""

import os
import sys
import requests


def _headers():
    token = os.getenv("API_TOKEN")
    return {"Authorization": f"Bearer {token}"} if token else {}


def check_health(base_url):
    """Check the health endpoint."""
    try:
        response = requests.get(f"{base_url}/health", timeout=10)
        if response.status_code == 200:
            print(f"✅ Health check passed: {response.json()}")
            return True
        print(f"❌ Health check failed: {response.status_code}")
        return False
    except requests.exceptions.RequestException as e:
        print(f"❌ Health check error: {e}")
        return False


def check_unknown_lead(base_url):
    """An unknown lead must be a 404, not a degraded success."""
    try:
        response = requests.post(
            f"{base_url}/api/enrich",
            json={"leadId": "does-not-exist"},
            headers=_headers(),
            timeout=30
        )
        if response.status_code == 404 and response.json().get("success") is False:
            print("✅ Unknown lead rejected with 404")
            return True
        print(f"❌ Unknown lead returned {response.status_code}: {response.text}")
        return False
    except requests.exceptions.RequestException as e:
        print(f"❌ Unknown lead check error: {e}")
        return False


def check_enrichment(base_url, username):
    """Create a lead and run the full pipeline; degraded stages still count as handled."""
    try:
        created = requests.post(
            f"{base_url}/api/leads",
            json={"username": username},
            headers=_headers(),
            timeout=30
        )
        if created.status_code != 200:
            print(f"❌ Lead creation failed: {created.status_code} {created.text}")
            return False
        lead_id = created.json()["leadId"]

        # Scrape stages poll for minutes
        response = requests.post(
            f"{base_url}/api/enrich",
            json={"leadId": lead_id},
            headers=_headers(),
            timeout=900
        )
        if response.status_code != 200:
            print(f"❌ Enrichment failed: {response.status_code} {response.text}")
            return False

        for stage in response.json().get("stages", []):
            print(f"   {stage['stage']}: {stage['status']} {stage.get('reason') or ''}")
        print(f"✅ Enrichment handled for lead {lead_id}")
        return True
    except requests.exceptions.RequestException as e:
        print(f"❌ Enrichment error: {e}")
        return False


def main():
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    username = sys.argv[2] if len(sys.argv) > 2 else "instagram"

    print("🚀 Smoke testing Instagram Lead Enricher")
    print("=" * 50)

    checks = [
        ("Health Check", lambda: check_health(base_url)),
        ("Unknown Lead", lambda: check_unknown_lead(base_url)),
        ("Full Enrichment", lambda: check_enrichment(base_url, username)),
    ]

    passed = 0
    for name, check in checks:
        print(f"\n🧪 Running {name}...")
        if check():
            passed += 1

    print("\n" + "=" * 50)
    print(f"📊 Results: {passed}/{len(checks)} checks passed")
    return 0 if passed == len(checks) else 1


if __name__ == "__main__":
    sys.exit(main())
