import json
import openai
from openai import AsyncOpenAI
from typing import Dict, Any, Optional
from loguru import logger

from tools.errors import ConfigurationFault, SchemaFault, TransientProviderFault
from tools.extractors import summary_source

ANALYSIS_PROMPT = """You are a lead qualification expert for Instagram e-commerce influencers. Analyze the profile bio/followers, reels engagement, and website text for brand fit. Extract precisely:
- summary: 2-3 sentence overview (e.g., "Sustainable fashion brand targeting millennials via TikTok-style reels").
- prices: Array of product prices as strings from site/bio (e.g., ["$29.99", "$49.99"]; empty [] if none).
- pricesLow: Array of discounted/low-end prices as strings (e.g., ["$19.99"]; empty [] if none).
- niche: Short phrase (e.g., "eco-friendly apparel").
- otherContact: Non-Instagram contacts (e.g., "hello@brand.com") or "".

Respond ONLY with strict JSON: {"summary": "str", "prices": ["str", ...], "pricesLow": ["str", ...], "niche": "str", "otherContact": "str"}. No extras."""

WEBSITE_PROMPT = "You are a precise lead qualification analyst. Respond with valid JSON only."

PRIMARY_TEXT_LIMIT = 1500
SUMMARY_TEXT_LIMIT = 4000
SUBPAGE_TEXT_LIMIT = 500


class LLMClient:
    """Chat-completion client for lead analysis and website summaries."""

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini", client: Optional[AsyncOpenAI] = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationFault("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def complete_json(self, system: str, user: str, temperature: float = 0.1, max_tokens: int = 400) -> str:
        """
        Run one chat completion constrained to a JSON object.

        Returns:
            Raw message content (parsing is left to the caller)
        """
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                response_format={"type": "json_object"},
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.AuthenticationError as e:
            raise ConfigurationFault(f"OpenAI rejected the API key: {e}") from e
        except openai.APIError as e:
            raise TransientProviderFault(f"OpenAI request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise SchemaFault("Empty OpenAI response")
        return content

    async def analyze_lead(self, record: Dict[str, Any]) -> str:
        prompt = self._build_analysis_prompt(record)
        content = await self.complete_json(ANALYSIS_PROMPT, prompt, temperature=0.1, max_tokens=400)
        logger.info(f"LLM analysis generated for lead {record.get('id')}")
        return content

    async def summarize_website(self, scraped: Dict[str, Any]) -> str:
        prompt = self._build_website_prompt(scraped)
        content = await self.complete_json(WEBSITE_PROMPT, prompt, temperature=0.3, max_tokens=500)
        logger.info(f"LLM website summary generated for {summary_source(scraped)['input_url'] or 'unknown site'}")
        return content

    def _build_analysis_prompt(self, record: Dict[str, Any]) -> str:
        profile = record.get("profile") or {}
        reels = record.get("reels") or []
        website = record.get("website_data") or {}

        lines = [
            f"Profile: {json.dumps(profile)} (bio: {profile.get('biography') or 'N/A'}, "
            f"followers: {profile.get('followers_count') or 0}, verified: {profile.get('is_verified') or False}, "
            f"externalUrl: {profile.get('external_url') or 'N/A'})."
        ]

        if record.get("has_reels") and reels:
            lines.append(f"Reels (top {len(reels)}, er_avg: {record.get('er_avg') or 0}%): {json.dumps(reels)}.")
        else:
            lines.append("No reels data.")

        if record.get("has_website") and website.get("pages_count"):
            text = (website.get("primary") or {}).get("text") or ""
            lines.append(
                f"Website (text from {website['pages_count']} pages): {text[:PRIMARY_TEXT_LIMIT] or 'N/A'}..."
            )
        else:
            lines.append("No website data.")

        lines.append(
            'Infer niche from bio/reels captions; prices from site shop text (catch "$X.XX" patterns); '
            "prioritize engagement for summary."
        )
        return "\n".join(lines)

    def _build_website_prompt(self, scraped: Dict[str, Any]) -> str:
        source = summary_source(scraped)
        content = source["content"]
        if len(content) > SUMMARY_TEXT_LIMIT:
            content = content[:SUMMARY_TEXT_LIMIT] + "\n\n[Truncated for brevity]"

        subpages = source["subpages"][:2]
        if subpages:
            excerpts = "\n\n--- Sub-page ---\n\n".join(text[:SUBPAGE_TEXT_LIMIT] for text in subpages)
            content += f"\n\nAdditional pages context:\n{excerpts}"

        return f"""Analyze this website content for lead qualification. Extract key insights only - be concise, factual, and structured.

Website URL: {source['input_url'] or 'N/A'}
Title: {source['title'] or 'N/A'}
Description: {source['description'] or 'N/A'}

Content to analyze:
{content}

Output STRICT JSON only, no extra text. Schema:
{{"industry": "string", "services": ["string", ...], "audience": "string", "valueProp": "string", "contactInfo": "string|null", "fullSummary": "string"}}"""
