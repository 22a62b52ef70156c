"""
Classification collaborator backed by the Gemini generateContent REST API.

    classify(items)            [{index, title, url}] -> {"clusters": [{name, tabs: [index...], theme}]}
    discussion_prompts(cluster) cluster              -> 1-3 questions

Every failure (missing key, HTTP error, timeout, unparseable reply) is raised as
ClassificationError with a readable message. Partition validation is the
coordinator's job; this module only checks the reply's outer shape.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from .clustering import parse_prompts

log = logging.getLogger("tab_orchestra.classifier")

ApiKeySource = Union[str, None, Callable[[], Optional[str]]]

_FENCE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_OBJECT = re.compile(r"\{[\s\S]*\}")

_SAFETY = [
    {"category": c, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for c in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]

CATEGORIZE_PROMPT = """You are an expert at categorizing browser tabs. Analyze these tabs and create concise categories.

RULES:
1. Return ONLY valid JSON (no markdown, no code blocks, no extra text)
2. Category names must be 1-2 words (e.g. "Design", "Tech News", "Learning")
3. Categories must describe the actual content
4. Every tab must be categorized
5. Group similar content together

Tabs:
{tabs}

Return JSON with this exact structure:
{{
  "clusters": [
    {{"name": "CategoryName", "tabs": [0, 1, 2], "theme": "What these tabs have in common"}}
  ]
}}

Use the tab indices from the input in the "tabs" arrays."""

PROMPTS_PROMPT = """You are an expert facilitator. Create 3 thought-provoking discussion questions for {count} browser tabs in the "{name}" category.

Sample titles:
- {titles}

The questions should encourage deep exploration, connect the resources to each other,
support collaborative learning and be specific.

Return ONLY the 3 questions, one per line, without numbering or bullets. Each must end with "?"."""


class ClassificationError(Exception):
    pass


def parse_cluster_response(text: str) -> Dict[str, Any]:
    """Pull the first JSON object out of a model reply (code fences allowed)."""
    body = (text or "").strip()
    fenced = _FENCE.search(body)
    if fenced:
        body = fenced.group(1).strip()
    obj = _OBJECT.search(body)
    if obj:
        body = obj.group(0)
    try:
        parsed = json.loads(body)
    except ValueError as e:
        raise ClassificationError(f"reply is not valid JSON: {e}") from e
    if not isinstance(parsed, dict) or not isinstance(parsed.get("clusters"), list):
        raise ClassificationError("Invalid response structure")
    return parsed


class GeminiClassifier:
    def __init__(
        self,
        api_key: ApiKeySource,
        *,
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta/models",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def api_key(self) -> Optional[str]:
        key = self._api_key() if callable(self._api_key) else self._api_key
        return key or None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _generate(self, prompt: str, temperature: float) -> str:
        key = self.api_key()
        if not key:
            raise ClassificationError("API key not configured")

        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": 8192,
            },
            "safetySettings": _SAFETY,
        }
        url = f"{self.base_url}/{self.model}:generateContent"
        try:
            resp = await self._http().post(url, params={"key": key}, json=body, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ClassificationError("classification request timed out") from e
        except httpx.HTTPError as e:
            raise ClassificationError(f"classification request failed: {e}") from e

        if resp.status_code >= 400:
            detail = resp.reason_phrase
            try:
                detail = resp.json().get("error", {}).get("message") or detail
            except (ValueError, AttributeError):
                pass
            raise ClassificationError(f"Gemini API error: {detail}")

        try:
            data = resp.json()
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ClassificationError("unexpected Gemini response shape") from e

    async def classify(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        log.info("categorizing %d tab(s)", len(items))
        text = await self._generate(CATEGORIZE_PROMPT.format(tabs=json.dumps(items, indent=2)), 0.3)
        return parse_cluster_response(text)

    async def discussion_prompts(self, cluster: Dict[str, Any]) -> List[str]:
        name = cluster.get("name") or "this content"
        tabs = cluster.get("tabs") or []
        titles = "\n- ".join(str(t.get("title", "")) for t in tabs[:10])
        text = await self._generate(PROMPTS_PROMPT.format(count=len(tabs), name=name, titles=titles), 0.9)
        questions = parse_prompts(text)
        if not questions:
            raise ClassificationError("No valid questions generated")
        return questions
