# tests/test_classifier.py
import asyncio
import json

import httpx
import pytest

from tab_orchestra.client.classifier import ClassificationError, GeminiClassifier, parse_cluster_response


def gemini_reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def make(handler, api_key="secret"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiClassifier(api_key, model="gemini-test", base_url="https://llm.test/v1/models/", client=client)


def test_classify_posts_to_generate_content():
    seen = []

    def handler(request):
        seen.append(request)
        text = '```json\n{"clusters": [{"name": "Docs", "tabs": [0], "theme": "Reading"}]}\n```'
        return httpx.Response(200, json=gemini_reply(text))

    async def scenario():
        classifier = make(handler)
        return await classifier.classify([{"index": 0, "title": "Docs", "url": "https://docs.test"}])

    result = asyncio.run(scenario())
    assert result == {"clusters": [{"name": "Docs", "tabs": [0], "theme": "Reading"}]}

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/models/gemini-test:generateContent"
    assert request.url.params["key"] == "secret"
    body = json.loads(request.content)
    assert body["generationConfig"]["temperature"] == 0.3
    assert "https://docs.test" in body["contents"][0]["parts"][0]["text"]


def test_api_error_message_is_surfaced():
    def handler(request):
        return httpx.Response(403, json={"error": {"message": "API key not valid"}})

    with pytest.raises(ClassificationError, match="API key not valid"):
        asyncio.run(make(handler).classify([]))


def test_timeout_becomes_classification_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ClassificationError, match="timed out"):
        asyncio.run(make(handler).classify([]))


def test_unexpected_shape_is_rejected():
    def handler(request):
        return httpx.Response(200, json={"candidates": []})

    with pytest.raises(ClassificationError):
        asyncio.run(make(handler).classify([]))


def test_missing_key_fails_without_a_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=gemini_reply("{}"))

    classifier = make(handler, api_key=lambda: None)
    assert classifier.api_key() is None
    with pytest.raises(ClassificationError, match="API key not configured"):
        asyncio.run(classifier.classify([]))
    assert calls == []


def test_key_is_read_lazily():
    keys = {"value": None}
    classifier = make(lambda r: httpx.Response(200), api_key=lambda: keys["value"])
    assert classifier.api_key() is None
    keys["value"] = "later"
    assert classifier.api_key() == "later"


def test_discussion_prompts():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        text = "1. How do these frameworks handle state differently?\n2. Which idea would you try first?\nok"
        return httpx.Response(200, json=gemini_reply(text))

    cluster = {"name": "React", "tabs": [{"title": f"Tab {i}"} for i in range(12)]}
    questions = asyncio.run(make(handler).discussion_prompts(cluster))

    assert questions == ["How do these frameworks handle state differently?", "Which idea would you try first?"]
    prompt = seen[0]["contents"][0]["parts"][0]["text"]
    assert "Tab 9" in prompt and "Tab 10" not in prompt
    assert seen[0]["generationConfig"]["temperature"] == 0.9


def test_discussion_prompts_without_questions_fail():
    def handler(request):
        return httpx.Response(200, json=gemini_reply("no questions here"))

    with pytest.raises(ClassificationError):
        asyncio.run(make(handler).discussion_prompts({"name": "X", "tabs": []}))


def test_parse_cluster_response_variants():
    assert parse_cluster_response('Sure! {"clusters": []} Hope that helps.') == {"clusters": []}
    with pytest.raises(ClassificationError):
        parse_cluster_response("no json at all")
    with pytest.raises(ClassificationError):
        parse_cluster_response('{"groups": []}')
