"""
Tests for Raccord Validator and Vision Clients

Tests for storyframe/quality/raccord_validator.py and
storyframe/llm/vision_clients.py
"""

import json

import httpx
import pytest

from storyframe.core.exceptions import ValidationBackendError
from storyframe.core.models import (
    ContinuityAction,
    ContinuityDecision,
    ImageData,
    RaccordError,
    RaccordErrorType,
    Severity,
)
from storyframe.core.reference_store import ReferenceStore
from storyframe.llm.vision_clients import FallbackVisionClient, GeminiVisionClient, GroqVisionClient
from storyframe.quality.raccord_validator import (
    ContinuityValidator,
    ValidationOptions,
    decide_action,
    format_decision,
    parse_report,
)


FACE_ERROR = RaccordError(RaccordErrorType.CHARACTER_MISMATCH, "different face", Severity.ERROR)


class TestDecideAction:
    """Tests for score-to-action mapping."""

    @pytest.mark.parametrize("score, expected", [
        (0.5, ContinuityAction.RETRY),
        (0.59, ContinuityAction.RETRY),
        (0.6, ContinuityAction.ASK_USER),
        (0.75, ContinuityAction.ASK_USER),
        (0.8, ContinuityAction.CONTINUE),
        (0.95, ContinuityAction.CONTINUE),
    ])
    def test_thresholds(self, score, expected):
        assert decide_action(score, [], ValidationOptions()) == expected

    def test_strict_mode_retries_on_error_finding(self):
        assert decide_action(0.95, [FACE_ERROR], ValidationOptions(strict_mode=True)) == ContinuityAction.RETRY
        assert decide_action(0.95, [FACE_ERROR], ValidationOptions()) == ContinuityAction.CONTINUE

    def test_strict_mode_ignores_warnings(self):
        warning = RaccordError(RaccordErrorType.LIGHTING_CHANGE, "key light moved", Severity.WARNING)
        assert decide_action(0.95, [warning], ValidationOptions(strict_mode=True)) == ContinuityAction.CONTINUE


class TestParseReport:
    """Tests for tolerant JSON extraction."""

    def test_plain_json(self):
        report = parse_report('{"isValid": false, "score": 0.4, "errors": [], "correctionPrompt": "fix"}')
        assert report.score == 0.4
        assert report.is_valid is False
        assert report.correction_prompt == "fix"

    def test_markdown_fence(self):
        report = parse_report('```json\n{"isValid": true, "score": 0.9, "errors": []}\n```')
        assert report.score == 0.9

    def test_surrounding_prose(self):
        report = parse_report('Here is my verdict: {"score": 0.7, "errors": []} Hope it helps.')
        assert report.score == 0.7
        assert report.is_valid is None

    def test_garbage(self):
        assert parse_report("I cannot compare these images.") is None
        assert parse_report("") is None

    def test_missing_score(self):
        assert parse_report('{"isValid": true, "errors": []}') is None

    def test_score_clamped(self):
        assert parse_report('{"score": 1.7}').score == 1.0
        assert parse_report('{"score": -0.2}').score == 0.0

    def test_unknown_severity_becomes_warning(self):
        report = parse_report('{"score": 0.5, "errors": [{"type": "outfit_change", "severity": "CRITICAL"}]}')
        assert report.errors[0].severity == "warning"


class TestContinuityValidator:
    """Tests for validate() including its fail-open behavior."""

    @pytest.mark.asyncio
    async def test_verdict_mapped_to_decision(self, vision_factory, image_uri):
        vision = vision_factory([json.dumps({
            "isValid": False,
            "score": 0.55,
            "errors": [
                {"type": "Outfit_Change", "description": "coat is blue", "severity": "error"},
                {"type": "camera_shake", "description": "unknown finding"},
            ],
            "correctionPrompt": "Keep the red trench coat",
        })])
        validator = ContinuityValidator(ReferenceStore(), vision)

        decision = await validator.validate(image_uri((1, 1, 1)), image_uri((2, 2, 2)))

        assert decision.action == ContinuityAction.RETRY
        assert decision.score == 0.55
        assert not decision.is_valid
        assert decision.errors == [RaccordError(RaccordErrorType.OUTFIT_CHANGE, "coat is blue", Severity.ERROR)]
        assert decision.correction_prompt == "Keep the red trench coat"
        assert len(vision.calls[0]) == 2

    @pytest.mark.asyncio
    async def test_validity_inferred_from_score(self, vision_factory, image_uri):
        validator = ContinuityValidator(ReferenceStore(), vision_factory(['{"score": 0.85}']))

        decision = await validator.validate(image_uri((1, 1, 1)), image_uri((2, 2, 2)))

        assert decision.is_valid
        assert decision.action == ContinuityAction.CONTINUE

    @pytest.mark.asyncio
    async def test_per_call_options(self, vision_factory, image_uri):
        validator = ContinuityValidator(ReferenceStore(), vision_factory(['{"score": 0.85}']))

        decision = await validator.validate(
            image_uri((1, 1, 1)), image_uri((2, 2, 2)), ValidationOptions(ask_user_threshold=0.9)
        )

        assert decision.action == ContinuityAction.ASK_USER

    @pytest.mark.asyncio
    async def test_backend_error_fails_open(self, vision_factory, image_uri):
        validator = ContinuityValidator(ReferenceStore(), vision_factory([ValidationBackendError("down")]))

        decision = await validator.validate(image_uri((1, 1, 1)), image_uri((2, 2, 2)))

        assert decision == ContinuityDecision.passthrough()

    @pytest.mark.asyncio
    async def test_unexpected_client_error_fails_open(self, vision_factory, image_uri):
        validator = ContinuityValidator(ReferenceStore(), vision_factory([RuntimeError("malformed payload")]))

        decision = await validator.validate(image_uri((1, 1, 1)), image_uri((2, 2, 2)))

        assert decision == ContinuityDecision.passthrough()

    @pytest.mark.asyncio
    async def test_unreadable_answer_fails_open(self, vision_factory, image_uri):
        validator = ContinuityValidator(ReferenceStore(), vision_factory(["no idea"]))

        decision = await validator.validate(image_uri((1, 1, 1)), image_uri((2, 2, 2)))

        assert decision.score == 1.0
        assert decision.action == ContinuityAction.CONTINUE

    @pytest.mark.asyncio
    async def test_unloadable_image_fails_open(self, vision_factory, image_uri):
        vision = vision_factory()
        validator = ContinuityValidator(ReferenceStore(), vision)

        decision = await validator.validate("ftp://nowhere/x.png", image_uri((2, 2, 2)))

        assert decision == ContinuityDecision.passthrough()
        assert vision.calls == []


class TestFormatDecision:

    def test_ok(self):
        assert format_decision(ContinuityDecision.passthrough()) == "Raccord OK (100%)"

    def test_with_findings(self):
        decision = ContinuityDecision(is_valid=False, score=0.42, action=ContinuityAction.RETRY,
                                      errors=[FACE_ERROR])
        assert format_decision(decision) == "Raccord retry (42%): character_mismatch[error]"


class TestVisionClients:
    """Tests for the HTTP vision backends."""

    @pytest.mark.asyncio
    async def test_gemini_request_and_answer(self, mock_client, png_bytes):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": '{"score": 0.9}'}]}}]
            })

        client = GeminiVisionClient(api_key="k", client=mock_client(handler))

        text = await client.analyze("compare", [ImageData(png_bytes), ImageData(png_bytes)])

        assert text == '{"score": 0.9}'
        assert seen["url"].endswith("/gemini-2.5-flash:generateContent")
        assert seen["key"] == "k"
        parts = seen["body"]["contents"][0]["parts"]
        assert "inline_data" in parts[0] and "inline_data" in parts[1]
        assert parts[2] == {"text": "compare"}

    @pytest.mark.asyncio
    async def test_gemini_http_error(self, mock_client, png_bytes):
        client = GeminiVisionClient(api_key="k", client=mock_client(lambda r: httpx.Response(500, text="boom")))

        with pytest.raises(ValidationBackendError):
            await client.analyze("compare", [ImageData(png_bytes)])

    @pytest.mark.asyncio
    async def test_gemini_empty_answer(self, mock_client, png_bytes):
        client = GeminiVisionClient(api_key="k", client=mock_client(lambda r: httpx.Response(200, json={})))

        with pytest.raises(ValidationBackendError):
            await client.analyze("compare", [ImageData(png_bytes)])

    @pytest.mark.parametrize("payload", [
        {"candidates": [{"content": None}]},
        {"candidates": [{"content": {"parts": None}}]},
        {"candidates": [None]},
        ["not", "an", "object"],
    ])
    @pytest.mark.asyncio
    async def test_gemini_malformed_answer(self, mock_client, png_bytes, payload):
        client = GeminiVisionClient(api_key="k", client=mock_client(lambda r: httpx.Response(200, json=payload)))

        with pytest.raises(ValidationBackendError):
            await client.analyze("compare", [ImageData(png_bytes)])

    @pytest.mark.asyncio
    async def test_groq_null_message(self, mock_client, png_bytes):
        client = GroqVisionClient(api_key="g", client=mock_client(
            lambda r: httpx.Response(200, json={"choices": [{"message": None}]})
        ))

        with pytest.raises(ValidationBackendError):
            await client.analyze("compare", [ImageData(png_bytes)])

    @pytest.mark.asyncio
    async def test_groq_answer(self, mock_client, png_bytes):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer g"
            content = json.loads(request.content)["messages"][0]["content"]
            assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        client = GroqVisionClient(api_key="g", client=mock_client(handler))

        assert await client.analyze("compare", [ImageData(png_bytes)]) == "ok"

    @pytest.mark.asyncio
    async def test_fallback_uses_next_backend(self, vision_factory, png_bytes):
        failing = vision_factory([ValidationBackendError("quota")])
        unconfigured = vision_factory(configured=False)
        working = vision_factory(["answer"])
        client = FallbackVisionClient([failing, unconfigured, working])

        assert await client.analyze("compare", [ImageData(png_bytes)]) == "answer"
        assert unconfigured.calls == []

    @pytest.mark.asyncio
    async def test_fallback_without_backends(self, vision_factory, png_bytes):
        client = FallbackVisionClient([vision_factory(configured=False)])

        assert not client.is_configured()
        with pytest.raises(ValidationBackendError):
            await client.analyze("compare", [ImageData(png_bytes)])
