"""
Raccord Validator - Shot-to-Shot Continuity Check

Compares a freshly generated frame with its continuity anchor using a vision
model and turns the verdict into an action:

- score below the auto-retry threshold  -> retry with the correction prompt
- score below the ask-user threshold    -> keep, but ask the user
- otherwise                             -> continue

Strict mode forces a retry on any error-severity finding. Validation is
fail-open: missing images, an unreachable backend or an unreadable answer
all yield ``continue`` with score 1.0.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from storyframe.core.exceptions import ValidationBackendError
from storyframe.core.logging_config import get_logger
from storyframe.core.models import (
    ContinuityAction,
    ContinuityDecision,
    RaccordError,
    RaccordErrorType,
    Severity,
)
from storyframe.core.reference_store import ReferenceStore
from storyframe.llm.vision_clients import VisionClient

logger = get_logger("quality.raccord_validator")


RACCORD_VALIDATION_PROMPT = """You are a professional Director of Photography (DOP) reviewing two consecutive shots from the same scene.

TASK: Analyze the visual continuity (RACCORD) between these two images.

Check for these RACCORD BREAKS:
1. CHARACTER IDENTITY: Does the same person appear in both? Face structure, features, age, ethnicity must match.
2. OUTFIT CONTINUITY: Are they wearing the same clothes? Check colors, patterns, accessories.
3. LIGHTING DIRECTION: Does the key light come from the same direction? Check shadow directions.
4. BACKGROUND CONSISTENCY: Are environmental elements consistent?
5. STYLE MATCH: Is the artistic style (realistic, anime, etc.) the same?

RESPOND IN JSON FORMAT:
{
  "isValid": true/false,
  "score": 0.0-1.0,
  "errors": [
    {
      "type": "character_mismatch|outfit_change|lighting_change|background_change|style_change",
      "description": "Brief description of the issue",
      "severity": "warning|error"
    }
  ],
  "correctionPrompt": "If there are errors, suggest a prompt addition to fix the most critical issue"
}

IMPORTANT:
- score = 1.0 means perfect continuity
- score < 0.6 means serious raccord break
- error severity = "error" for things that MUST match (face, outfit)
- error severity = "warning" for things that can vary (lighting angle, background detail)

Respond ONLY with valid JSON, no markdown.

The first image is the PREVIOUS SHOT (reference).
The second image is the CURRENT SHOT (to validate)."""


@dataclass
class ValidationOptions:
    """Thresholds for mapping a continuity score to an action."""
    strict_mode: bool = False
    auto_retry_threshold: float = 0.6
    ask_user_threshold: float = 0.8


# =============================================================================
# RESPONSE SCHEMA
# =============================================================================

class RaccordFinding(BaseModel):
    """One finding as reported by the vision model."""
    model_config = ConfigDict(extra="ignore")

    type: str
    description: str = ""
    severity: Literal["warning", "error"] = "warning"

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value):
        value = str(value or "warning").strip().lower()
        return value if value in ("warning", "error") else "warning"


class RaccordReport(BaseModel):
    """The vision model's JSON verdict."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_valid: Optional[bool] = Field(default=None, alias="isValid")
    score: float
    errors: List[RaccordFinding] = Field(default_factory=list)
    correction_prompt: Optional[str] = Field(default=None, alias="correctionPrompt")

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return min(1.0, max(0.0, value))


def parse_report(text: str) -> Optional[RaccordReport]:
    """
    Parse the model answer, tolerating markdown fences and surrounding prose.

    Returns:
        RaccordReport, or None if no valid report can be read
    """
    json_str = text or ""
    if "```json" in json_str:
        json_str = json_str.split("```json")[1].split("```")[0]
    elif "```" in json_str:
        json_str = json_str.split("```")[1].split("```")[0]
    else:
        match = re.search(r"\{.*\}", json_str, re.DOTALL)
        if match:
            json_str = match.group(0)

    try:
        return RaccordReport.model_validate_json(json_str.strip())
    except ValidationError as e:
        logger.warning(f"Unreadable continuity report: {e.error_count()} error(s)")
        return None


def decide_action(score: float, errors: List[RaccordError], options: ValidationOptions) -> ContinuityAction:
    """Map a score and its findings to continue / ask_user / retry."""
    if options.strict_mode and any(e.severity == Severity.ERROR for e in errors):
        return ContinuityAction.RETRY
    if score < options.auto_retry_threshold:
        return ContinuityAction.RETRY
    if score < options.ask_user_threshold:
        return ContinuityAction.ASK_USER
    return ContinuityAction.CONTINUE


def _to_errors(findings: List[RaccordFinding]) -> List[RaccordError]:
    errors = []
    for finding in findings:
        try:
            error_type = RaccordErrorType(finding.type.strip().lower())
        except ValueError:
            logger.debug(f"Ignoring finding of unknown type '{finding.type}'")
            continue
        errors.append(RaccordError(type=error_type, description=finding.description,
                                   severity=Severity(finding.severity)))
    return errors


class ContinuityValidator:
    """
    Scores continuity between two frames through a vision backend.

    Usage:
        validator = ContinuityValidator(store, GeminiVisionClient(api_key))
        decision = await validator.validate(previous_ref, current_ref)
    """

    def __init__(
        self,
        reference_store: ReferenceStore,
        vision_client: VisionClient,
        options: Optional[ValidationOptions] = None
    ):
        self.reference_store = reference_store
        self.vision_client = vision_client
        self.options = options or ValidationOptions()

    async def validate(
        self,
        previous_image: str,
        current_image: str,
        options: Optional[ValidationOptions] = None
    ) -> ContinuityDecision:
        """
        Compare two frames.

        Args:
            previous_image: Reference string of the continuity anchor
            current_image: Reference string of the new frame
            options: Overrides the validator's default thresholds

        Returns:
            ContinuityDecision (pass-through on any failure)
        """
        options = options or self.options

        previous, current = await asyncio.gather(
            self.reference_store.resolve(previous_image),
            self.reference_store.resolve(current_image),
        )
        if previous is None or current is None:
            logger.warning("Could not load images for continuity check; continuing")
            return ContinuityDecision.passthrough()

        try:
            text = await self.vision_client.analyze(RACCORD_VALIDATION_PROMPT, [previous, current])
        except ValidationBackendError as e:
            logger.warning(f"Continuity check unavailable, continuing without it: {e}")
            return ContinuityDecision.passthrough()
        except Exception as e:
            logger.warning(f"Continuity check failed unexpectedly, continuing without it: {type(e).__name__}: {e}")
            return ContinuityDecision.passthrough()

        report = parse_report(text)
        if report is None:
            return ContinuityDecision.passthrough()

        errors = _to_errors(report.errors)
        action = decide_action(report.score, errors, options)
        is_valid = report.is_valid if report.is_valid is not None else report.score >= options.ask_user_threshold

        decision = ContinuityDecision(
            is_valid=is_valid,
            score=report.score,
            action=action,
            errors=errors,
            correction_prompt=report.correction_prompt or None,
        )
        logger.info(f"Continuity check: {format_decision(decision)}")
        return decision


def format_decision(decision: ContinuityDecision) -> str:
    """One-line summary for logs and status displays."""
    percent = round(decision.score * 100)
    if decision.is_valid and not decision.errors:
        return f"Raccord OK ({percent}%)"
    issues = ", ".join(f"{e.type.value}[{e.severity.value}]" for e in decision.errors) or "no details"
    return f"Raccord {decision.action.value} ({percent}%): {issues}"
