"""
Text-generation collaborators.

Two prompt-backed calls (bio suggestion, swap request summary) go through
TextGenerator, a thin wrapper around the Anthropic messages API. Each call
is stateless, bounded by a timeout, never retried, and its output must be a
JSON object matching the output model or GenerationError is raised.

The schedule conflict checker is exposed as a tool (CHECK_CONFLICT_TOOL)
so an orchestration layer can call it by name through call_tool().
"""
import json
import logging
import os
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

import anthropic
from pydantic import BaseModel, Field, ValidationError

from errors import GenerationError
from scheduling import Interval, check_conflict

logger = logging.getLogger(__name__)

DEFAULT_MODEL = os.getenv("SKILLSWAP_MODEL", "claude-sonnet-4-5-20250929")
DEFAULT_TIMEOUT = float(os.getenv("SKILLSWAP_GENERATION_TIMEOUT", "20"))

OutputT = TypeVar("OutputT", bound=BaseModel)


# ---------- Schemas ----------

class BioSuggestionInput(BaseModel):
    skills: List[str] = Field(..., description="Skills the user possesses")


class BioSuggestion(BaseModel):
    bio: str


class SwapSummaryInput(BaseModel):
    offered_skill: str
    requested_skill: str
    date_time: str
    other_user: str
    user_bio: str = ""
    other_user_bio: str = ""


class SwapSummary(BaseModel):
    summary: str


class ExistingSchedule(BaseModel):
    start_time: datetime
    end_time: datetime
    label: Optional[str] = None


class ConflictCheckInput(BaseModel):
    proposed_start_time: datetime
    proposed_end_time: datetime
    existing_schedules: List[ExistingSchedule] = Field(default_factory=list)


class ConflictCheckOutput(BaseModel):
    has_conflict: bool
    conflict_details: Optional[str] = None


# ---------- Prompts ----------

BIO_SYSTEM_PROMPT = (
    "You are an AI assistant that helps users write their profile bios for a "
    "skill swapping app. The user will provide a list of their skills and you "
    "will return a short, compelling profile bio.\n"
    'Reply with a JSON object only: {"bio": "<bio>"}'
)

SUMMARY_SYSTEM_PROMPT = (
    "You are an AI assistant that generates summaries for skill swap requests. "
    "Given the details, create a short and clear summary of the request.\n"
    'Reply with a JSON object only: {"summary": "<summary>"}'
)


def strip_code_fence(text: str) -> str:
    """Strip markdown code fences (```json ... ```) from model output."""
    stripped = text.strip()
    match = re.match(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", stripped, re.DOTALL)
    if match:
        return match.group(1).strip()
    return stripped


def parse_output(raw: Optional[str], model: Type[OutputT]) -> OutputT:
    if not raw:
        raise GenerationError("Generation service returned no text")
    cleaned = strip_code_fence(raw)
    try:
        return model.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error("Malformed %s output: %s", model.__name__, e)
        raise GenerationError(f"Malformed output from generation service: {model.__name__}") from e


class TextGenerator:
    """Synchronous Anthropic client with a bounded timeout and no retries."""

    def __init__(self, client=None, api_key: Optional[str] = None, model: str = DEFAULT_MODEL, timeout: float = DEFAULT_TIMEOUT, max_tokens: int = 512):
        if client is None:
            api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
            if not api_key:
                raise GenerationError("Generation service is not configured")
            client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client
        self._model = model
        self._max_tokens = max_tokens

    def _complete(self, system_prompt: str, user_text: str) -> Optional[str]:
        t0 = time.monotonic()
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_text}],
            )
        except anthropic.APIError as e:
            logger.error("Generation call FAIL | %.0fms | %s", (time.monotonic() - t0) * 1000, e)
            raise GenerationError(f"Generation service call failed: {e}") from e
        logger.info("Generation call OK | %.0fms | model=%s", (time.monotonic() - t0) * 1000, self._model)
        parts = [block.text for block in response.content if block.type == "text"]
        return "".join(parts) if parts else None

    def suggest_bio(self, skills: List[str]) -> BioSuggestion:
        payload = BioSuggestionInput(skills=skills)
        raw = self._complete(BIO_SYSTEM_PROMPT, "Skills: " + ", ".join(payload.skills))
        return parse_output(raw, BioSuggestion)

    def summarize_swap_request(self, offered_skill: str, requested_skill: str, date_time: str, other_user: str, user_bio: str = "", other_user_bio: str = "") -> SwapSummary:
        payload = SwapSummaryInput(
            offered_skill=offered_skill,
            requested_skill=requested_skill,
            date_time=date_time,
            other_user=other_user,
            user_bio=user_bio,
            other_user_bio=other_user_bio,
        )
        user_text = (
            f"Offered Skill: {payload.offered_skill}\n"
            f"Requested Skill: {payload.requested_skill}\n"
            f"Date and Time: {payload.date_time}\n"
            f"Other User: {payload.other_user}\n"
            f"User Bio: {payload.user_bio}\n"
            f"Other User Bio: {payload.other_user_bio}"
        )
        return parse_output(self._complete(SUMMARY_SYSTEM_PROMPT, user_text), SwapSummary)


# ---------- Tools ----------

def check_schedule_conflict(payload: ConflictCheckInput) -> ConflictCheckOutput:
    proposed = Interval(start=payload.proposed_start_time, end=payload.proposed_end_time)
    existing = [Interval(start=s.start_time, end=s.end_time, label=s.label) for s in payload.existing_schedules]
    result = check_conflict(proposed, existing)
    return ConflictCheckOutput(has_conflict=result.has_conflict, conflict_details=result.conflict_details)


CHECK_CONFLICT_TOOL = {
    "name": "check_schedule_conflict",
    "description": "Checks if a given schedule conflicts with any existing schedules.",
    "input_schema": ConflictCheckInput.model_json_schema(),
}

TOOLS = {
    CHECK_CONFLICT_TOOL["name"]: (ConflictCheckInput, check_schedule_conflict),
}


def call_tool(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Run a tool call by name with raw JSON arguments."""
    if name not in TOOLS:
        raise GenerationError(f"Unknown tool: {name}")
    input_model, fn = TOOLS[name]
    try:
        payload = input_model.model_validate(arguments)
    except ValidationError as e:
        raise GenerationError(f"Invalid arguments for tool {name}") from e
    return fn(payload).model_dump(exclude_none=True)
