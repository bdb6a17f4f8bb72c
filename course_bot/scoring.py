import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass

from google import genai

from .errors import ScoringError

logger = logging.getLogger(__name__)

NUMBER = re.compile(r"[0-9]+(?:\.[0-9]+)?")

DEFAULT_RUBRIC = """Evaluate the learner's answer on these criteria:

1. Main idea up front (0-3 points)
   - Is there a clear main idea at the start?
   - Is it understandable immediately?

2. Structured supporting points (0-3 points)
   - Are there 2-3 supporting points of the same kind?
   - Are they grouped logically?

3. Details and facts (0-2 points)
   - Are the supporting points backed by concrete details?
   - Are there examples?

4. Situation / Complication / Question / Resolution (0-2 points, if applicable)
   - Are the four parts clearly separated?
"""

REVIEW_PROMPT = """You are an expert in structured business communication and the pyramid principle.

{criteria}
Maximum score: {max_score}

Task:
{task}

Learner's answer:
{answer}

Return a JSON object:
{{"score": a number from 0 to {max_score}, "feedback": "a detailed comment with concrete recommendations"}}

Return only valid JSON. No text outside the JSON."""


@dataclass
class Review:
    score: float
    feedback: str


def clamp(value, max_score):
    if not math.isfinite(value):
        return 0
    return min(max(value, 0), max_score)


def strip_fences(text):
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]
    return text.strip()


def parse_review(raw, max_score):
    """Turn a model reply into a clamped ``Review``.

    Non-JSON (or JSON without a usable score) falls back to the first number
    in the raw text, or 0 when there is none; the raw text becomes the feedback.
    """
    text = strip_fences(raw or "")
    try:
        parsed = json.loads(text)
        if not isinstance(parsed, dict):
            raise ValueError("review is not an object")
        score = float(parsed.get("score") or 0)
        feedback = parsed.get("feedback") or raw
    except (ValueError, TypeError):
        match = NUMBER.search(raw or "")
        score = float(match.group(0)) if match else 0.0
        feedback = raw
    return Review(score=clamp(score, max_score), feedback=feedback)


def is_quota_error(exc):
    text = str(exc)
    return "429" in text or "quota" in text.lower() or "RESOURCE_EXHAUSTED" in text


class Scorer:
    async def score(self, task_text, answer_text, max_score, rubric=None):
        raise NotImplementedError


class GeminiScorer(Scorer):
    def __init__(self, client, model, max_retries=5, base_wait=10, sleep=asyncio.sleep):
        self.client = client
        self.model = model
        self.max_retries = max_retries
        self.base_wait = base_wait
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings):
        if not settings.gemini_api_key:
            return None
        return cls(genai.Client(api_key=settings.gemini_api_key), settings.gemini_model)

    def build_prompt(self, task_text, answer_text, max_score, rubric=None):
        if rubric and rubric.strip():
            criteria = f"Assessment criteria for this task:\n{rubric.strip()}\n"
        else:
            criteria = DEFAULT_RUBRIC
        return REVIEW_PROMPT.format(
            criteria=criteria, max_score=max_score, task=task_text, answer=answer_text
        )

    async def _generate(self, prompt):
        for attempt in range(self.max_retries):
            try:
                response = await self.client.aio.models.generate_content(
                    model=self.model, contents=prompt
                )
                return response.text or ""
            except Exception as e:
                if "503" in str(e) or ("429" in str(e) and attempt < self.max_retries - 1):
                    wait = 2 ** attempt * self.base_wait
                    logger.warning("Gemini busy (%s). Waiting %ss before retry %d/%d...",
                                   e, wait, attempt + 1, self.max_retries)
                    await self._sleep(wait)
                else:
                    raise ScoringError(str(e)) from e
        raise ScoringError("Max retries exceeded for Gemini API")

    async def score(self, task_text, answer_text, max_score, rubric=None):
        raw = await self._generate(self.build_prompt(task_text, answer_text, max_score, rubric))
        if not raw.strip():
            raise ScoringError("Empty response from Gemini")
        return parse_review(raw, max_score)
