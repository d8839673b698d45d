"""
Extraction Client
Sends review samples to OpenAI (JSON mode) and returns raw pain-point dicts.

Retry policy: up to 4 attempts with 5s -> 10s -> 20s backoff on rate limits,
5xx, connection errors and unparseable responses. 400-class errors are fatal.
"""
import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from openai import (
    APIConnectionError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import get_settings
from errors import ExtractionError, ExtractionParseError, NoValidInputError
from models.schemas import ReviewSample

logger = logging.getLogger(__name__)

# APITimeoutError is a subclass of APIConnectionError
RETRYABLE_ERRORS = (RateLimitError, InternalServerError, APIConnectionError, ExtractionParseError)

FENCE_OPEN_JSON = re.compile(r"^```json\s*", re.IGNORECASE)
FENCE_OPEN = re.compile(r"^```\s*")
FENCE_CLOSE = re.compile(r"\s*```$")


PAIN_POINT_PROMPT = """You are a senior product analyst. Analyse the following Google Play Store reviews and extract ALL recurring pain points that users experience.

IMPORTANT RULES:
- Return ONLY valid JSON matching the schema below, with no markdown and no explanation.
- "frequency" is the count of reviews mentioning this specific issue.
- "representative_quotes" must be verbatim text from the provided reviews (max 2 quotes per pain point).
- Every pain point must have a complete "improvement" object.
- Do not invent issues not present in the reviews.
- Group related complaints into one pain point rather than creating duplicates.

REQUIRED JSON SCHEMA:
{{
  "pain_points": [
    {{
      "category": "Bug | UX Issue | Performance | Feature Gap | Privacy | Support",
      "severity": "High | Medium | Low",
      "frequency": <integer>,
      "description": "<root cause: why users are frustrated, not just what they complain about>",
      "representative_quotes": ["<verbatim quote from review>", "<second verbatim quote>"],
      "improvement": {{
        "recommendation": "<specific, actionable engineering or design change>",
        "phase": "Quick Win | Short-Term | Long-Term",
        "effort": "Low | Medium | High",
        "impact": "Low | Medium | High"
      }}
    }}
  ]
}}

SEVERITY GUIDE:
- High: Mentioned in >15% of reviews OR causes crashes/data loss/inability to use the app
- Medium: Mentioned in 5-15% of reviews OR significantly degrades the experience
- Low: Mentioned in <5% of reviews OR minor inconvenience

PHASE GUIDE:
- Quick Win: Can be resolved in 0-4 weeks (config change, copy fix, simple UI tweak)
- Short-Term: Requires 1-3 months of engineering work
- Long-Term: Requires 3-6 months or architectural changes

USER REVIEWS TO ANALYSE:
{reviews}"""


@dataclass(frozen=True)
class TaskSpec:
    """What to ask the model for and where the answer lives in its JSON"""

    name: str
    system_prompt: str
    prompt_template: str
    result_key: str

    def build_prompt(self, formatted_samples: List[str]) -> str:
        return self.prompt_template.format(reviews=json.dumps(formatted_samples, ensure_ascii=False))


PAIN_POINT_TASK = TaskSpec(
    name="pain_points",
    system_prompt="You are a product analytics expert. Always return valid JSON, never plain text.",
    prompt_template=PAIN_POINT_PROMPT,
    result_key="pain_points",
)


def strip_code_fences(text: str) -> str:
    """Remove an optional ```json ... ``` wrapper"""
    text = text.strip()
    text = FENCE_OPEN_JSON.sub("", text)
    text = FENCE_OPEN.sub("", text)
    text = FENCE_CLOSE.sub("", text)
    return text.strip()


def parse_response(content: Optional[str], result_key: str = "pain_points") -> List[Dict[str, Any]]:
    """
    Parse the model's JSON answer

    Raises:
        ExtractionParseError: empty content, invalid JSON, or no list under result_key
    """
    if not content:
        raise ExtractionParseError("Model returned empty content")
    try:
        parsed = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Model returned invalid JSON: {e}") from e
    items = parsed.get(result_key) if isinstance(parsed, dict) else None
    if not isinstance(items, list):
        raise ExtractionParseError(f"Model response missing {result_key} array")
    return items


class ExtractionClient:
    """OpenAI-backed structured extraction with retry/backoff"""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        # Retries are ours; the SDK's own retry loop is disabled
        self.client = client or AsyncOpenAI(
            api_key=settings.openai_api_key,
            max_retries=0,
            timeout=settings.extraction_timeout,
        )
        self.model = model or settings.openai_model
        self.temperature = settings.extraction_temperature
        self.max_tokens = settings.extraction_max_tokens
        self.max_attempts = max_attempts or settings.extraction_max_attempts
        self.base_delay = settings.extraction_base_delay if base_delay is None else base_delay
        self.max_delay = settings.extraction_max_delay if max_delay is None else max_delay
        self.min_length = settings.min_sample_length
        self.max_length = settings.max_sample_length
        self._sleep = sleep
        logger.info(f"Extraction client initialized with model: {self.model}")

    def prepare_samples(self, samples: Sequence[ReviewSample]) -> List[str]:
        """Drop near-empty reviews, truncate long ones, prefix the star score"""
        prepared = []
        for sample in samples:
            text = (sample.text or "").strip()
            if len(text) < self.min_length:
                continue
            prepared.append(f"[{sample.score}★] {text[:self.max_length]}")
        return prepared

    async def extract(
        self,
        samples: Sequence[ReviewSample],
        task_spec: Optional[TaskSpec] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run the extraction task over the samples

        Returns:
            Raw finding dicts, each with at most 2 representative quotes

        Raises:
            NoValidInputError: nothing left after filtering (no model call made)
            ExtractionError: retries exhausted or a non-retryable failure
        """
        task = task_spec or PAIN_POINT_TASK
        prepared = self.prepare_samples(samples)
        if not prepared:
            raise NoValidInputError()

        prompt = task.build_prompt(prepared)
        logger.info(f"Extracting {task.name} from {len(prepared)} reviews ({len(samples) - len(prepared)} dropped)")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    items = await self._call(task, prompt)
        except ExtractionError:
            raise
        except OpenAIError as e:
            logger.error(f"❌ Extraction failed: {e}")
            raise ExtractionError(f"{type(e).__name__}: {e}") from e

        for item in items:
            if isinstance(item, dict) and isinstance(item.get("representative_quotes"), list):
                item["representative_quotes"] = item["representative_quotes"][:2]

        logger.info(f"✓ Extracted {len(items)} {task.name}")
        return items

    async def _call(self, task: TaskSpec, prompt: str) -> List[Dict[str, Any]]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": task.system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content if response.choices else None
        return parse_response(content, task.result_key)
