"""Two-stage generation workflow: research brief -> narrated story.

The orchestrator runs the stages strictly in order:
- research (Anthropic Messages API, builds the research brief)
- story (OpenAI Responses API, narrates the brief and then titles it)

A sibling flow asks clarifying questions about an initial topic; it is not
chained into the pipeline.

Defaults call the providers and therefore need `ANTHROPIC_API_KEY` and
`OPENAI_API_KEY`, but injected stage functions and/or provided clients allow
offline usage for tests.
"""

from __future__ import annotations

import logging
import math
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, List, Optional

from anthropic import Anthropic
from openai import OpenAI

from .config import Settings, get_settings
from .models import StoryRecord
from .prompts import (
    build_clarifying_questions_prompt,
    build_research_prompt,
    build_story_prompt,
    build_title_prompt,
)

logger = logging.getLogger(__name__)

NUMBERED_POINT_PATTERN = re.compile(r"\d+\.")
TITLE_QUOTES_PATTERN = re.compile(r"['\"]")


class InputValidationError(ValueError):
    """Raised when a query or topic is too short to send to a provider."""


class PipelineError(RuntimeError):
    """Raised when a stage fails; the message carries the failing stage."""


# --- Data containers -------------------------------------------------------

@dataclass
class ResearchResult:
    success: bool
    text: str | None = None
    insights_count: int = 0
    word_count: int = 0
    error: str | None = None


@dataclass
class StoryResult:
    success: bool
    text: str | None = None
    title: str | None = None
    word_count: int = 0
    estimated_duration: int = 0
    error: str | None = None


@dataclass
class QuestionsResult:
    success: bool
    questions: str | None = None
    word_count: int = 0
    error: str | None = None


@dataclass
class BatchItemResult:
    index: int
    query: str
    record: StoryRecord | None
    error: str | None


@dataclass
class BatchRunResult:
    items: list[BatchItemResult]

    @property
    def successes(self) -> list[BatchItemResult]:
        return [item for item in self.items if item.error is None]

    @property
    def failures(self) -> list[BatchItemResult]:
        return [item for item in self.items if item.error is not None]


ResearcherFn = Callable[[str, Any], ResearchResult]
StorytellerFn = Callable[[str, str, Any], StoryResult]
QuestionerFn = Callable[[str, Any], QuestionsResult]


# --- Helpers --------------------------------------------------------------

@lru_cache(maxsize=4)
def build_research_client(api_key: str) -> Anthropic:
    """Create (and reuse) the Anthropic client for a given key."""
    return Anthropic(api_key=api_key)


@lru_cache(maxsize=4)
def build_story_client(api_key: str) -> OpenAI:
    """Create (and reuse) the OpenAI client for a given key."""
    return OpenAI(api_key=api_key)


def _require_key(value: str | None, env_name: str) -> str:
    if not value:
        raise RuntimeError(
            f"{env_name} is required. Set it in the environment or .env file."
        )
    return value


def research_client_from_settings(settings: Settings | None = None) -> Anthropic:
    settings = settings or get_settings()
    return build_research_client(
        _require_key(settings.anthropic_api_key, "ANTHROPIC_API_KEY")
    )


def story_client_from_settings(settings: Settings | None = None) -> OpenAI:
    settings = settings or get_settings()
    return build_story_client(_require_key(settings.openai_api_key, "OPENAI_API_KEY"))


def count_words(text: str) -> int:
    """Number of whitespace-delimited tokens."""
    return len(text.split())


def count_numbered_points(text: str) -> int:
    """
    Count "<digits>." markers as a rough proxy for numbered list items.

    Decimals and dates are counted too; this is a text metric, not a parse.
    """
    return len(NUMBERED_POINT_PATTERN.findall(text))


def estimate_duration_minutes(word_count: int, words_per_minute: int = 200) -> int:
    """Spoken length in whole minutes, rounding halves up (2500 words -> 13)."""
    return int(math.floor(word_count / words_per_minute + 0.5))


def clean_title(raw: str) -> str:
    return TITLE_QUOTES_PATTERN.sub("", raw).strip()


def validate_text_input(text: Any, min_length: int, *, noun: str = "question") -> str:
    """Return the text unchanged, or raise when its stripped length is too short."""
    if not isinstance(text, str) or len(text.strip()) < min_length:
        raise InputValidationError(
            f"Please provide a more detailed {noun} (at least {min_length} characters)"
        )
    return text


def _response_text_or_raise(response: object, *, step: str) -> str:
    """Extract Responses API text or raise a clear error when output is missing."""
    text = getattr(response, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text

    status = getattr(response, "status", None)
    if status == "incomplete":
        details = getattr(response, "incomplete_details", None)
        reason = getattr(details, "reason", None) if details else None
        hint = ""
        if reason == "max_output_tokens":
            hint = " Raise STORY_MAX_TOKENS or TITLE_MAX_TOKENS."
        raise RuntimeError(f"{step} response incomplete (reason={reason}).{hint}")

    err = getattr(response, "error", None)
    if err:
        raise RuntimeError(f"{step} response error: {err}")

    raise RuntimeError(f"{step} response missing output text.")


def _message_text_or_raise(response: object, *, step: str) -> str:
    """Return the first non-empty text block of a Messages API response."""
    for block in getattr(response, "content", None) or []:
        text = getattr(block, "text", None)
        if isinstance(text, str) and text.strip():
            return text
    stop_reason = getattr(response, "stop_reason", None)
    raise RuntimeError(
        f"{step} response missing output text (stop_reason={stop_reason})."
    )


def _complete(client: OpenAI, *, model: str, prompt: str, temperature: float,
              max_tokens: int, step: str) -> str:
    request_kwargs = {
        "model": model,
        "input": [{"role": "user", "content": prompt}],
        "temperature": temperature,
    }
    if max_tokens and max_tokens > 0:
        request_kwargs["max_output_tokens"] = max_tokens
    response = client.responses.create(**request_kwargs)
    return _response_text_or_raise(response, step=step)


# --- Stages ---------------------------------------------------------------


def conduct_research(query: str, client: Optional[Anthropic] = None) -> ResearchResult:
    """
    Build a research brief for the query with a single provider call.

    Never raises: any failure (including a missing API key) is reported as
    ``ResearchResult(success=False, error=...)``.
    """
    settings = get_settings()
    try:
        logger.info("Starting research for: %s", query)
        client = client or research_client_from_settings(settings)
        response = client.messages.create(
            model=settings.research_model,
            max_tokens=settings.research_max_tokens,
            temperature=settings.research_temperature,
            messages=[{"role": "user", "content": build_research_prompt(query)}],
        )
        research = _message_text_or_raise(response, step="Research")
    except Exception as exc:
        logger.exception("Research stage failed")
        return ResearchResult(success=False, error=str(exc))

    logger.info("Research completed, length: %d", len(research))
    return ResearchResult(
        success=True,
        text=research,
        insights_count=count_numbered_points(research),
        word_count=count_words(research),
    )


def generate_story(
    research: str, original_query: str, client: Optional[OpenAI] = None
) -> StoryResult:
    """
    Narrate the research brief, then title the narrative.

    Both calls must succeed; a title failure fails the whole stage so a story
    is never returned without its title.
    """
    settings = get_settings()
    try:
        logger.info("Generating story from research...")
        client = client or story_client_from_settings(settings)
        story = _complete(
            client,
            model=settings.story_model,
            prompt=build_story_prompt(research, original_query),
            temperature=settings.story_temperature,
            max_tokens=settings.story_max_tokens,
            step="Story",
        )
        logger.info("Story generated, length: %d", len(story))
        raw_title = _complete(
            client,
            model=settings.story_model,
            prompt=build_title_prompt(story, original_query),
            temperature=settings.title_temperature,
            max_tokens=settings.title_max_tokens,
            step="Title",
        )
    except Exception as exc:
        logger.exception("Story stage failed")
        return StoryResult(success=False, error=str(exc))

    word_count = count_words(story)
    return StoryResult(
        success=True,
        text=story,
        title=clean_title(raw_title),
        word_count=word_count,
        estimated_duration=estimate_duration_minutes(
            word_count, settings.words_per_minute
        ),
    )


def generate_questions(
    initial_topic: str, client: Optional[OpenAI] = None
) -> QuestionsResult:
    """Ask five clarifying questions about the topic in a conversational voice."""
    settings = get_settings()
    try:
        logger.info("Generating contextual questions for: %s", initial_topic)
        client = client or story_client_from_settings(settings)
        questions = _complete(
            client,
            model=settings.questions_model,
            prompt=build_clarifying_questions_prompt(initial_topic),
            temperature=settings.questions_temperature,
            max_tokens=settings.questions_max_tokens,
            step="Questions",
        )
    except Exception as exc:
        logger.exception("Question generation failed")
        return QuestionsResult(success=False, error=str(exc))

    logger.info("Dynamic questions generated, length: %d", len(questions))
    return QuestionsResult(
        success=True, questions=questions, word_count=count_words(questions)
    )


# --- Orchestration ----------------------------------------------------------


def run_pipeline(
    query: str,
    *,
    research_client: Optional[Anthropic] = None,
    story_client: Optional[OpenAI] = None,
    researcher: ResearcherFn | None = None,
    storyteller: StorytellerFn | None = None,
    min_length: int | None = None,
) -> StoryRecord:
    """
    Run research then story for one query and assemble the StoryRecord.

    Raises InputValidationError before any provider call when the query is
    too short, and PipelineError as soon as either stage fails.
    """
    settings = get_settings()
    threshold = settings.min_query_length if min_length is None else min_length
    validate_text_input(query, threshold, noun="question")

    researcher = researcher or conduct_research
    storyteller = storyteller or generate_story

    logger.info("Phase 1: Starting research...")
    research = researcher(query, research_client)
    if not research.success:
        raise PipelineError(f"Research failed: {research.error}")

    logger.info("Phase 2: Generating story...")
    story = storyteller(research.text, query, story_client)
    if not story.success:
        raise PipelineError(f"Story generation failed: {story.error}")

    created_at = datetime.now(timezone.utc)
    record = StoryRecord(
        id=str(int(created_at.timestamp() * 1000)),
        query=query,
        title=story.title,
        story=story.text,
        research=research.text,
        created_at=created_at,
        word_count=story.word_count,
        estimated_duration=story.estimated_duration,
        audio_url=None,
    )
    logger.info("Story generation completed successfully (id=%s)", record.id)
    return record


def run_questions(
    initial_topic: str,
    *,
    client: Optional[OpenAI] = None,
    questioner: QuestionerFn | None = None,
    min_length: int | None = None,
) -> str:
    """Validate the topic and return the clarifying questions text."""
    settings = get_settings()
    threshold = settings.min_topic_length if min_length is None else min_length
    validate_text_input(initial_topic, threshold, noun="topic")

    questioner = questioner or generate_questions
    result = questioner(initial_topic, client)
    if not result.success:
        raise PipelineError(f"Question generation failed: {result.error}")
    return result.questions


def run_pipeline_batch(
    queries: List[str],
    *,
    max_workers: int = 4,
) -> BatchRunResult:
    """
    Run several independent pipelines in parallel.

    Each query is processed on its own; failures are captured alongside
    successes instead of aborting the batch.
    """
    if max_workers < 1:
        raise ValueError("max_workers must be >= 1.")
    if not queries:
        return BatchRunResult(items=[])

    worker_count = min(max_workers, len(queries))
    outcomes: list[BatchItemResult | None] = [None] * len(queries)

    with ThreadPoolExecutor(max_workers=worker_count) as executor:
        future_map = {
            executor.submit(run_pipeline, query): idx
            for idx, query in enumerate(queries)
        }
        for future in as_completed(future_map):
            idx = future_map[future]
            query = queries[idx]
            try:
                outcomes[idx] = BatchItemResult(
                    index=idx, query=query, record=future.result(), error=None
                )
            except Exception as exc:
                outcomes[idx] = BatchItemResult(
                    index=idx, query=query, record=None, error=str(exc)
                )

    return BatchRunResult(items=[item for item in outcomes if item is not None])
