"""FastAPI boundary for the story pipeline and the clarifying-questions flow."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .config import configure_logging, get_settings
from .models import QuestionsResponse, StoryRecord, StoryResponse
from .workflow import InputValidationError, validate_text_input

logger = logging.getLogger(__name__)

STORY_PATH = "/generate-story"
QUESTIONS_PATH = "/generate-questions"
REJECTED_METHODS = ["GET", "PUT", "PATCH", "DELETE"]

configure_logging()
app = FastAPI(title="Learn Podcast")


def _add_cors(app: FastAPI) -> None:
    """Allow the mobile/web client to call the API from any origin by default."""
    allow_all = os.getenv("CORS_ALLOW_ALL", "true").lower() == "true"
    origins_env = os.getenv("CORS_ALLOW_ORIGINS", "")
    origins = [o.strip() for o in origins_env.split(",") if o.strip()]
    allow_credentials = (
        os.getenv("CORS_ALLOW_CREDENTIALS", "false").lower() == "true"
    )
    if allow_all or not origins:
        origins = ["*"]
    if origins == ["*"] and allow_credentials:
        # Starlette/FastAPI disallow wildcard origins when credentials are enabled.
        allow_credentials = False
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


_add_cors(app)


def _error(status_code: int, error: str, message: str | None = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": error}
    if message:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(RequestValidationError)
async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, "Request body must be a JSON object.")


def _run_story_pipeline(query: str) -> StoryRecord:
    """Lazy import wrapper so tests can swap the pipeline out."""
    from .workflow import run_pipeline

    return run_pipeline(query)


def _run_questions(topic: str) -> str:
    from .workflow import run_questions

    return run_questions(topic)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.options(STORY_PATH)
@app.options(QUESTIONS_PATH)
def preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK)


@app.api_route(STORY_PATH, methods=REJECTED_METHODS)
@app.api_route(QUESTIONS_PATH, methods=REJECTED_METHODS)
def method_not_allowed() -> JSONResponse:
    return _error(status.HTTP_405_METHOD_NOT_ALLOWED, "Method not allowed")


@app.post(STORY_PATH)
def generate_story(payload: Optional[Dict[str, Any]] = Body(None)) -> JSONResponse:
    """
    Research -> story for one query.

    Short queries are rejected with 400 before any provider call; any stage
    failure maps to 500 with the stage-prefixed error.
    """
    settings = get_settings()
    query = (payload or {}).get("query")
    try:
        validate_text_input(query, settings.min_query_length, noun="question")
    except InputValidationError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    logger.info("Processing request for: %s", query)
    started = time.perf_counter()
    try:
        record = _run_story_pipeline(query)
    except InputValidationError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))
    except Exception as exc:
        logger.error("Story generation error: %s", exc)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            str(exc),
            message="Failed to generate story. Please try again.",
        )
    elapsed = time.perf_counter() - started

    body = StoryResponse(
        story=record,
        processing_time=f"{elapsed:.2f}s",
        message="Story generated successfully!",
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))


@app.post(QUESTIONS_PATH)
def generate_questions(payload: Optional[Dict[str, Any]] = Body(None)) -> JSONResponse:
    settings = get_settings()
    topic = (payload or {}).get("topic")
    try:
        validate_text_input(topic, settings.min_topic_length, noun="topic")
    except InputValidationError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    logger.info("Processing question generation for: %s", topic)
    try:
        questions = _run_questions(topic)
    except InputValidationError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))
    except Exception as exc:
        logger.error("Question generation error: %s", exc)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            str(exc),
            message="Failed to generate questions. Please try again.",
        )

    body = QuestionsResponse(
        questions=questions,
        message="Clarifying questions generated successfully!",
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "learn_podcast.server:app",
        host=os.getenv("LEARN_PODCAST_HOST", "0.0.0.0"),
        port=int(os.getenv("LEARN_PODCAST_PORT", "8000")),
        reload=os.getenv("LEARN_PODCAST_RELOAD", "false").lower() == "true",
    )
