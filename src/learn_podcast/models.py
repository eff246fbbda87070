"""Data models for the learn-podcast pipeline."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class StoryRecord(BaseModel):
    """Final result of one research -> story run, returned to the caller."""

    id: str = Field(..., description="Time-derived identifier; best-effort unique.")
    query: str
    title: str
    story: str
    research: str
    created_at: datetime
    word_count: int
    estimated_duration: int = Field(
        ..., description="Estimated narration length in whole minutes."
    )
    audio_url: Optional[str] = Field(
        None, description="Always null; audio synthesis is not available yet."
    )


class StoryResponse(BaseModel):
    """Success envelope for /generate-story."""

    success: bool = True
    story: StoryRecord
    processing_time: str
    message: str


class QuestionsResponse(BaseModel):
    """Success envelope for /generate-questions."""

    success: bool = True
    questions: str
    message: str
