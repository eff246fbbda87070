import pytest

from learn_podcast import workflow
from learn_podcast.workflow import (
    InputValidationError,
    PipelineError,
    ResearchResult,
    StoryResult,
    QuestionsResult,
    clean_title,
    conduct_research,
    count_numbered_points,
    count_words,
    estimate_duration_minutes,
    generate_questions,
    generate_story,
    run_pipeline,
    run_pipeline_batch,
    run_questions,
)
from tests.fakes import FakeAnthropic, FakeOpenAI

BLACK_HOLES = (
    "Explain how black holes form and why they are invisible, with historical context"
)


def test_count_words_uses_whitespace_tokens():
    assert count_words("1. Fact one.  2. Fact two.\nMore\tfacts") == 8
    assert count_words("") == 0
    assert count_words("   \n ") == 0


def test_count_numbered_points_is_a_text_heuristic():
    assert count_numbered_points("1. Fact one. 2. Fact two.") == 2
    # Decimals count as well; the metric is deliberately crude.
    assert count_numbered_points("Pi is 3.14 and e is 2.71") == 2
    assert count_numbered_points("no numbers here") == 0


@pytest.mark.parametrize(
    "words, minutes",
    [(0, 0), (99, 0), (100, 1), (300, 2), (2500, 13), (2800, 14), (3000, 15)],
)
def test_estimate_duration_rounds_half_up(words, minutes):
    assert estimate_duration_minutes(words) == minutes


def test_clean_title_strips_all_quotes():
    assert clean_title('"The Invisible Giants"') == "The Invisible Giants"
    assert clean_title("'Einstein's Dream'\n") == "Einsteins Dream"


def test_conduct_research_reports_metrics():
    client = FakeAnthropic(text="Brief:\n1. Fact one.\n2. Fact two.")

    result = conduct_research(BLACK_HOLES, client)

    assert result.success is True
    assert result.text.startswith("Brief:")
    assert result.insights_count == 2
    assert result.word_count == 7
    call = client.messages.calls[0]
    assert call["temperature"] == 0.7
    assert call["max_tokens"] == 4000
    assert BLACK_HOLES in call["messages"][0]["content"]


def test_conduct_research_catches_provider_errors():
    client = FakeAnthropic(exc=RuntimeError("quota exceeded"))

    result = conduct_research(BLACK_HOLES, client)

    assert result.success is False
    assert result.error == "quota exceeded"
    assert result.text is None


def test_conduct_research_treats_empty_content_as_failure():
    result = conduct_research(BLACK_HOLES, FakeAnthropic(text=None))

    assert result.success is False
    assert "missing output text" in result.error


def test_conduct_research_without_key_fails_cleanly(monkeypatch, tmp_path):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)  # no .env here

    result = conduct_research(BLACK_HOLES)

    assert result.success is False
    assert "ANTHROPIC_API_KEY is required" in result.error


def test_generate_story_titles_and_measures():
    story_text = " ".join(["word"] * 2500)
    client = FakeOpenAI(story_text, '"The Invisible Giants"')

    result = generate_story("1. Fact one.", BLACK_HOLES, client)

    assert result.success is True
    assert result.title == "The Invisible Giants"
    assert result.word_count == 2500
    assert result.estimated_duration == 13
    story_call, title_call = client.responses.calls
    assert story_call["temperature"] == 0.8
    assert story_call["max_output_tokens"] == 4000
    assert "1. Fact one." in story_call["input"][0]["content"]
    assert title_call["temperature"] == 0.9
    assert title_call["max_output_tokens"] == 100
    assert story_text[:500] in title_call["input"][0]["content"]
    assert story_text[:501] not in title_call["input"][0]["content"]


def test_generate_story_fails_when_title_call_fails():
    client = FakeOpenAI("A long story.", RuntimeError("title timeout"))

    result = generate_story("research", BLACK_HOLES, client)

    assert result.success is False
    assert result.error == "title timeout"
    assert result.text is None
    assert result.title is None
    assert len(client.responses.calls) == 2


def test_generate_story_fails_on_empty_story():
    client = FakeOpenAI("   ")

    result = generate_story("research", BLACK_HOLES, client)

    assert result.success is False
    assert "Story response missing output text" in result.error
    assert len(client.responses.calls) == 1


def test_run_pipeline_end_to_end_with_fake_clients():
    research_client = FakeAnthropic(text="...1. Fact one. 2. Fact two...")
    story_client = FakeOpenAI(" ".join(["word"] * 2800), '"The Invisible Giants"')

    record = run_pipeline(
        BLACK_HOLES, research_client=research_client, story_client=story_client
    )

    assert record.query == BLACK_HOLES
    assert record.title == "The Invisible Giants"
    assert record.word_count == 2800
    assert record.estimated_duration == 14
    assert record.audio_url is None
    assert record.research == "...1. Fact one. 2. Fact two..."
    assert record.id.isdigit()
    assert record.created_at.tzinfo is not None


def test_run_pipeline_rejects_short_query_before_any_stage():
    calls = []

    def fake_research(query, client):
        calls.append("research")
        return ResearchResult(success=True, text="x")

    def fake_story(research, query, client):
        calls.append("story")
        return StoryResult(success=True, text="x", title="t")

    with pytest.raises(InputValidationError, match="at least 10 characters"):
        run_pipeline("   short  ", researcher=fake_research, storyteller=fake_story)
    assert calls == []


def test_run_pipeline_stops_after_research_failure():
    story_calls = []

    def fake_research(query, client):
        return ResearchResult(success=False, error="invalid x-api-key")

    def fake_story(research, query, client):
        story_calls.append(research)
        return StoryResult(success=True, text="x", title="t")

    with pytest.raises(PipelineError) as excinfo:
        run_pipeline(BLACK_HOLES, researcher=fake_research, storyteller=fake_story)

    assert str(excinfo.value) == "Research failed: invalid x-api-key"
    assert story_calls == []


def test_run_pipeline_wraps_story_failure():
    def fake_research(query, client):
        return ResearchResult(success=True, text="brief", word_count=1)

    def fake_story(research, query, client):
        assert research == "brief"
        assert query == BLACK_HOLES
        return StoryResult(success=False, error="title timeout")

    with pytest.raises(PipelineError, match="^Story generation failed: title timeout$"):
        run_pipeline(BLACK_HOLES, researcher=fake_research, storyteller=fake_story)


def test_generate_questions_uses_topic_prompt():
    client = FakeOpenAI("Great topic! 1. Which era? 2. How deep?")

    result = generate_questions(BLACK_HOLES, client)

    assert result.success is True
    assert result.questions.startswith("Great topic!")
    assert result.word_count == 8
    call = client.responses.calls[0]
    assert call["max_output_tokens"] == 800
    assert BLACK_HOLES in call["input"][0]["content"]


def test_run_questions_validates_and_wraps_errors():
    with pytest.raises(InputValidationError, match="topic \\(at least 20 characters\\)"):
        run_questions("black holes please")

    def failing(topic, client):
        return QuestionsResult(success=False, error="rate limited")

    with pytest.raises(PipelineError, match="^Question generation failed: rate limited$"):
        run_questions(BLACK_HOLES, questioner=failing)


def test_run_pipeline_batch_collects_errors(monkeypatch):
    good = run_pipeline(
        BLACK_HOLES,
        researcher=lambda q, c: ResearchResult(success=True, text="brief"),
        storyteller=lambda r, q, c: StoryResult(
            success=True, text="story", title="Title", word_count=1
        ),
    )

    def fake_run(query):
        if query == "bad query here":
            raise PipelineError("Research failed: boom")
        return good

    monkeypatch.setattr(workflow, "run_pipeline", fake_run)

    batch = run_pipeline_batch([BLACK_HOLES, "bad query here"], max_workers=2)

    assert [item.index for item in batch.items] == [0, 1]
    assert batch.items[0].record is good
    assert batch.items[1].error == "Research failed: boom"
    assert len(batch.successes) == 1
    assert len(batch.failures) == 1


def test_run_pipeline_batch_rejects_zero_workers():
    with pytest.raises(ValueError):
        run_pipeline_batch([BLACK_HOLES], max_workers=0)
