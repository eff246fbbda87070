"""Command-line entry points for the learn-podcast pipeline."""

import json
import dataclasses
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Any, List

import typer
from pydantic import BaseModel
from rich import print as rprint

from .config import configure_logging
from .models import StoryRecord
from .workflow import (
    InputValidationError,
    PipelineError,
    conduct_research,
    run_pipeline,
    run_pipeline_batch,
    run_questions,
)

app = typer.Typer(
    help="Research a learning topic and narrate it as a podcast-style story."
)


@app.callback()
def main_callback(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level."),
):
    configure_logging(log_level)


def _to_plain(value: Any) -> Any:
    """
    Convert pydantic models, dataclasses, Paths, and date-like objects into
    JSON-serializable primitives.
    """
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value):
        return _to_plain(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_plain(item) for item in value]
    return value


def format_story_markdown(record: StoryRecord) -> str:
    return (
        f"# {record.title}\n\n"
        f"_{record.word_count} words, about {record.estimated_duration} min_\n\n"
        f"{record.story.strip()}\n"
    )


def _write_output(out_path: Path, markdown: str, json_payload: dict) -> None:
    suffix = out_path.suffix.lower()
    if suffix == ".json":
        out_path.write_text(
            json.dumps(json_payload, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
    else:
        out_path.write_text(markdown, encoding="utf-8")


def _batch_output_path(outdir: Path, record: StoryRecord, index: int, fmt: str) -> Path:
    suffix = ".json" if fmt == "json" else ".md"
    return outdir / f"{index:03d}-{record.id}{suffix}"


def _load_queries(path: Path) -> List[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip()]


@app.command("story")
def story_command(
    query: str = typer.Argument(..., help="What you want to learn about."),
    out: Optional[Path] = typer.Option(
        None,
        "--out",
        "-o",
        help="Optional path to write output (.md or .json). Defaults to stdout (Markdown).",
    ),
):
    """Run research -> story for one query."""
    try:
        record = run_pipeline(query)
    except InputValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except PipelineError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    markdown = format_story_markdown(record)
    if out:
        _write_output(out, markdown, _to_plain(record))
        rprint(f"[cyan]Wrote output to {out}[/cyan]")
    else:
        rprint(markdown)


@app.command("research")
def research_command(
    query: str = typer.Argument(..., help="Topic to research."),
):
    """Run only the research stage and print the brief."""
    result = conduct_research(query)
    if not result.success:
        rprint(f"[red]Research failed: {result.error}[/red]")
        raise typer.Exit(code=1)
    rprint(result.text)
    rprint(
        f"[cyan]{result.word_count} words, {result.insights_count} numbered points[/cyan]"
    )


@app.command("questions")
def questions_command(
    topic: str = typer.Argument(..., help="Initial topic to ask about."),
):
    """Print five clarifying questions for an initial topic."""
    try:
        questions = run_questions(topic)
    except InputValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except PipelineError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    rprint(questions)


@app.command("batch")
def batch_command(
    queries_file: Path = typer.Argument(
        ..., help="Text file with one query per line."
    ),
    outdir: Optional[Path] = typer.Option(
        None,
        "--outdir",
        "-o",
        help="Optional directory to write per-query outputs (.md or .json).",
    ),
    output_format: str = typer.Option(
        "md",
        "--format",
        "-f",
        help="Output format when writing files: md or json.",
        case_sensitive=False,
    ),
    concurrency: int = typer.Option(
        4,
        "--concurrency",
        "-c",
        help="Number of queries to process in parallel.",
    ),
):
    """
    Run several queries through the pipeline in parallel.
    """
    if concurrency < 1:
        raise typer.BadParameter("concurrency must be >= 1.")

    fmt = output_format.lower()
    if fmt not in {"md", "json"}:
        raise typer.BadParameter("format must be 'md' or 'json'.")

    queries = _load_queries(queries_file)
    if not queries:
        raise typer.BadParameter("No queries found.")

    if outdir:
        outdir.mkdir(parents=True, exist_ok=True)

    batch = run_pipeline_batch(queries, max_workers=concurrency)

    for item in batch.items:
        if item.error:
            rprint(f"[red]Failed {item.query!r}: {item.error}[/red]")
            continue
        markdown = format_story_markdown(item.record)
        if outdir:
            out_path = _batch_output_path(outdir, item.record, item.index, fmt)
            _write_output(out_path, markdown, _to_plain(item.record))
            rprint(f"[cyan]Wrote output to {out_path}[/cyan]")
        else:
            rprint(f"[cyan]--- {item.query} ---[/cyan]")
            rprint(markdown)

    rprint(
        f"[cyan]Batch complete: {len(batch.successes)} succeeded, "
        f"{len(batch.failures)} failed.[/cyan]"
    )
    if batch.failures:
        raise typer.Exit(code=1)


def main():
    app()


if __name__ == "__main__":
    main()
