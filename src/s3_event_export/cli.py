from __future__ import annotations

import asyncio
import gzip
import io
import json
import sys
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from loguru import logger

from .coordinator import DeadLetterQueue, ExportCoordinator
from .delivery import build_s3_client
from .errors import ConfigurationError
from .settings import ExportSettings, load_settings

app = typer.Typer(help="s3-export: batch events to S3 as NDJSON")


def env_file_opt() -> Optional[Path]:
    return typer.Option(None, "--env-file", help="Read S3_EXPORT_* settings from this file")


def _settings_or_exit(env_file: Optional[Path]) -> ExportSettings:
    try:
        if env_file is not None:
            return load_settings(_env_file=env_file)
        return load_settings()
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(code=1)


def iter_ndjson(path: str) -> Iterator[dict[str, Any]]:
    """Yield one object per non-blank line from a file, a .gz file or stdin ('-').

    Lines holding anything but a JSON object are skipped with a warning.
    """
    if path == "-":
        fh = io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8")
    elif path.endswith(".gz"):
        fh = gzip.open(path, "rt", encoding="utf-8")
    else:
        fh = open(path, "r", encoding="utf-8")
    try:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            obj = json.loads(line)
            if not isinstance(obj, dict):
                logger.warning(
                    f"Skipping line {lineno} of {path}: expected a JSON object, got {type(obj).__name__}"
                )
                continue
            yield obj
    finally:
        if path != "-":
            fh.close()


@app.command("check-config")
def check_config(env_file: Optional[Path] = env_file_opt()):
    """Validate settings and print them with credentials masked."""
    settings = _settings_or_exit(env_file)
    typer.echo(json.dumps(settings.redacted(), indent=2, default=str))
    logger.success("Configuration OK")


@app.command("export-ndjson")
def export_ndjson(
    path: str = typer.Argument(..., help="File path or '-' for stdin (.gz ok)"),
    env_file: Optional[Path] = env_file_opt(),
):
    """Stream NDJSON events through the buffer into S3."""
    settings = _settings_or_exit(env_file)
    accepted, ignored = asyncio.run(_export_ndjson(settings, path))
    typer.echo(json.dumps({"accepted": accepted, "ignored": ignored}, indent=2))


async def _export_ndjson(settings: ExportSettings, path: str) -> tuple[int, int]:
    accepted = ignored = 0
    async with ExportCoordinator.from_settings(settings, s3=build_s3_client(settings)) as coord:
        for obj in iter_ndjson(path):
            if await coord.accept(obj):
                accepted += 1
            else:
                ignored += 1
    # flushed on exit
    return accepted, ignored


@app.command("replay-dlq")
def replay_dlq(
    path: Path = typer.Argument(..., help="Dead letter file written by the exporter"),
    max_records: int = typer.Option(1000, "--max-records"),
    env_file: Optional[Path] = env_file_opt(),
):
    """Re-export dead-lettered batches with a fresh retry budget."""
    settings = _settings_or_exit(env_file)
    if not path.exists():
        logger.error(f"Dead letter file not found: {path}")
        raise typer.Exit(code=1)
    results = asyncio.run(_replay_dlq(settings, path, max_records))
    typer.echo(json.dumps({"replayed": len(results), "results": results}, indent=2))


async def _replay_dlq(settings: ExportSettings, path: Path, max_records: int) -> list[str]:
    records = await DeadLetterQueue(path, mkdirs=False).replay(max_records)
    logger.info(f"Replaying {len(records)} dead-lettered batch(es) from {path}")
    async with ExportCoordinator.from_settings(settings, s3=build_s3_client(settings)) as coord:
        tasks = [await coord.submit_batch(record.events) for record in records]
        done = await asyncio.gather(*tasks)
    return [result.value for result in done]


def main() -> None:
    app()


if __name__ == "__main__":
    main()
