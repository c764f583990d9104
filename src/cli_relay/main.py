"""CLI entrypoint for cli-relay."""

import logging
from pathlib import Path

import rich_click as click

from cli_relay import __version__
from cli_relay.chunks import InvalidChunkIndexError
from cli_relay.controllers import (
    AskCommand,
    CacheCommand,
    FetchChunkCommand,
    RelayCliController,
)
from cli_relay.execution import ExecutionError

click.rich_click.USE_MARKDOWN = True
RELAY_CONTROLLER = RelayCliController()

_CACHE_DIR_OPTION = click.option(
    "--cache-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Chunk cache directory. Defaults to CLI_RELAY_CACHE_DIR or the temp dir.",
)


@click.group()
@click.version_option(version=__version__, prog_name="cli-relay")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def cli_relay(verbose: bool) -> None:
    """Relay prompts to an external analysis CLI and page through large answers."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli_relay.command("ask")
@click.argument("prompt")
@click.option("--model", "-m", default=None, help="Primary model. Defaults to CLI_RELAY_PRIMARY_MODEL.")
@click.option(
    "--fallback-model",
    default=None,
    help="Model used once when the primary model runs out of quota.",
)
@click.option("--sandbox", "-s", is_flag=True, default=False, help="Run the engine in sandbox mode.")
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Kill the engine after this many seconds (0 disables).",
)
@click.option(
    "--working-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Base directory for relative @file references.",
)
@_CACHE_DIR_OPTION
def ask(  # noqa: PLR0913
    prompt: str,
    model: str | None,
    fallback_model: str | None,
    sandbox: bool,
    timeout_seconds: float | None,
    working_dir: Path | None,
    cache_dir: Path | None,
) -> None:
    """Send one prompt to the engine; large answers are split into cached chunks."""

    lines = RELAY_CONTROLLER.ask(
        AskCommand(
            prompt=prompt,
            model=model,
            fallback_model=fallback_model,
            sandbox=sandbox,
            timeout_seconds=timeout_seconds,
            working_dir=working_dir,
            cache_dir=cache_dir,
        ),
    )
    try:
        _emit_lines(lines)
    except ExecutionError as error:
        raise click.ClickException(str(error)) from error
    except ValueError as error:
        raise click.UsageError(str(error)) from error


@cli_relay.command("fetch-chunk")
@click.option("--cache-key", required=True, help="Cache key returned with the first chunk.")
@click.option(
    "--chunk-index",
    type=int,
    required=True,
    help="1-based index of the chunk to return.",
)
@_CACHE_DIR_OPTION
def fetch_chunk(cache_key: str, chunk_index: int, cache_dir: Path | None) -> None:
    """Return one chunk of a previously cached response."""

    try:
        result = RELAY_CONTROLLER.fetch_chunk(
            FetchChunkCommand(cache_key=cache_key, chunk_index=chunk_index, cache_dir=cache_dir),
        )
    except InvalidChunkIndexError as error:
        raise click.BadParameter(str(error), param_hint="--chunk-index") from error
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Chunk not found or expired.")


@cli_relay.group()
def cache() -> None:
    """Chunk cache maintenance."""


@cache.command("stats")
@_CACHE_DIR_OPTION
def cache_stats(cache_dir: Path | None) -> None:
    """Show chunk cache occupancy and limits."""

    try:
        lines = RELAY_CONTROLLER.cache_stats(CacheCommand(cache_dir=cache_dir))
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    _emit_lines(lines)


@cache.command("clear")
@_CACHE_DIR_OPTION
def cache_clear(cache_dir: Path | None) -> None:
    """Delete every cached chunk sequence."""

    try:
        lines = RELAY_CONTROLLER.cache_clear(CacheCommand(cache_dir=cache_dir))
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    cli_relay()
