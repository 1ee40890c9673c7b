"""Command line interface for the Data Center adapter.

Provides commands to:
- Print, validate and export the merged configuration
- Show how a hosted REST path maps onto Data Center
- Detect the format of a content file
- Convert a rich-document JSON file to wiki markup
- Probe a live instance for its API version
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .config import AdapterConfig, export_config_schema, load_config
from .content_converter import ContentConverter
from .endpoint_mapper import EndpointMapper
from .logging_utils import setup_logging
from .transport import Transport
from .types import ConversionOptions
from .version_negotiator import VersionNegotiator

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help="Jira Data Center adaptation layer", no_args_is_help=True)
config_app = typer.Typer(help="Configuration inspection and validation", no_args_is_help=True)
app.add_typer(config_app, name="config")

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Config file path (YAML/JSON)")


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Log level for adapter events (overrides logging.level)"
    ),
    json_logs: Optional[bool] = typer.Option(
        None, "--json-logs/--plain-logs", help="JSON log lines on stderr (overrides logging.json)"
    ),
) -> None:
    """Jira Data Center adaptation layer."""
    ctx.obj = {"log_level": log_level, "json_logs": json_logs}
    setup_logging(level=log_level or "WARNING", json_format=bool(json_logs))


def _apply_logging(ctx: typer.Context, cfg: AdapterConfig) -> None:
    """Re-apply logging from the loaded config; command line flags win."""
    flags = ctx.obj or {}
    json_logs = flags.get("json_logs")
    setup_logging(
        level=flags.get("log_level") or cfg.logging.level,
        json_format=cfg.logging.json_format if json_logs is None else json_logs,
    )


# ────────────────────────────────────────────────────────────────────────────────
# config
# ────────────────────────────────────────────────────────────────────────────────


@config_app.command("print")
def cmd_config_print(ctx: typer.Context, config_file: Optional[Path] = _CONFIG_OPTION) -> None:
    """
    Print merged configuration after precedence application.

    Shows the final configuration after file → environment precedence. The token is
    masked.

    Example:
        jiradc-adapter config print -c adapter.yaml
    """
    try:
        cfg = load_config(str(config_file) if config_file else None)
    except Exception as e:
        typer.secho(f"❌ Error loading config: {e}", fg="red", err=True)
        raise typer.Exit(1)
    _apply_logging(ctx, cfg)
    typer.echo(json.dumps(cfg.model_dump(mode="json"), indent=2))


@config_app.command("validate")
def cmd_config_validate(ctx: typer.Context, config_file: Optional[Path] = _CONFIG_OPTION) -> None:
    """
    Validate configuration.

    Exit code 0 if valid, 1 if invalid. Advisory warnings are listed but do not fail.

    Example:
        jiradc-adapter config validate -c adapter.yaml
    """
    try:
        cfg = load_config(str(config_file) if config_file else None)
    except Exception as e:
        typer.secho("❌ Config validation failed:", fg="red", err=True)
        typer.secho(f"   {e}", fg="red", err=True)
        raise typer.Exit(1)
    _apply_logging(ctx, cfg)
    typer.secho("✅ Config is valid", fg="green")
    typer.echo(f"   Base URL: {cfg.http.root_url}")
    typer.echo(f"   Config hash: {cfg.config_hash()[:16]}...")
    for warning in cfg.warnings():
        typer.secho(f"   ⚠ {warning}", fg="yellow")


@config_app.command("schema")
def cmd_config_schema(
    output_file: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the JSON Schema here instead of stdout"
    ),
) -> None:
    """Export the configuration JSON Schema for IDE/tooling integration."""
    schema = json.dumps(export_config_schema(), indent=2)
    if output_file is None:
        typer.echo(schema)
        return
    try:
        output_file.write_text(schema + "\n", encoding="utf-8")
    except OSError as e:
        typer.secho(f"❌ Error exporting schema: {e}", fg="red", err=True)
        raise typer.Exit(1)
    typer.secho(f"✅ Schema exported to {output_file}", fg="green")


# ────────────────────────────────────────────────────────────────────────────────
# Mapping and content
# ────────────────────────────────────────────────────────────────────────────────


def _parse_pairs(pairs: List[str], option: str) -> Dict[str, str]:
    parsed: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got {pair!r}", param_hint=option)
        parsed[key] = value
    return parsed


@app.command("map")
def cmd_map(
    path: str = typer.Argument(..., help="Hosted REST path, e.g. /rest/api/3/myself"),
    version: str = typer.Option("latest", "--version", "-v", help="Negotiated API version"),
    param: Optional[List[str]] = typer.Option(
        None, "--param", "-p", help="Path parameter key=value"
    ),
    query: Optional[List[str]] = typer.Option(
        None, "--query", "-q", help="Query parameter key=value"
    ),
) -> None:
    """
    Show the Data Center mapping for a hosted REST path.

    Exit code 1 when the endpoint has no Data Center equivalent.

    Example:
        jiradc-adapter map /rest/api/3/issue/{issueIdOrKey} -p issueIdOrKey=PRJ-1
    """
    mapper = EndpointMapper(version=version)
    path_params = _parse_pairs(param or [], "--param")
    query_params = _parse_pairs(query or [], "--query")
    result = mapper.map(path, path_params, query_params, version=version)
    typer.echo(
        json.dumps(
            {
                "supported": result.supported,
                "source_path": result.source_path,
                "target_path": result.target_path,
                "transformed_params": dict(result.transformed_params),
                "deprecated": result.deprecated,
                "generic": result.generic,
                "warnings": list(result.warnings),
            },
            indent=2,
        )
    )
    if not result.supported:
        raise typer.Exit(1)


def _read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    try:
        return Path(source).read_text(encoding="utf-8")
    except OSError as e:
        typer.secho(f"❌ Cannot read {source}: {e}", fg="red", err=True)
        raise typer.Exit(1)


@app.command("detect-format")
def cmd_detect_format(
    source: str = typer.Argument("-", help="File to inspect, '-' for stdin"),
) -> None:
    """Report whether content is a rich document, wiki markup, HTML or plain text."""
    detection = ContentConverter().detect_format(_read_input(source))
    typer.echo(
        json.dumps(
            {
                "format": detection.format,
                "confidence": detection.confidence,
                "indicators": list(detection.indicators),
            },
            indent=2,
        )
    )


@app.command("convert")
def cmd_convert(
    source: str = typer.Argument("-", help="Rich-document JSON file, '-' for stdin"),
    max_depth: int = typer.Option(10, "--max-depth", help="Flatten subtrees deeper than this"),
    mark_unsupported: bool = typer.Option(
        False, "--mark-unsupported", help="Annotate unsupported nodes in the output"
    ),
) -> None:
    """
    Convert a rich document to wiki markup.

    The markup goes to stdout; conversion warnings go to stderr.
    """
    text = _read_input(source)
    document: Any
    try:
        document = json.loads(text)
    except ValueError:
        document = text
    converter = ContentConverter(
        ConversionOptions(max_depth=max_depth, include_unsupported_as_comment=mark_unsupported)
    )
    result = converter.to_markup(document)
    typer.echo(result.content)
    for warning in result.warnings:
        typer.secho(f"⚠ {warning}", fg="yellow", err=True)
    if result.fallback_used:
        typer.secho("⚠ Output degraded to plain text in places", fg="yellow", err=True)


# ────────────────────────────────────────────────────────────────────────────────
# Live instance
# ────────────────────────────────────────────────────────────────────────────────


@app.command("probe")
def cmd_probe(ctx: typer.Context, config_file: Optional[Path] = _CONFIG_OPTION) -> None:
    """
    Probe the configured instance for its API version.

    Exit code 1 when every candidate probe fails.

    Example:
        jiradc-adapter probe -c adapter.yaml
    """
    try:
        cfg = load_config(str(config_file) if config_file else None)
    except Exception as e:
        typer.secho(f"❌ Error loading config: {e}", fg="red", err=True)
        raise typer.Exit(1)
    _apply_logging(ctx, cfg)

    with Transport(cfg.http) as transport:
        negotiator = VersionNegotiator(
            transport,
            candidates=cfg.version.candidates,
            fallback_version=cfg.version.preferred,
            probe_timeout_s=cfg.version.probe_timeout_s,
        )
        detection = negotiator.detect()

    for probe in detection.probes:
        marker = "✅" if probe.success else "❌"
        detail = f"HTTP {probe.status}" if probe.success else probe.error
        typer.echo(f"{marker} {probe.endpoint} ({probe.elapsed_ms:.0f} ms) {detail}")
        if probe.hint and probe.hint != probe.error:
            typer.secho(f"   {probe.hint}", fg="yellow", err=True)
    typer.echo(f"API version: {detection.version_id} (confidence {detection.confidence})")
    for warning in detection.warnings:
        typer.secho(f"⚠ {warning}", fg="yellow", err=True)
    if detection.confidence == "low":
        raise typer.Exit(1)


__all__ = ["app"]
