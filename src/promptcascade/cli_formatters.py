# src/promptcascade/cli_formatters.py
"""CLI event formatter factories for cascade output.

Each factory returns a dict mapping event types to handler callables,
suitable for subscribing to an EventBus.
"""

from __future__ import annotations

import dataclasses
import json
import re
from collections.abc import Callable
from typing import Any

import typer

from promptcascade.contracts.events import (
    CASCADE_EVENT_TYPES,
    ActionExecuted,
    CascadeFinished,
    CascadeStarted,
    DepthLimitHit,
    LevelStarted,
    NodeCompleted,
    NodeFailed,
    NodeRateLimited,
    NodeRetrying,
    NodeSkipped,
    NodeStarted,
    PreflightWarning,
)
from promptcascade.core.events import EventBusProtocol


def create_console_formatters() -> dict[type, Callable[..., None]]:
    """Create console formatters for human-readable CLI output."""

    def _format_cascade_started(event: CascadeStarted) -> None:
        typer.echo(f"[CASCADE] {event.total_runnable} prompt(s) across {event.total_levels} level(s)")

    def _format_level_started(event: LevelStarted) -> None:
        typer.echo(f"[LEVEL {event.level}] {event.node_count} prompt(s)")

    def _format_node_started(event: NodeStarted) -> None:
        indent = "  " * (event.depth + 1)
        typer.echo(f"{indent}→ {event.node_name}")

    def _format_node_completed(event: NodeCompleted) -> None:
        indent = "  " * (event.depth + 1)
        progress = f" ({event.nodes_completed}/{event.total_runnable})" if event.depth == 0 else ""
        typer.echo(f"{indent}✓ {event.node_name}: {event.response_length} chars{progress}")

    def _format_node_retrying(event: NodeRetrying) -> None:
        typer.echo(f"    ↻ attempt {event.attempt}/{event.max_attempts} failed: {event.error}", err=True)

    def _format_node_rate_limited(event: NodeRateLimited) -> None:
        typer.echo(
            f"    ⏳ rate limited, waiting {event.wait_seconds:.1f}s ({event.wait_number}/{event.max_waits})",
            err=True,
        )

    def _format_node_skipped(event: NodeSkipped) -> None:
        detail = f": {event.message}" if event.message else ""
        typer.echo(f"  ⤼ {event.node_name} skipped ({event.reason.value}){detail}")

    def _format_node_failed(event: NodeFailed) -> None:
        decision = f" [{event.decision.value}]" if event.decision else ""
        typer.echo(f"  ✗ {event.node_name}{decision}: {event.error}", err=True)

    def _format_preflight(event: PreflightWarning) -> None:
        typer.secho(f"⚠ {event.message}", fg=typer.colors.YELLOW, err=True)

    def _format_action(event: ActionExecuted) -> None:
        detail = f": {event.message}" if event.message else ""
        typer.echo(f"    ⚙ {event.action_id} {event.status.value}{detail}")

    def _format_depth_limit(event: DepthLimitHit) -> None:
        typer.secho(f"    ⚠ depth limit {event.max_depth} reached below {event.parent_node_id}", fg=typer.colors.YELLOW)

    def _format_finished(event: CascadeFinished) -> None:
        symbols = {"completed": "✓", "cancelled": "⚠", "fatal": "✗"}
        error = f" | {event.error}" if event.error else ""
        typer.echo(
            f"\n{symbols.get(event.state.value, '?')} Cascade {event.state.value.upper()}: "
            f"{event.nodes_completed} run | {event.skipped_count} skipped | {event.failed_count} failed | "
            f"{event.duration_ms / 1000:.2f}s{error}"
        )

    return {
        CascadeStarted: _format_cascade_started,
        LevelStarted: _format_level_started,
        NodeStarted: _format_node_started,
        NodeCompleted: _format_node_completed,
        NodeRetrying: _format_node_retrying,
        NodeRateLimited: _format_node_rate_limited,
        NodeSkipped: _format_node_skipped,
        NodeFailed: _format_node_failed,
        PreflightWarning: _format_preflight,
        ActionExecuted: _format_action,
        DepthLimitHit: _format_depth_limit,
        CascadeFinished: _format_finished,
    }


def _event_name(event_type: type) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", event_type.__name__).lower()


def create_json_formatters() -> dict[type, Callable[..., None]]:
    """Create JSON-lines formatters: one object per event, tagged with its name."""

    def _format_json(event: Any) -> None:
        payload = {"event": _event_name(type(event)), **dataclasses.asdict(event)}
        typer.echo(json.dumps(payload, default=str))

    return {event_type: _format_json for event_type in CASCADE_EVENT_TYPES}


def subscribe_formatters(
    event_bus: EventBusProtocol,
    formatters: dict[type, Callable[..., None]],
) -> None:
    """Subscribe all formatters to the event bus."""
    for event_type, handler in formatters.items():
        event_bus.subscribe(event_type, handler)
