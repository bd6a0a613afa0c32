from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

SAMPLE_COLUMNS = (
    ("recordedAt", "recorded_at"),
    ("temperature", "temp"),
    ("humidity", "hum"),
    ("dustDensity", "dust"),
    ("lightPercent", "light%"),
    ("voltage", "V"),
    ("current", "A"),
    ("power", "W"),
)


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def render_samples(samples: List[Dict[str, Any]]) -> None:
    echo_heading(f"Samples ({len(samples)})")
    if not samples:
        typer.echo("No samples recorded.")
        return
    rows = [[label for _, label in SAMPLE_COLUMNS]]
    rows.extend([_cell(sample.get(key)) for key, _ in SAMPLE_COLUMNS] for sample in samples)
    widths = [max(len(row[index]) for row in rows) for index in range(len(SAMPLE_COLUMNS))]
    for row in rows:
        typer.echo("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())


def render_sample(sample: Dict[str, Any]) -> None:
    echo_heading("Latest Sample")
    echo_key_values((key, _cell(value)) for key, value in sample.items())


def render_cooldowns(entries: List[Dict[str, Any]]) -> None:
    echo_heading("Alert Cooldowns")
    if not entries:
        typer.echo("No alerts have fired yet.")
        return
    for entry in entries:
        typer.echo(f"  - {entry.get('kind')}: last fired {entry.get('lastFiredAt')}")
