from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

_STATUS_COLORS = {
    "high": typer.colors.RED,
    "low": typer.colors.YELLOW,
    "normal": typer.colors.GREEN,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_thresholds(payload: Dict[str, Any]) -> None:
    echo_heading("Moisture Thresholds")
    echo_key_values(
        [
            ("min_moisture", payload.get("min_moisture")),
            ("max_moisture", payload.get("max_moisture")),
        ]
    )


def render_push_result(payload: Dict[str, Any]) -> None:
    data = payload.get("data") or {}
    echo_heading("Reading Stored")
    echo_key_values(
        [
            ("id", data.get("id")),
            ("timestamp", data.get("timestamp")),
            ("silo1", f"{data.get('silo1_moisture')}% / {data.get('silo1_temp')}°C"),
            ("silo2", f"{data.get('silo2_moisture')}% / {data.get('silo2_temp')}°C"),
        ]
    )
    thresholds = payload.get("thresholds") or {}
    typer.echo(
        f"thresholds: {thresholds.get('moisture_min')} - {thresholds.get('moisture_max')}"
    )
    alerts = payload.get("alerts") or []
    for alert in alerts:
        typer.secho(
            f"  ! silo {alert.get('silo')} {alert.get('type')} moisture {alert.get('value')}",
            fg=_STATUS_COLORS.get(alert.get("type", ""), typer.colors.RED),
        )


def render_snapshot(payload: Dict[str, Any]) -> None:
    echo_heading("Silos")
    for name in ("silo1", "silo2"):
        silo = payload.get(name) or {}
        status = silo.get("status", "normal")
        typer.secho(
            f"{name}: moisture {silo.get('moisture'):.2f}% "
            f"temperature {silo.get('temperature'):.1f}°C [{status}]",
            fg=_STATUS_COLORS.get(status),
        )

    typer.echo()
    render_thresholds(payload.get("thresholds") or {})

    alerts = payload.get("alerts") or []
    typer.echo()
    echo_heading("Alerts")
    if alerts:
        for alert in alerts:
            typer.echo(
                f"  - {alert.get('id')}: silo {alert.get('silo_id')} "
                f"{alert.get('kind')} {alert.get('value'):.2f}% at {alert.get('timestamp')}"
            )
    else:
        typer.echo("No outstanding alerts.")


def render_logsheet(rows: List[Dict[str, Any]]) -> None:
    echo_heading("Logsheet")
    if not rows:
        typer.echo("No logsheet entries.")
        return
    typer.echo("timestamp                  S1 moist  S1 temp  S2 moist  S2 temp")
    for row in rows:
        typer.echo(
            f"{row.get('timestamp'):<26} "
            f"{row.get('silo1_moisture'):>8.2f} {row.get('silo1_temp'):>8.1f} "
            f"{row.get('silo2_moisture'):>9.2f} {row.get('silo2_temp'):>8.1f}"
        )
    typer.echo(f"{len(rows)} entries")
