from __future__ import annotations

import random
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import DEFAULT_DEVICE_INTERVAL, CLIConfig, load_config
from cli.render import render_logsheet, render_push_result, render_snapshot, render_thresholds
from services.sample_source import SampleSource


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the silo moisture monitor.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
thresholds_app = typer.Typer(help="Inspect or change the acceptable moisture band.")
app.add_typer(thresholds_app, name="thresholds")


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Monitor API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds.",
    ),
    device_id: Optional[str] = typer.Option(
        None,
        "--device-id",
        help="Device identifier sent with pushed readings (defaults to CLI_DEVICE_ID env).",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout, device_id=device_id)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("push")
def push_command(
    ctx: typer.Context,
    silo1_moisture: float = typer.Option(..., "--silo1-moisture", help="Silo 1 moisture (%)."),
    silo1_temp: float = typer.Option(..., "--silo1-temp", help="Silo 1 temperature (°C)."),
    silo2_moisture: float = typer.Option(..., "--silo2-moisture", help="Silo 2 moisture (%)."),
    silo2_temp: float = typer.Option(..., "--silo2-temp", help="Silo 2 temperature (°C)."),
) -> None:
    """Send one combined reading for both silos."""
    state = _get_state(ctx)
    payload = state.client.push_reading(silo1_moisture, silo1_temp, silo2_moisture, silo2_temp)
    render_push_result(payload)


@app.command("simulate-device")
def simulate_device_command(
    ctx: typer.Context,
    count: int = typer.Option(10, "--count", "-n", min=1, help="Number of readings to send."),
    interval: float = typer.Option(
        DEFAULT_DEVICE_INTERVAL, "--interval", min=0.0, help="Seconds between readings."
    ),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for repeatable runs."),
) -> None:
    """Push random-walk readings as a bench device would."""
    state = _get_state(ctx)
    source = SampleSource(rng=random.Random(seed))
    for index in range(count):
        pair = source.simulate_pair(datetime.now())
        payload = state.client.push_reading(
            round(pair.silo1.moisture, 2),
            round(pair.silo1.temperature, 1),
            round(pair.silo2.moisture, 2),
            round(pair.silo2.temperature, 1),
        )
        alerts = payload.get("alerts") or []
        typer.echo(
            f"[{index + 1}/{count}] silo1 {pair.silo1.moisture:.2f}% silo2 {pair.silo2.moisture:.2f}%"
            + (f" alerts={len(alerts)}" if alerts else "")
        )
        if interval and index + 1 < count:
            time.sleep(interval)


@app.command("snapshot")
def snapshot_command(ctx: typer.Context) -> None:
    """Show the latest readings, thresholds and outstanding alerts."""
    state = _get_state(ctx)
    render_snapshot(state.client.get_snapshot())


@app.command("logsheet")
def logsheet_command(
    ctx: typer.Context,
    start: Optional[datetime] = typer.Option(None, "--start", formats=["%Y-%m-%d"], help="First day."),
    end: Optional[datetime] = typer.Option(None, "--end", formats=["%Y-%m-%d"], help="Last day."),
) -> None:
    """List logsheet entries, optionally limited to a date range."""
    state = _get_state(ctx)
    rows = state.client.get_logsheet(
        start=start.date() if start else None,
        end=end.date() if end else None,
    )
    render_logsheet(rows)


@thresholds_app.command("show")
def thresholds_show_command(ctx: typer.Context) -> None:
    """Print the active moisture band."""
    state = _get_state(ctx)
    render_thresholds(state.client.get_thresholds())


@thresholds_app.command("set")
def thresholds_set_command(
    ctx: typer.Context,
    min_moisture: float = typer.Argument(..., help="Lower bound (%)."),
    max_moisture: float = typer.Argument(..., help="Upper bound (%)."),
) -> None:
    """Replace the moisture band."""
    state = _get_state(ctx)
    payload = state.client.set_thresholds(min_moisture, max_moisture)
    typer.secho("Thresholds saved.", fg=typer.colors.GREEN)
    render_thresholds(payload)
