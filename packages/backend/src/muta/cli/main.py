"""Muta CLI — run the server, feed it orders, inspect the board.

Usage:
    muta serve                         # Start the API + WebSocket server
    muta generate                      # Post a random order every 5 s
    muta generate -n 10 -i 1           # 10 orders, one per second
    muta orders -s en-route            # List orders (filters, paging)
    muta stats                         # Order counts per status + health
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from muta import __version__
from muta.schemas.order import OrderStatus
from muta.services.sample_data import random_order

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3001"


def _api_url() -> str:
    return os.environ.get("MUTA_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the Muta backend."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. CliRunner inside an async test)
    by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str, ensure_ascii=False)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    colors = {
        "pending": "yellow",
        "en-route": "cyan",
        "in-process": "blue",
        "completed": "green",
        "cancelled": "red",
        "healthy": "green",
        "degraded": "yellow",
        "unhealthy": "red",
    }
    return colors.get(status, "white")


def _fail(message: str):
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="muta")
def main():
    """Muta — real-time order synchronization backend."""


# ---------------------------------------------------------------------------
# muta serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: MUTA_HOST)")
@click.option("--port", "-p", type=int, default=None, help="Port (default: MUTA_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Start the HTTP + WebSocket server."""
    import uvicorn

    from muta.config import settings

    uvicorn.run(
        "muta.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level,
    )


# ---------------------------------------------------------------------------
# muta generate
# ---------------------------------------------------------------------------


@main.command()
@click.option("--interval", "-i", default=5.0, help="Seconds between orders (default: 5)")
@click.option("--count", "-n", default=0, help="Stop after N orders (0 = run until Ctrl+C)")
def generate(interval: float, count: int):
    """Post random orders to a running server."""
    try:
        _run(_generate_impl(interval, count))
    except KeyboardInterrupt:
        click.echo()
        click.echo("Generator stopped.")


async def _generate_impl(interval: float, count: int):
    async with _client() as c:
        try:
            r = await c.get("/health")
            r.raise_for_status()
        except httpx.HTTPError as e:
            _fail(f"backend not reachable at {_api_url()} ({e})")

        click.secho(f"Generating one order every {interval:g}s → {_api_url()}", bold=True)

        created = attempts = 0
        while count == 0 or attempts < count:
            attempts += 1
            body = random_order().model_dump(mode="json", by_alias=True)
            r = await c.post("/api/orders", json=body)
            if r.status_code == 201:
                order = r.json()
                created += 1
                click.echo(
                    f"  #{created} {order['id']}  "
                    + click.style(order["status"], fg=_status_color(order["status"]))
                    + f"  {order['collectorName']}  {order['address']}"
                )
            else:
                click.secho(f"  ✗ {r.status_code}: {r.text[:200]}", fg="red")

            if count == 0 or attempts < count:
                await asyncio.sleep(interval)

        click.echo(f"Done — {created} order(s) created.")


# ---------------------------------------------------------------------------
# muta orders
# ---------------------------------------------------------------------------


@main.command()
@click.option(
    "--status", "-s", "status_filter",
    type=click.Choice([s.value for s in OrderStatus]),
    help="Filter by status",
)
@click.option("--search", "-q", help="Search id, collector or address")
@click.option("--page", default=1, help="Page number")
@click.option("--page-size", default=20, help="Orders per page (max 100)")
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def orders(
    status_filter: Optional[str],
    search: Optional[str],
    page: int,
    page_size: int,
    as_json: bool,
):
    """List orders."""
    _run(_orders_impl(status_filter, search, page, page_size, as_json))


async def _orders_impl(
    status_filter: Optional[str],
    search: Optional[str],
    page: int,
    page_size: int,
    as_json: bool,
):
    async with _client() as c:
        params: dict = {"page": page, "pageSize": page_size}
        if status_filter:
            params["status"] = status_filter
        if search:
            params["search"] = search

        r = await c.get("/api/orders", params=params)
        r.raise_for_status()
        result = r.json()

        if as_json:
            click.echo(_pretty_json(result))
            return

        items = result["items"]
        if not items:
            click.echo("No orders found.")
            return

        click.secho(
            f"Orders (page {result['page']}/{result['totalPages']}, "
            f"{result['totalMatching']} matching):",
            bold=True,
        )
        click.echo()
        _print_table(items, [
            ("ID", "id", 28),
            ("Status", "status", 11),
            ("Collector", "collectorName", 20),
            ("Address", "address", 40),
        ])


# ---------------------------------------------------------------------------
# muta stats
# ---------------------------------------------------------------------------


@main.command()
def stats():
    """Order counts per status and service health."""
    _run(_stats_impl())


async def _stats_impl():
    async with _client() as c:
        r = await c.get("/api/orders/stats")
        r.raise_for_status()
        counts = r.json()

        # 503 still carries the health body
        h = await c.get("/api/orders/health")
        health = h.json()

    click.secho("Orders by status:", bold=True)
    for status, n in counts.items():
        click.echo(f"  {click.style(status.ljust(12), fg=_status_color(status))} {n}")
    click.echo(f"  {'total'.ljust(12)} {sum(counts.values())}")

    click.echo()
    state = health.get("status", "unknown")
    click.echo("Service: " + click.style(state, fg=_status_color(state), bold=True))
    click.echo(f"  orders:      {health.get('totalOrders')}")
    click.echo(f"  connections: {health.get('activeConnections')}")
    click.echo(f"  uptime:      {health.get('uptime', 0):.0f}s")
    if health.get("lastError"):
        click.secho(f"  last error:  {health['lastError']['message']}", fg="red")


if __name__ == "__main__":
    main()
