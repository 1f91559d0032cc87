"""CLI entry point for content-relay."""

from __future__ import annotations

import json

import click


def _echo_json(rows: list) -> None:
    click.echo(json.dumps([row.to_dict() for row in rows], indent=2))


@click.group()
def main() -> None:
    """Event propagation and read-time enrichment."""


@main.command()
@click.option("--config", default="configs/default.toml", help="Config file path")
def consume(config: str) -> None:
    """Run the content-view projector."""
    import asyncio

    from .main import run_consumer

    asyncio.run(run_consumer(config_path=config))


@main.command()
@click.argument("visitor_id")
@click.option("--config", default="configs/default.toml", help="Config file path")
def history(visitor_id: str, config: str) -> None:
    """Print a visitor's enriched watch history."""
    import asyncio

    from .main import open_context

    async def _history() -> list:
        ctx = await open_context(config_path=config)
        try:
            return await ctx.watch_history.get_watch_history(visitor_id)
        finally:
            await ctx.close()

    _echo_json(asyncio.run(_history()))


@main.command()
@click.option("--config", default="configs/default.toml", help="Config file path")
@click.option("--limit", default=10, type=int, help="Number of recommendations")
def recommendations(config: str, limit: int) -> None:
    """Print the most recently viewed content, enriched."""
    import asyncio

    from .main import open_context

    async def _recommendations() -> list:
        ctx = await open_context(config_path=config)
        try:
            return await ctx.recommendations.get_recommendations(limit)
        finally:
            await ctx.close()

    _echo_json(asyncio.run(_recommendations()))


@main.command("dispatch-outbox")
@click.option("--config", default="configs/default.toml", help="Config file path")
@click.option("--once", is_flag=True, help="Drain pending entries once and exit")
def dispatch_outbox(config: str, once: bool) -> None:
    """Push staged outbox entries to the event bus."""
    import asyncio

    from .main import run_outbox_dispatcher

    sent = asyncio.run(run_outbox_dispatcher(config_path=config, once=once))
    click.echo(f"Dispatched {sent} outbox entries.")


if __name__ == "__main__":
    main()
