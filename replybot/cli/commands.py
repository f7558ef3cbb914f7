"""CLI commands for replybot."""

import asyncio
import sys
from datetime import datetime, timezone

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from replybot import __version__, __logo__

app = typer.Typer(
    name="replybot",
    help=f"{__logo__} replybot - Automated chat replies",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} replybot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logs"),
):
    """replybot - Automated chat replies."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _open_store(config):
    from replybot.storage.json_store import JsonStore

    return JsonStore(
        data_path=config.storage.path,
        persist=config.storage.persist,
        settings=config.bot,
        max_auto_replies=config.analytics.reply_log_size,
    )


def _mark(value: bool) -> str:
    return "[green]✓[/green]" if value else "[dim]✗[/dim]"


# ============================================================================
# Onboard / Status
# ============================================================================


@app.command()
def onboard():
    """Create the default replybot configuration."""
    from replybot.config.loader import get_config_path, save_config
    from replybot.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config, config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} replybot is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Edit auto-reply settings in [cyan]{config_path}[/cyan]")
    console.print("  2. To use an LLM, set [cyan]bot.llm.enabled[/cyan] and an API key")
    console.print("  3. Check the provider: [cyan]replybot llm test[/cyan]")


@app.command()
def status():
    """Show replybot configuration status."""
    from replybot.config.loader import get_config_path, load_config

    config_path = get_config_path()
    console.print(f"{__logo__} replybot Status\n")
    console.print(f"Config: {config_path} {_mark(config_path.exists())}")

    config = load_config(config_path)
    bot = config.bot

    console.print(f"Data: {config.storage.path} (persist: {_mark(config.storage.persist)})")

    console.print("\n[bold]Auto-reply:[/bold]")
    console.print(f"  Enabled: {_mark(bot.auto_reply)}")
    hours = bot.working_hours
    if hours.enabled:
        console.print(f"  Working hours: {hours.start}-{hours.end} ({hours.timezone})")
    else:
        console.print("  Working hours: [dim]not restricted[/dim]")
    console.print(f"  Allowed contacts: {len(bot.allowed_contacts) or 'everyone'}")
    console.print(f"  Blocked contacts: {len(bot.blocked_contacts)}")

    llm = bot.llm
    console.print("\n[bold]LLM:[/bold]")
    console.print(f"  Enabled: {_mark(llm.enabled)}")
    console.print(f"  Provider: {llm.provider} / {llm.model}")
    console.print(f"  API key: {'[green]set[/green]' if llm.api_key else '[dim]not set[/dim]'}")
    console.print(f"  Rate limit: {llm.rate_limit_per_hour}/hour per sender")
    console.print(f"  Timeout: {llm.timeout_ms} ms")

    if config.broadcast.webhook_url:
        console.print(f"\nWebhook: {config.broadcast.webhook_url}")


# ============================================================================
# LLM Commands
# ============================================================================

llm_app = typer.Typer(help="Response generation")
app.add_typer(llm_app, name="llm")


@llm_app.command("providers")
def llm_providers():
    """List supported providers."""
    from replybot.config.loader import load_config
    from replybot.providers.generator import PROVIDER_DESCRIPTIONS, PROVIDERS

    config = load_config()
    current = config.bot.llm.provider

    table = Table(title="LLM Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Description")
    table.add_column("Active", style="green")

    for name in PROVIDERS:
        table.add_row(name, PROVIDER_DESCRIPTIONS.get(name, ""), "✓" if name == current else "")

    console.print(table)


@llm_app.command("test")
def llm_test(
    message: str = typer.Option("Hello", "--message", "-m", help="Message to answer"),
    sender_name: str = typer.Option("Test User", "--name", help="Sender name for the prompt"),
):
    """Probe the configured provider and generate one reply."""
    from replybot.config.loader import load_config
    from replybot.errors import GenerationError
    from replybot.providers.base import GenerationContext
    from replybot.providers.generator import ResponseGenerator

    config = load_config()

    async def run():
        settings = await _open_store(config).get_settings()
        generator = ResponseGenerator(settings.llm)
        try:
            if not await generator.initialize():
                return None, generator.get_status()
            context = GenerationContext(sender_id="cli", sender_name=sender_name)
            try:
                reply = await generator.generate(message, context)
            except GenerationError as e:
                return None, {**generator.get_status(), "error": str(e)}
            return reply, generator.get_status()
        finally:
            await generator.close()

    reply, info = asyncio.run(run())

    console.print(f"\n{__logo__} [bold]LLM Test[/bold] ({info['provider']}/{info['model']})\n")
    if reply is None:
        console.print(f"[red]✗[/red] {info['error'] or info['state']}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Provider ready")
    console.print(f"\n[bold]Reply:[/bold] {reply}")


# ============================================================================
# Gate Commands
# ============================================================================

gate_app = typer.Typer(help="Auto-reply gate")
app.add_typer(gate_app, name="gate")


@gate_app.command("check")
def gate_check(
    sender: str = typer.Argument(..., help="Sender identifier or phone number"),
    message: str = typer.Option("Hi", "--message", "-m", help="Message text"),
    at: str = typer.Option("", "--at", help="ISO timestamp to evaluate (default: now, UTC)"),
    group: bool = typer.Option(False, "--group", help="Treat as a group message"),
):
    """Show whether a message would get an auto-reply, and which text."""
    from replybot.auto_reply.gate import AutoReplyGate
    from replybot.auto_reply.rate_limit import RateLimiter
    from replybot.bus.events import Message
    from replybot.config.loader import load_config

    config = load_config()

    timestamp = datetime.now(timezone.utc)
    if at:
        try:
            timestamp = datetime.fromisoformat(at)
        except ValueError:
            console.print(f"[red]Invalid timestamp: {at}[/red]")
            raise typer.Exit(1)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

    inbound = Message.incoming(sender, message, timestamp=timestamp, is_group=group)

    async def run():
        settings = await _open_store(config).get_settings()
        gate = AutoReplyGate(RateLimiter(settings.llm.rate_limit_per_hour))
        decision = gate.check(inbound, settings)
        plan = await gate.plan_reply(inbound, settings, decision.is_working_hours) if decision else None
        return settings, decision, plan

    settings, decision, plan = asyncio.run(run())

    console.print(f"\n{__logo__} [bold]Gate Check[/bold]\n")
    console.print(f"Sender: {inbound.contact}")
    console.print(f"Time: {timestamp.isoformat()}")
    console.print(f"Working hours: {_mark(decision.is_working_hours)}")

    if not decision:
        console.print(f"\n[yellow]No reply:[/yellow] {decision.rejection.value}")
        return

    console.print(f"\n[green]Reply[/green] ({plan.response_type.value})")
    if settings.llm.enabled and settings.llm.auto_reply:
        console.print("[dim]LLM replies are enabled; shown text is the static path[/dim]")
    console.print(f"  {plan.text}")


# ============================================================================
# Analytics Commands
# ============================================================================

analytics_app = typer.Typer(help="Message analytics")
app.add_typer(analytics_app, name="analytics")


@analytics_app.command("show")
def analytics_show(
    time_range: str = typer.Option("week", "--range", "-r", help="day, week, month or quarter"),
):
    """Show message analytics from stored messages."""
    from replybot.config.loader import load_config
    from replybot.tracking.analytics import TIME_RANGES, AnalyticsAggregator

    if time_range not in TIME_RANGES:
        console.print(f"[red]Unknown range: {time_range}[/red]")
        raise typer.Exit(1)

    config = load_config()

    async def run():
        store = _open_store(config)
        messages = await store.get_messages()
        aggregator = AnalyticsAggregator(
            timezone_name=config.analytics.timezone,
            error_log_size=config.analytics.error_log_size,
            max_contacts=config.analytics.max_contacts,
        )
        aggregator.rebuild(messages)
        return aggregator.summarize(messages, time_range)

    report = asyncio.run(run())
    volume = report["messageVolume"]
    times = report["responseTime"]

    console.print(f"\n{__logo__} [bold]Analytics[/bold] ({time_range})\n")
    console.print(
        f"Messages: {volume['total']} "
        f"(sent {volume['sent']}, received {volume['received']}, failed {volume['failed']}) "
        f"trend {volume['trend']:+d}%"
    )
    console.print(
        f"Response time: avg {times['average']}s, "
        f"fastest {times['fastest']}s, slowest {times['slowest']}s"
    )
    rates = report["successRates"]
    console.print(
        f"Delivery rate: {rates['deliveryRate']}%, failure rate: {rates['failureRate']}%"
    )
    kinds = ", ".join(f"{item['type']} {item['percentage']}%" for item in report["messageTypes"])
    console.print(f"Types: {kinds or 'none'}")

    table = Table(title="Daily")
    table.add_column("Date", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Sent", justify="right", style="green")
    table.add_column("Received", justify="right")
    table.add_column("Failed", justify="right", style="red")
    for day in report["dailyStats"]:
        table.add_row(
            day["date"], str(day["total"]), str(day["sent"]),
            str(day["received"]), str(day["failed"]),
        )
    console.print(table)

    if report["topContacts"]:
        contacts = Table(title="Top Contacts")
        contacts.add_column("Contact", style="cyan")
        contacts.add_column("Messages", justify="right")
        contacts.add_column("Last Active")
        for contact in report["topContacts"]:
            contacts.add_row(contact["contact"], str(contact["messageCount"]), contact["lastActive"])
        console.print(contacts)

    if report["errorAnalysis"]:
        errors = Table(title="Errors")
        errors.add_column("Type", style="red")
        errors.add_column("Count", justify="right")
        errors.add_column("Last Occurrence")
        for item in report["errorAnalysis"]:
            errors.add_row(item["type"], str(item["count"]), item["lastOccurrence"])
        console.print(errors)


@analytics_app.command("replies")
def analytics_replies(
    days: int = typer.Option(30, "--days", "-d", help="Days to include"),
):
    """Show auto-reply usage."""
    from replybot.config.loader import load_config
    from replybot.tracking.replies import ReplyLog

    config = load_config()

    async def run():
        log = ReplyLog(config.analytics.reply_log_size)
        log.extend(await _open_store(config).get_auto_replies())
        return log.summary(days)

    summary = asyncio.run(run())

    console.print(f"\n{__logo__} [bold]Auto-replies[/bold] (last {days} days)\n")
    console.print(f"LLM replies: {summary['totalLLMReplies']} ({summary['averagePerDay']}/day)")
    console.print(f"Unique users: {summary['uniqueUsers']}")
    console.print(f"Undelivered: {summary['undelivered']}")

    table = Table(title="Response Types")
    table.add_column("Type", style="cyan")
    table.add_column("Count", justify="right")
    for name, count in summary["responseTypes"].items():
        table.add_row(name, str(count))
    console.print(table)


if __name__ == "__main__":
    app()
