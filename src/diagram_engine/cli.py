"""
Command-line interface for the diagram engine.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import mimetypes
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from diagram_engine.adapters.base import ImageAttachment
from diagram_engine.config import EngineConfig, ProviderConfig
from diagram_engine.elements import ElementRecord, extract_elements
from diagram_engine.logging import setup_logging, verbosity_level
from diagram_engine.orchestrator import DiagramOrchestrator, GenerationState
from diagram_engine.prompts import CHART_TYPE_HINTS
from diagram_engine.status import BuiltinStatusChecker
from diagram_engine.transports.base import TransportConfig
from diagram_engine.usage import SQLiteStore, UsageMonitor
from diagram_engine.utils.json_repair import format_failure, repair_json

console = Console()

CONFIG_PATHS = [
    Path.cwd() / "diagram-engine.yaml",
    Path.home() / ".config" / "diagram-engine" / "config.yaml",
]


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Smart Diagram Engine CLI",
        prog="diagram-engine",
    )

    # Global options
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="More log output (-v info, -vv debug, -vvv adds HTTP requests)",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="Config file (defaults to ./diagram-engine.yaml or ~/.config/diagram-engine/config.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Generate command
    gen_parser = subparsers.add_parser("generate", help="Generate a diagram")
    gen_parser.add_argument("description", help="What to draw")
    gen_parser.add_argument(
        "-t",
        "--chart-type",
        default="auto",
        choices=["auto", *CHART_TYPE_HINTS],
        help="Diagram type hint",
    )
    gen_parser.add_argument(
        "-p",
        "--provider",
        choices=["openai", "anthropic", "builtin"],
        help="Provider type (overrides the config file)",
    )
    gen_parser.add_argument("--base-url", help="Provider base URL")
    gen_parser.add_argument("--api-key", help="Provider API key")
    gen_parser.add_argument("--model", help="Model name")
    gen_parser.add_argument("--image", help="Reference image to attach")
    gen_parser.add_argument(
        "-o",
        "--output",
        help="Write the element array to this file instead of stdout",
    )

    # Usage command with subcommands
    usage_parser = subparsers.add_parser("usage", help="Built-in model usage")
    usage_subparsers = usage_parser.add_subparsers(dest="usage_command", help="Usage commands")
    usage_subparsers.add_parser("show", help="Show usage and limits")
    usage_subparsers.add_parser("reset", help="Reset usage counters")

    # Status command
    subparsers.add_parser("status", help="Check the built-in model status")

    # Repair command
    repair_parser = subparsers.add_parser("repair", help="Repair model output and extract elements")
    repair_parser.add_argument(
        "file",
        nargs="?",
        default="-",
        help="File to repair ('-' reads stdin)",
    )

    args = parser.parse_args()

    setup_logging(verbosity_level(args.verbose), show_http=args.verbose >= 3)

    if args.command == "generate":
        asyncio.run(cmd_generate(args))
    elif args.command == "usage":
        cmd_usage(args)
    elif args.command == "status":
        asyncio.run(cmd_status(args))
    elif args.command == "repair":
        cmd_repair(args)
    else:
        parser.print_help()


def _load_config(path: str | None) -> EngineConfig:
    """Load the engine config from ``path`` or the default locations."""
    if path:
        return EngineConfig.from_yaml(Path(path))

    for candidate in CONFIG_PATHS:
        if candidate.exists():
            return EngineConfig.from_yaml(candidate)

    return EngineConfig.from_dict({})


def _create_monitor(config: EngineConfig) -> UsageMonitor:
    # Each CLI call is a separate process, so usage always goes to disk
    return UsageMonitor(store=SQLiteStore(config.storage_path))


def _provider_from_args(args: argparse.Namespace, config: EngineConfig) -> ProviderConfig:
    if args.provider == "builtin":
        return ProviderConfig.builtin_from_env()

    provider = config.provider
    if args.provider:
        provider = ProviderConfig(type=args.provider)
    if args.base_url:
        provider.base_url = args.base_url
    if args.api_key:
        provider.api_key = args.api_key
    if args.model:
        provider.model = args.model
    return provider


def _load_image(path: str) -> ImageAttachment:
    image_path = Path(path)
    mime_type = mimetypes.guess_type(image_path.name)[0] or "image/png"
    data = base64.b64encode(image_path.read_bytes()).decode("ascii")
    return ImageAttachment(data=data, mime_type=mime_type)


async def cmd_generate(args: argparse.Namespace) -> None:
    """Generate a diagram and print the element array."""
    config = _load_config(args.config)
    provider = _provider_from_args(args, config)
    image = _load_image(args.image) if args.image else None

    checker = BuiltinStatusChecker(provider, cache_seconds=config.status_cache_seconds)

    with console.status("Waiting for the model...") as spinner:

        def render(elements: list[ElementRecord]) -> None:
            spinner.update(f"Drawing... {len(elements)} elements")

        orchestrator = DiagramOrchestrator(
            provider,
            monitor=_create_monitor(config),
            status_checker=checker,
            renderer=render,
            transport_config=TransportConfig(
                timeout=config.request_timeout,
                connect_timeout=config.connect_timeout,
            ),
        )
        try:
            result = await orchestrator.generate(args.description, args.chart_type, image)
        finally:
            await checker.close()

    if result.state is not GenerationState.COMPLETED:
        message = result.error.message if result.error else result.state.value
        console.print(f"[red]Error:[/red] {escape(message)}")
        sys.exit(1)

    output = json.dumps(result.elements, indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        console.print(f"[green]Wrote {len(result.elements)} elements to {args.output}[/green]")
    else:
        print(output)


def cmd_usage(args: argparse.Namespace) -> None:
    """Usage management commands."""
    monitor = _create_monitor(_load_config(args.config))

    if args.usage_command == "reset":
        monitor.reset_usage()
        console.print("[green]Usage counters reset[/green]")
        return

    stats = monitor.get_usage_stats()
    limits = stats["limits"]

    table = Table(title="Built-in Model Usage")
    table.add_column("Metric", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right", style="dim")

    table.add_row("Requests (hour)", str(stats["requests"]), str(limits["requests_per_hour"]))
    table.add_row("Tokens (hour)", str(stats["tokens"]), str(limits["tokens_per_hour"]))
    console.print(table)
    # The request counter rolls over hourly, so the daily cap is checked against it too.
    console.print(f"[dim]Daily cap: {limits['requests_per_day']} requests per window[/dim]")

    console.print(f"[dim]Window started: {stats['last_reset']}[/dim]")
    if stats["last_request"]:
        console.print(f"[dim]Last request: {stats['last_request']}[/dim]")
    if monitor.is_in_cooldown():
        console.print(f"[yellow]In cooldown ({limits['cooldown_minutes']} min after a violation)[/yellow]")


async def cmd_status(args: argparse.Namespace) -> None:
    """Check the built-in model status."""
    config = _load_config(args.config)
    provider = config.provider if config.provider.is_builtin else ProviderConfig.builtin_from_env()

    checker = BuiltinStatusChecker(provider)
    try:
        status = await checker.get_status(force=True)
    finally:
        await checker.close()

    colors = {"ready": "green", "disabled": "dim", "maintenance": "yellow", "error": "red"}
    color = colors.get(status.status, "white")
    console.print(f"[bold]Built-in model:[/bold] {status.model}")
    console.print(f"[bold]Status:[/bold] [{color}]{status.status}[/{color}]")
    if status.error:
        console.print(f"  {escape(status.message)}")
        details = status.error.get("details")
        if isinstance(details, dict) and details.get("message"):
            console.print(f"  [dim]{escape(str(details['message']))}[/dim]")

    if not status.ready:
        sys.exit(1)


def cmd_repair(args: argparse.Namespace) -> None:
    """Repair model output and report what was recovered."""
    if args.file == "-":
        text = sys.stdin.read()
    else:
        text = Path(args.file).read_text(encoding="utf-8")

    outcome = repair_json(text)
    if not outcome.ok:
        console.print(f"[red]✗[/red] {escape(format_failure(outcome))}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Parsed ({outcome.status.value})")
    if outcome.applied_fix:
        console.print(f"  Fix applied: {outcome.applied_fix}")
    if outcome.applied_closers:
        console.print(f"  Closers appended: {outcome.applied_closers}")

    extracted = extract_elements(outcome.value)
    if extracted is None:
        console.print("[yellow]⚠[/yellow] No element array found in the parsed value")
        sys.exit(1)

    console.print(f"  Elements: {len(extracted)} (from {extracted.shape.value})")
    print(json.dumps(extracted.elements, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
