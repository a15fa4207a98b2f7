"""Command-line interface for kbcore."""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Config, ConfigManager
from .errors import ConfigurationError, KnowledgeBaseError
from .knowledge_base import KnowledgeBase
from .logging_config import setup_logging

console = Console()


def load_config(args) -> Config:
    config = ConfigManager(args.config).load()
    if args.data:
        config.storage.path = args.data
        config.storage.backend = "json"
    if args.no_enrichment:
        config.enrichment.enabled = False
    return config


async def ingest_events(args, kb: KnowledgeBase) -> int:
    """Ingest events from a JSON file holding a list of envelopes."""
    try:
        with open(args.file, "r", encoding="utf-8") as f:
            rows = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error loading {args.file}: {e}[/red]")
        return 1

    if not isinstance(rows, list):
        console.print("[red]Expected a JSON list of events[/red]")
        return 1

    result = await kb.ingest(rows)
    console.print(
        Panel(
            f"Rows: {result.total}\n"
            f"Stored: [green]{result.stored}[/green]\n"
            f"Duplicates skipped: [yellow]{result.duplicates}[/yellow]\n"
            f"Rejected: [red]{result.rejected}[/red]",
            title="Ingestion",
        )
    )
    return 0 if result.rejected == 0 else 2


async def preview(args, kb: KnowledgeBase) -> int:
    """Show the duplicate groups reconciliation would merge."""
    result = kb.preview_reconciliation()
    if not result.groups:
        console.print("[green]No duplicate external ids found[/green]")
        return 0

    table = Table(title=f"{result.total_groups} duplicate groups")
    table.add_column("Type")
    table.add_column("External id")
    table.add_column("Keeper")
    table.add_column("Merged into keeper")
    for group in result.groups:
        table.add_row(
            group.entity_type.value,
            group.external_id,
            f"{group.keeper_name} ({group.keeper_id})",
            ", ".join(group.loser_names),
        )
    console.print(table)
    console.print(f"{result.total_losers} entities would be removed")
    return 0


async def reconcile(args, kb: KnowledgeBase) -> int:
    """Merge all entities sharing an external id."""
    result = await kb.reconcile()
    for merge in result.merges:
        console.print(
            f"✅ {merge.keeper_name}: absorbed {', '.join(merge.loser_names)} "
            f"({len(merge.rewritten_event_ids)} events rewritten)"
        )
    console.print(
        f"[bold]{result.merge_count}[/bold] merges, "
        f"[bold]{result.entities_removed}[/bold] entities removed"
    )
    return 0


async def merge(args, kb: KnowledgeBase) -> int:
    """Merge one entity into another."""
    result = await kb.merge(args.keeper, args.loser)
    console.print(
        f"✅ Merged {', '.join(result.loser_names)} into {result.keeper_name}; "
        f"{len(result.rewritten_event_ids)} events rewritten, "
        f"{result.connection_count} connections"
    )
    return 0


async def recalculate(args, kb: KnowledgeBase) -> int:
    """Rebuild every entity's connections from the events."""
    result = await kb.recalculate()
    console.print(
        f"Recalculated {result.entities} entities over {result.events} events; "
        f"{len(result.changed_entity_ids)} changed"
    )
    return 0


async def related(args, kb: KnowledgeBase) -> int:
    """List names co-occurring with an entity."""
    results = await kb.related(args.name, args.top)
    if not results:
        console.print(f"[yellow]No related entities for {args.name}[/yellow]")
        return 0

    table = Table(title=f"Related to {args.name}")
    table.add_column("Name")
    table.add_column("Events", justify="right")
    table.add_column("Actions")
    table.add_column("Last seen")
    for entry in results:
        table.add_row(
            entry.name,
            str(entry.count),
            ", ".join(entry.actions),
            entry.last_date.date().isoformat() if entry.last_date else "",
        )
    console.print(table)
    return 0


async def stats(args, kb: KnowledgeBase) -> int:
    """Show connection statistics for an entity."""
    result = await kb.stats(args.entity_id)
    if result is None:
        console.print(f"[red]Entity not found: {args.entity_id}[/red]")
        return 1

    lines = [
        f"Events: {result.total_events}",
        f"As actor: {result.as_actor}  As target: {result.as_target}  "
        f"As location: {result.as_location}",
    ]
    if result.action_types:
        lines.append(
            "Actions: " + ", ".join(f"{a} ({n})" for a, n in result.action_types.items())
        )
    if result.timeline.first_event:
        lines.append(
            f"Active {result.timeline.first_event.date()} to "
            f"{result.timeline.last_event.date()} ({result.timeline.span_days} days)"
        )
    if result.top_related:
        lines.append(
            "Top related: " + ", ".join(f"{r.name} ({r.count})" for r in result.top_related)
        )
    console.print(Panel("\n".join(lines), title=result.entity_name))
    return 0


def generate_config(args) -> int:
    """Write a configuration template."""
    if args.output:
        ConfigManager().save_template(args.output)
        console.print(f"Configuration template saved to: {args.output}")
    else:
        print(json.dumps(Config().model_dump(), indent=2))
    return 0


COMMANDS = {
    "ingest": ingest_events,
    "preview": preview,
    "reconcile": reconcile,
    "merge": merge,
    "recalculate": recalculate,
    "related": related,
    "stats": stats,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kbcore",
        description="Entity resolution and merge tooling for the event knowledge graph",
    )
    parser.add_argument("-c", "--config", help="Path to configuration file")
    parser.add_argument("-d", "--data", help="JSON data file (overrides storage.path)")
    parser.add_argument(
        "--no-enrichment", action="store_true", help="Disable external enrichment lookups"
    )
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest events from a JSON file")
    ingest_parser.add_argument("file", help="JSON list of event envelopes")

    subparsers.add_parser("preview", help="Show what reconciliation would merge")
    subparsers.add_parser("reconcile", help="Merge entities sharing an external id")

    merge_parser = subparsers.add_parser("merge", help="Merge LOSER into KEEPER")
    merge_parser.add_argument("keeper", help="Id of the entity to keep")
    merge_parser.add_argument("loser", help="Id of the entity to remove")

    subparsers.add_parser("recalculate", help="Recompute all connections")

    related_parser = subparsers.add_parser("related", help="Entities co-occurring with NAME")
    related_parser.add_argument("name", help="Entity name as it appears in events")
    related_parser.add_argument("--top", type=int, default=None, help="Number of results")

    stats_parser = subparsers.add_parser("stats", help="Connection statistics for an entity")
    stats_parser.add_argument("entity_id", help="Entity id")

    config_parser = subparsers.add_parser("generate-config", help="Generate configuration template")
    config_parser.add_argument("-o", "--output", help="Save to file (default: print to stdout)")

    return parser


async def run_command(args, config: Config) -> int:
    async with KnowledgeBase(config=config) as kb:
        return await COMMANDS[args.command](args, kb)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "generate-config":
        return generate_config(args)

    try:
        config = load_config(args)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1

    setup_logging(
        format=config.logging.format,
        level=args.log_level or config.logging.level,
        log_file=config.logging.file,
    )

    try:
        return asyncio.run(run_command(args, config))
    except KnowledgeBaseError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
