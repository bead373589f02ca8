"""Command-line interface for RoloDojo.

Subcommands run a single operation; with no subcommand an interactive
prompt is started.
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable

from .config import DojoConfig, load_config, provider_configs
from .dojo import DojoService
from .errors import AttributeNotFoundError
from .ledger import LedgerStore, RoloMetadata
from .logging import JSONLLogger, configure_logger
from .query import format_key
from .sensei import HealthState, HealthStatus, SenseiOrchestrator
from .uri import parse

BANNER = """
RoloDojo - personal ledger

Type a fact ("Joe's coffee is Espresso") or a question ("Who is Joe?").

Commands:
  /recent       - Show the latest ledger entries
  /health       - Check the inference endpoint
  /help         - Show this help
  /exit, /quit  - Exit
"""

MASK = "******"

_STATE_COLORS = {
    HealthState.HEALTHY: "\033[32m",
    HealthState.DEGRADED_NO_MODEL: "\033[33m",
    HealthState.UNREACHABLE: "\033[31m",
}


def build_service(config: DojoConfig, event_logger: JSONLLogger | None = None) -> DojoService:
    """Wire the store, orchestrator and resolver from configuration."""
    store = LedgerStore(config.db_path)
    store.init_db()
    sensei = SenseiOrchestrator(
        provider_configs(config),
        provider=config.provider,
        request_timeout=config.request_timeout,
        health_cache_ttl=config.health_cache_ttl,
        health_poll_interval=config.health_poll_interval,
    )
    if event_logger is not None:
        sensei.health.subscribe(_health_change_logger(event_logger))
    return DojoService(store, sensei=sensei, event_logger=event_logger)


def _health_change_logger(event_logger: JSONLLogger) -> Callable[[HealthStatus], None]:
    """Listener that records health transitions, not every poll."""
    last: list[tuple[HealthState, str | None]] = []

    def listener(status: HealthStatus) -> None:
        current = (status.state, status.resolved_model)
        if last and last[0] == current:
            return
        last[:] = [current]
        event_logger.log_health_check(
            status.provider,
            status.state.value,
            model=status.resolved_model,
            message=status.message,
        )

    return listener


def resolve_uri(service: DojoService, value: str) -> str | None:
    """Accept either a full identifier or a display name."""
    parsed = parse(value)
    if parsed is not None:
        return str(parsed)
    subject = service.resolver.resolve_subject(value)
    return subject.uri if subject else None


def _format_state(state: HealthState) -> str:
    color = _STATE_COLORS.get(state, "")
    return f"{color}{state.value}\033[0m" if color else state.value


# ----------------------------------------------------------------------
# Subcommands
# ----------------------------------------------------------------------


async def cmd_summon(service: DojoService, args: argparse.Namespace) -> int:
    """Submit one summoning."""
    text = " ".join(args.text)
    result = await service.process_summoning(text, RoloMetadata(trigger=args.trigger))
    print(result.message)
    return 0


async def cmd_delete(service: DojoService, args: argparse.Namespace) -> int:
    """Soft-delete one fact."""
    uri = resolve_uri(service, args.subject)
    if uri is None:
        print(f"Unknown subject: {args.subject}", file=sys.stderr)
        return 1
    try:
        attribute = await service.delete_attribute(uri, args.key)
    except AttributeNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Deleted {attribute.key} from {uri} (rolo {attribute.last_rolo_id})")
    return 0


async def cmd_facts(service: DojoService, args: argparse.Namespace) -> int:
    """List the facts stored for a subject."""
    uri = resolve_uri(service, args.subject)
    if uri is None:
        print(f"Unknown subject: {args.subject}", file=sys.stderr)
        return 1

    attributes = service.get_attributes(uri, include_deleted=args.all)
    if not attributes:
        print(f"No facts stored for {uri}.")
        return 0

    print(f"\n{uri}")
    print("-" * 60)
    for attribute in attributes:
        if attribute.is_deleted:
            value = "(deleted)"
        elif attribute.is_sensitive and not args.reveal:
            value = MASK
        else:
            value = attribute.value
        print(f"{format_key(attribute.key):<24} {value:<24} [{attribute.last_rolo_id[:8]}]")
    return 0


async def cmd_history(service: DojoService, args: argparse.Namespace) -> int:
    """Show the ledger entries behind one fact."""
    uri = resolve_uri(service, args.subject)
    if uri is None:
        print(f"Unknown subject: {args.subject}", file=sys.stderr)
        return 1

    history = service.get_attribute_history(uri, args.key)
    if not history:
        print(f"No history for {args.key} on {uri}.")
        return 0

    for entry in history:
        print(f"{entry.timestamp.isoformat(timespec='seconds')}  {entry.rolo_id[:8]}  {entry.summoning_text}")
    return 0


async def cmd_recent(service: DojoService, args: argparse.Namespace) -> int:
    """Show the latest ledger entries."""
    rolos = service.get_recent_rolos(limit=args.limit)
    if not rolos:
        print("The ledger is empty.")
        return 0

    for rolo in rolos:
        target = rolo.target_uri or "-"
        print(
            f"{rolo.timestamp.isoformat(timespec='seconds')}  {rolo.kind.value:<9} "
            f"{target:<24} {rolo.summoning_text}"
        )
    return 0


async def cmd_health(service: DojoService, args: argparse.Namespace) -> int:
    """Check the inference endpoint."""
    if service.sensei is None:
        print("No inference provider configured; rule-based extraction only.")
        return 0

    status = await service.sensei.check_health(force=True)
    print(f"Provider: {service.sensei.config.provider.label}")
    print(f"State:    {_format_state(status.state)}")
    if status.resolved_model:
        print(f"Model:    {status.resolved_model}")
    print(status.message)
    return 0 if status.is_healthy else 1


COMMANDS = {
    "summon": cmd_summon,
    "delete": cmd_delete,
    "facts": cmd_facts,
    "history": cmd_history,
    "recent": cmd_recent,
    "health": cmd_health,
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="rolodojo",
        description="Audited personal ledger of facts about people and things",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    summon = subparsers.add_parser("summon", help="Record a fact or ask a question")
    summon.add_argument("text", nargs="+", help="The summoning text")
    summon.add_argument("--trigger", default=None, help="Trigger label (default: Manual_Entry)")

    delete = subparsers.add_parser("delete", help="Soft-delete a fact")
    delete.add_argument("subject", help="Identifier (dojo.con.joe) or name (Joe)")
    delete.add_argument("key", help="Attribute key, e.g. coffee")

    facts = subparsers.add_parser("facts", help="List facts for a subject")
    facts.add_argument("subject", help="Identifier or name")
    facts.add_argument("-a", "--all", action="store_true", help="Include deleted facts")
    facts.add_argument("--reveal", action="store_true", help="Show sensitive values")

    history = subparsers.add_parser("history", help="Show the audit trail of a fact")
    history.add_argument("subject", help="Identifier or name")
    history.add_argument("key", help="Attribute key")

    recent = subparsers.add_parser("recent", help="Show the latest ledger entries")
    recent.add_argument("-n", "--limit", type=int, default=20, help="Number of entries")

    subparsers.add_parser("health", help="Check the inference endpoint")

    return parser


async def run_command(args: argparse.Namespace, service: DojoService) -> int:
    """Dispatch a parsed subcommand."""
    handler = COMMANDS.get(args.command)
    if handler is None:
        return 1
    return await handler(service, args)


# ----------------------------------------------------------------------
# Interactive mode
# ----------------------------------------------------------------------


class CLI:
    """Interactive prompt over a DojoService."""

    def __init__(self, service: DojoService) -> None:
        self.service = service

    async def _handle_command(self, command: str) -> bool:
        """Handle a slash command. Returns True to continue, False to exit."""
        cmd = command.lower().strip()

        if cmd in ("/exit", "/quit", "exit", "quit"):
            print("\nGoodbye!")
            return False

        if cmd == "/help":
            print(BANNER)
            return True

        if cmd == "/recent":
            await cmd_recent(self.service, argparse.Namespace(limit=10))
            return True

        if cmd == "/health":
            await cmd_health(self.service, argparse.Namespace())
            return True

        print(f"Unknown command: {command}")
        return True

    async def _process_message(self, message: str) -> None:
        result = await self.service.process_summoning(message)
        print(f"  {result.message}")

    async def run(self) -> None:
        """Run the interactive loop until exit or EOF."""
        print(BANNER)
        if self.service.sensei is not None:
            await self.service.sensei.start()

        while True:
            try:
                user_input = (await asyncio.to_thread(input, "dojo> ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                break

            if not user_input:
                continue

            if user_input.startswith("/") or user_input.lower() in ("exit", "quit"):
                if not await self._handle_command(user_input):
                    break
                continue

            await self._process_message(user_input)


async def _run(args: argparse.Namespace, config: DojoConfig) -> int:
    event_logger = configure_logger(config.log_dir, max_size_mb=config.log_max_size_mb)
    service = build_service(config, event_logger)
    try:
        if args.command is None:
            await CLI(service).run()
            return 0
        return await run_command(args, service)
    finally:
        await service.close()


def run_dojo_cli(argv: list[str] | None = None, config: DojoConfig | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.
        config: Configuration; loaded from disk and environment if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    args = create_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args, config or load_config()))
