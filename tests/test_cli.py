"""Tests for CLI."""

import asyncio
import time
from dataclasses import replace
from pathlib import Path

import pytest

from rolodojo.cli import CLI, MASK, build_service, create_parser, resolve_uri, run_command, run_dojo_cli
from rolodojo.config import DojoConfig
from rolodojo.dojo import DojoService
from rolodojo.ledger import LedgerStore
from rolodojo.logging import JSONLLogger
from rolodojo.sensei import HealthState, HealthStatus


@pytest.fixture
def service(tmp_path: Path) -> DojoService:
    store = LedgerStore(tmp_path / "test_cli.db")
    store.init_db()
    yield DojoService(store)
    store.close()


async def run(service: DojoService, *argv: str) -> int:
    return await run_command(create_parser().parse_args(list(argv)), service)


class TestParser:
    def test_summon_joins_words(self):
        args = create_parser().parse_args(["summon", "Joe's", "coffee", "is", "Espresso"])
        assert args.command == "summon"
        assert args.text == ["Joe's", "coffee", "is", "Espresso"]
        assert args.trigger is None

    def test_no_subcommand(self):
        args = create_parser().parse_args([])
        assert args.command is None

    def test_recent_limit(self):
        assert create_parser().parse_args(["recent", "-n", "5"]).limit == 5


class TestCommands:
    """Tests for the one-shot subcommands."""

    @pytest.mark.asyncio
    async def test_summon(self, service: DojoService, capsys):
        assert await run(service, "summon", "Joe's", "coffee", "is", "Espresso") == 0
        assert "Created Joe with Coffee: Espresso" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_summon_trigger(self, service: DojoService):
        await run(service, "summon", "--trigger", "Gmail_Sync", "Joe's coffee is Espresso")
        assert service.get_recent_rolos(1)[0].metadata.trigger == "Gmail_Sync"

    @pytest.mark.asyncio
    async def test_facts_masks_sensitive(self, service: DojoService, capsys):
        await service.process_summoning("Gate code for Railroad is 1234")
        capsys.readouterr()

        assert await run(service, "facts", "Railroad") == 0
        out = capsys.readouterr().out
        assert MASK in out
        assert "1234" not in out

        await run(service, "facts", "Railroad", "--reveal")
        assert "1234" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_facts_unknown_subject(self, service: DojoService, capsys):
        assert await run(service, "facts", "Nobody") == 1
        assert "Unknown subject" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_delete_and_history(self, service: DojoService, capsys):
        await service.process_summoning("Joe's coffee is Espresso")

        assert await run(service, "delete", "dojo.con.joe", "coffee") == 0
        assert "Deleted coffee from dojo.con.joe" in capsys.readouterr().out

        await run(service, "facts", "Joe", "--all")
        assert "(deleted)" in capsys.readouterr().out

        await run(service, "history", "Joe", "coffee")
        assert "Joe's coffee is Espresso" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_delete_missing(self, service: DojoService, capsys):
        await service.process_summoning("Joe's coffee is Espresso")
        assert await run(service, "delete", "Joe", "birthday") == 1
        assert "Error" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_recent(self, service: DojoService, capsys):
        assert await run(service, "recent") == 0
        assert "The ledger is empty." in capsys.readouterr().out

        await service.process_summoning("Joe's coffee is Espresso")
        await run(service, "recent")
        out = capsys.readouterr().out
        assert "INPUT" in out
        assert "dojo.con.joe" in out

    @pytest.mark.asyncio
    async def test_health_without_sensei(self, service: DojoService, capsys):
        assert await run(service, "health") == 0
        assert "rule-based extraction only" in capsys.readouterr().out

    def test_resolve_uri(self, service: DojoService):
        assert resolve_uri(service, "dojo.ent.railroad") == "dojo.ent.railroad"
        assert resolve_uri(service, "Nobody") is None


class TestInteractive:
    """Tests for the interactive prompt."""

    @pytest.mark.asyncio
    async def test_handle_command_exit(self, service: DojoService):
        cli = CLI(service)
        assert await cli._handle_command("/exit") is False
        assert await cli._handle_command("quit") is False

    @pytest.mark.asyncio
    async def test_handle_command_help(self, service: DojoService, capsys):
        assert await CLI(service)._handle_command("/help") is True
        assert "/recent" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_unknown_command(self, service: DojoService, capsys):
        assert await CLI(service)._handle_command("/nope") is True
        assert "Unknown command" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_run_loop(self, service: DojoService, monkeypatch, capsys):
        inputs = iter(["Joe's coffee is Espresso", "", "What is Joe's coffee?", "/exit"])
        monkeypatch.setattr("builtins.input", lambda prompt: next(inputs))

        await CLI(service).run()

        out = capsys.readouterr().out
        assert "Created Joe with Coffee: Espresso" in out
        assert "Joe's Coffee is Espresso." in out
        assert "Goodbye!" in out

    @pytest.mark.asyncio
    async def test_prompt_does_not_block_event_loop(self, service: DojoService, monkeypatch):
        """Background tasks keep running while the prompt waits for input."""
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0.01)

        def slow_input(prompt):
            time.sleep(0.1)
            return "/exit"

        monkeypatch.setattr("builtins.input", slow_input)
        task = asyncio.create_task(ticker())
        try:
            await CLI(service).run()
        finally:
            task.cancel()

        assert ticks > 2

    @pytest.mark.asyncio
    async def test_run_stops_on_eof(self, service: DojoService, monkeypatch):
        def eof(prompt):
            raise EOFError

        monkeypatch.setattr("builtins.input", eof)
        await CLI(service).run()


class TestWiring:
    def test_build_service_logs_health_transitions(self, tmp_path: Path):
        config = DojoConfig(home=tmp_path)
        event_logger = JSONLLogger(log_dir=tmp_path / "logs")
        service = build_service(config, event_logger)

        healthy = HealthStatus(HealthState.HEALTHY, provider="local", resolved_model="llama3.3")
        service.sensei.health.set(healthy)
        service.sensei.health.set(replace(healthy, message="again"))
        service.sensei.health.set(HealthStatus(HealthState.UNREACHABLE, provider="local"))

        lines = event_logger.log_path.read_text().splitlines()
        assert len(lines) == 2
        assert config.db_path.exists()
        service.store.close()

    def test_run_dojo_cli_summon(self, tmp_path: Path, capsys):
        config = DojoConfig(home=tmp_path)
        assert run_dojo_cli(["summon", "Joe's coffee is Espresso"], config=config) == 0
        assert "Created Joe" in capsys.readouterr().out
        assert (tmp_path / "logs" / "events.jsonl").exists()
