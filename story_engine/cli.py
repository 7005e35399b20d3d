from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Any

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table

from story_engine.client.session import StoryController
from story_engine.config import load_config
from story_engine.config.loader import masked_env_snapshot
from story_engine.config.schema import AppConfigRoot
from story_engine.domain.models import GenerationResult, RequestClass, SceneChoice, StorySceneRequest, UserSession
from story_engine.export.story import export_story
from story_engine.history.store import FileStorageBackend, HistoryStore
from story_engine.pipeline.clients import build_clients
from story_engine.pipeline.service import generate_scenarios, generate_story_scene
from story_engine.playback.machine import PlaybackMachine
from story_engine.playback.scheduler import AsyncioScheduler
from story_engine.quota.guard import QuotaGuard
from story_engine.storage.db import DatabaseService, init_db_service, session_scope, shutdown_db_service
from story_engine.storage.repo import SQLAlchemyRepo
from story_engine.utils.logging import setup_logging

console = Console()


class _HeadlessSink:
    """Audio sink for the terminal: nothing is played."""

    def load(self, audio_data: str | None) -> None:
        return None

    def play(self) -> None:
        return None

    def pause(self) -> None:
        return None

    def stop(self) -> None:
        return None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="story-engine")
    parser.add_argument("--config", type=Path, default=None, help="Path to custom config YAML")
    parser.add_argument("--profile", type=str, default=None, help="Config profile name")
    parser.add_argument("--output-dir", type=Path, default=None, help="Override output directory")
    parser.add_argument("--data-dir", type=Path, default=None, help="Override data directory")
    parser.add_argument("--history-file", type=Path, default=None, help="Override saved story history file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("config", help="Validate and print effective config")

    user_parser = subparsers.add_parser("user", help="Manage users")
    user_sub = user_parser.add_subparsers(dest="user_command", required=True)
    user_add = user_sub.add_parser("add", help="Create (or look up) a user")
    user_add.add_argument("--provider-id", type=str, required=True, help="Identity provider subject id")
    user_add.add_argument("--provider", type=str, default="local", help="Identity provider name")
    user_add.add_argument("--name", type=str, default=None)
    user_add.add_argument("--email", type=str, default=None)
    user_add.add_argument("--language", type=str, default=None)
    user_sub.add_parser("list", help="List users")
    user_delete = user_sub.add_parser("delete", help="Delete a user and their quota rows")
    user_delete.add_argument("--user-id", type=str, required=True)

    scenarios_parser = subparsers.add_parser("scenarios", help="Generate starting scenarios")
    scenarios_parser.add_argument("--user-id", type=str, default=None, help="Acting user id")
    scenarios_parser.add_argument("--count", type=int, default=4, help="Number of scenarios")

    next_parser = subparsers.add_parser("next", help="Start an adventure or advance the saved one")
    next_parser.add_argument("--user-id", type=str, default=None, help="Acting user id")
    action = next_parser.add_mutually_exclusive_group(required=True)
    action.add_argument("--scenario", type=str, default=None, help="Start a new adventure from this text")
    action.add_argument("--choice", type=int, default=None, help="1-based choice on the current scene")
    action.add_argument("--retry", action="store_true", help="Resubmit the last request")
    next_parser.add_argument("--genre", type=str, default=None)
    next_parser.add_argument("--tone", type=str, default=None)
    next_parser.add_argument("--visual-style", type=str, default=None)
    next_parser.add_argument("--voice", type=str, default=None)

    quota_parser = subparsers.add_parser("quota", help="Show or reset a user's daily quota")
    quota_parser.add_argument("--user-id", type=str, required=True)
    quota_parser.add_argument("--reset", action="store_true", help="Reset counters")
    quota_parser.add_argument(
        "--request-class",
        choices=[item.value for item in RequestClass],
        default=None,
        help="Limit reset to one request class",
    )

    export_parser = subparsers.add_parser("export", help="Export the saved story")
    export_parser.add_argument("--out", type=Path, default=None, help="Export directory (default: output_dir/story)")

    return parser


def _build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    app_overrides: dict[str, Any] = {}
    if args.output_dir:
        app_overrides["output_dir"] = str(args.output_dir)
    if args.data_dir:
        app_overrides["data_dir"] = str(args.data_dir)
    if app_overrides:
        overrides["app"] = app_overrides
    if args.history_file:
        overrides["history"] = {"path": str(args.history_file)}
    return overrides


def _print_config(config: AppConfigRoot) -> None:
    env_snapshot = masked_env_snapshot(config)
    console.print(Panel(Pretty(config.model_dump(mode="json")), title="Effective Config"))
    console.print(Panel(Pretty(env_snapshot), title="Env Snapshot"))


def _history_store(config: AppConfigRoot) -> HistoryStore:
    backend = FileStorageBackend(config.history.path, config.history.max_bytes)
    return HistoryStore(backend, max_prune_attempts=config.history.max_prune_attempts)


def _session_for(user_id: str | None) -> UserSession | None:
    return UserSession(user_id=user_id) if user_id else None


def _print_result(result: GenerationResult) -> None:
    if result.rate_limit_error is not None:
        info = result.rate_limit_error
        console.print(Panel(f"{info.message}\nreset_timestamp={info.reset_timestamp}", title="Rate Limited"))
        return
    if result.error is not None:
        hint = "\nRun `story-engine next --retry` to try again." if result.is_retryable else ""
        console.print(Panel(f"{result.error}{hint}", title=f"Error ({result.error_kind})"))
        return

    scene = result.scene
    assert scene is not None
    console.print(Panel(scene.passage, title="Scene"))
    if scene.choices:
        table = Table(title="Choices", show_header=True, header_style="bold")
        table.add_column("#")
        table.add_column("Choice")
        for index, choice in enumerate(scene.choices, start=1):
            table.add_row(str(index), choice.text)
        console.print(table)
    else:
        console.print(Panel("The adventure has reached an ending.", title="The End"))
    for warning in result.media_warnings:
        console.print(f"[yellow]{warning.medium} unavailable:[/yellow] {warning.reason}")


async def _run_next(args: argparse.Namespace, config: AppConfigRoot, db: DatabaseService) -> None:
    clients = build_clients(config, db)
    session = _session_for(args.user_id)

    async def _fetch(request: StorySceneRequest) -> GenerationResult:
        return await generate_story_scene(request, session, clients=clients, config=config)

    machine = PlaybackMachine(
        AsyncioScheduler(),
        _HeadlessSink(),
        choice_fallback_ms=config.playback.choice_fallback_ms,
        crossfade_ms=config.playback.crossfade_ms,
    )
    controller = StoryController(_fetch, machine, history_store=_history_store(config))

    if args.scenario is not None:
        scenario = SceneChoice(
            text=args.scenario,
            genre=args.genre,
            tone=args.tone,
            visual_style=args.visual_style,
            voice=args.voice,
        )
        result = await controller.start(scenario)
        _print_result(result)
        return

    restored = controller.restore()
    if args.retry:
        if not controller.can_retry:
            console.print(Panel("There is no failed request to retry.", title="Nothing to do"))
            return
        result = await controller.retry_last()
        _print_result(result)
        return

    if not restored:
        console.print(Panel("No saved scene. Start one with `story-engine next --scenario ...`.", title="Nothing to do"))
        return

    scene = controller.current_scene
    assert scene is not None
    if not 1 <= args.choice <= len(scene.choices):
        message = "The adventure has ended." if scene.is_terminal else f"Pick a choice between 1 and {len(scene.choices)}."
        console.print(Panel(message, title="Invalid choice"))
        return

    # Without a media element the fallback timer is what reveals the choices.
    await asyncio.sleep(config.playback.choice_fallback_ms / 1000 + 0.05)
    result = await controller.choose(args.choice - 1)
    _print_result(result)


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    overrides = _build_overrides(args)
    config = load_config(
        config_path=args.config,
        profile=args.profile,
        overrides=overrides,
    )

    setup_logging(config.app.log_level)
    logger.info("Loaded configuration")

    if args.command == "config":
        _print_config(config)
        return

    if args.command == "export":
        snapshot = _history_store(config).load()
        if snapshot is None:
            console.print(Panel("No saved story to export.", title="Export"))
            return
        result = export_story(snapshot, args.out or (config.app.output_dir / "story"))
        console.print(Panel(str(result.output_dir), title="Exported"))
        return

    db = await init_db_service(config.storage.sqlite_path, busy_timeout_ms=config.storage.busy_timeout_ms)

    try:
        if args.command == "user":
            async with session_scope() as session:
                repo = SQLAlchemyRepo(session)
                if args.user_command == "add":
                    created = await repo.get_or_create_user(
                        provider_id=args.provider_id,
                        provider=args.provider,
                        name=args.name,
                        email=args.email,
                        language=args.language,
                    )
                    status = "created" if created.inserted else "existing"
                    console.print(Panel(f"user_id={created.id} ({status})", title="User"))
                    return
                if args.user_command == "delete":
                    deleted = await repo.delete_user(args.user_id)
                    console.print(Panel("deleted" if deleted else "not found", title="User"))
                    return
                users = await repo.list_users()
            table = Table(title="Users", show_header=True, header_style="bold")
            for column in ("ID", "Provider", "Provider ID", "Name", "Last Login"):
                table.add_column(column)
            for user in users:
                table.add_row(user.id, user.provider, user.provider_id, user.name or "", str(user.last_login or ""))
            console.print(table)
            return

        if args.command == "scenarios":
            clients = build_clients(config, db)
            result = await generate_scenarios(_session_for(args.user_id), clients=clients, config=config, count=args.count)
            if result.scenarios is None:
                message = result.rate_limit_error.message if result.rate_limit_error else result.error
                console.print(Panel(str(message), title=f"Error ({result.error_kind})"))
                return
            table = Table(title="Scenarios", show_header=True, header_style="bold")
            for column in ("#", "Scenario", "Genre", "Tone", "Visual Style"):
                table.add_column(column)
            for index, scenario in enumerate(result.scenarios, start=1):
                table.add_row(str(index), scenario.text, scenario.genre or "", scenario.tone or "", scenario.visual_style or "")
            console.print(table)
            return

        if args.command == "next":
            await _run_next(args, config, db)
            return

        if args.command == "quota":
            if args.reset:
                async with session_scope() as session:
                    removed = await SQLAlchemyRepo(session).reset_quota(args.user_id, args.request_class)
                console.print(Panel(f"Reset {removed} quota row(s)", title="Quota"))
                return
            guard = QuotaGuard(db, config.quota.limits)
            table = Table(title=f"Quota for {args.user_id}", show_header=True, header_style="bold")
            for column in ("Class", "Limit", "Remaining", "Resets At (ms)"):
                table.add_column(column)
            for request_class in RequestClass:
                usage = await guard.peek(args.user_id, request_class)
                table.add_row(request_class.value, str(usage.limit), str(usage.remaining), str(usage.reset_timestamp))
            console.print(table)
            return
    finally:
        await shutdown_db_service()


def main() -> None:
    asyncio.run(_main_async())


if __name__ == "__main__":
    main()
