"""CLI entry point for teleassist."""

from __future__ import annotations

import argparse
import asyncio
import sys

from teleassist.ai.models import ModelRegistry
from teleassist.ai.router import ModelRouter, detect_intent
from teleassist.app import TeleAssistApp
from teleassist.config import AppConfig, load_config
from teleassist.core.types import Platform
from teleassist.log import setup_logging
from teleassist.messenger.console import ConsoleAdapter
from teleassist.messenger.models import IncomingMessage


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="teleassist",
        description="Chat assistant turn engine backed by OpenRouter",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    models_parser = subparsers.add_parser("models", help="List model presets")
    _add_config_args(models_parser)

    intent_parser = subparsers.add_parser("intent", help="Show the detected intent and routed model")
    _add_config_args(intent_parser)
    intent_parser.add_argument("text", nargs="+", help="Message text")

    ask_parser = subparsers.add_parser("ask", help="Run one turn and print the reply")
    _add_config_args(ask_parser)
    ask_parser.add_argument("text", nargs="+", help="Message text")
    ask_parser.add_argument("-m", "--model", default=None, help="Model preset key or raw model id")

    chat_parser = subparsers.add_parser("chat", help="Interactive console session")
    _add_config_args(chat_parser)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load_or_exit(args.config, args.env)
    setup_logging(config.log_level, config.json_logs)

    if args.command == "models":
        _list_models(config)
    elif args.command == "intent":
        _show_intent(config, " ".join(args.text))
    elif args.command == "ask":
        asyncio.run(_ask(config, " ".join(args.text), args.model))
    elif args.command == "chat":
        asyncio.run(_chat(config))


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and fill in OPENROUTER_API_KEY.", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Endpoint    : {config.openrouter.base_url}")
    print(f"  API key     : {'set' if config.openrouter.api_key else 'MISSING'}")
    print(f"  Storage     : {config.storage.db_path}")
    print(f"  Lock        : ttl={config.lock.ttl}s max_wait={config.lock.max_wait}s")
    print(f"  Rate limit  : {config.rate_limit.max_events} per {config.rate_limit.window}s")
    if not config.openrouter.api_key:
        sys.exit(1)


def _list_models(config: AppConfig) -> None:
    registry = ModelRegistry(config.models)
    print("Model presets")
    print("=" * 50)
    for profile in registry.all():
        print(f"\n  {profile.key} ({profile.label})")
        print(f"    Model   : {profile.id or registry.fallback_model_id}")
        print(f"    Temp    : {profile.temperature}")
        print(f"    Tokens  : {profile.max_tokens}")
        print(f"    About   : {profile.description}")
    print()


def _show_intent(config: AppConfig, text: str) -> None:
    intent = detect_intent(text)
    routed = ModelRouter(ModelRegistry(config.models)).route(None, intent)
    print(f"Intent : {intent}")
    print(f"Model  : {routed.model_id} ({routed.model_key})")
    print(f"Temp   : {routed.temperature}")
    print(f"Tokens : {routed.max_tokens}")


async def _ask(config: AppConfig, text: str, model: str | None) -> None:
    adapter = ConsoleAdapter()
    app = TeleAssistApp(config, adapter)
    await app.start()
    try:
        if model:
            app.session(str(adapter.chat_id)).model_key = model
        await app.handle_message(
            IncomingMessage(platform=Platform.CONSOLE, chat_id=adapter.chat_id, user_id=adapter.user_id, text=text)
        )
        await adapter.flush()
    finally:
        await app.stop()


async def _chat(config: AppConfig) -> None:
    adapter = ConsoleAdapter()
    app = TeleAssistApp(config, adapter)
    await app.start()
    print("Type a message. Commands: /model [key], /reset, /stop, /quit")
    try:
        await adapter.run()
    finally:
        await app.stop()


if __name__ == "__main__":
    main()
