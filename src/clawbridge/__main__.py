"""CLI entry point for clawbridge."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone

from clawbridge.app import ClawbridgeApp, build_pairing_gate
from clawbridge.config import AppConfig, load_config
from clawbridge.errors import ConfigError
from clawbridge.log import setup_logging


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clawbridge",
        description="Chat-platform bridge to a tool-using Claude agent",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    start_parser = subparsers.add_parser("start", help="Start the bot")
    _add_config_args(start_parser)

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    pairing_parser = subparsers.add_parser("pairing", help="Manage paired users")
    _add_config_args(pairing_parser)
    pairing_sub = pairing_parser.add_subparsers(dest="action", required=True)
    pairing_sub.add_parser("list", help="List paired users")
    revoke_parser = pairing_sub.add_parser("revoke", help="Remove a paired user")
    revoke_parser.add_argument("platform")
    revoke_parser.add_argument("user_id")
    approve_parser = pairing_sub.add_parser("approve-user", help="Approve a user without a code")
    approve_parser.add_argument("platform")
    approve_parser.add_argument("user_id")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "pairing":
        _pairing(args)
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    agent = config.agent
    model = config.claude_code.model if agent.backend == "claude_code" else agent.model
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Backend: {agent.backend} ({model})")
    print(f"  Max tool rounds: {agent.max_tool_rounds}")
    print(f"  Tools: {'enabled' if config.enable_tools else 'disabled'}", end="")
    print(f" [{', '.join(agent.tools)}]" if config.enable_tools and agent.tools else "")
    print(f"  Owner: {config.owner_id or '(not set)'}")
    print(f"  Pairing: {'required' if config.pairing.require_pairing else 'off'} ({config.pairing.store_path})")
    print(f"  Platforms configured: {len(config.platforms)}")
    for platform in config.platforms:
        state = "enabled" if platform.enabled else "disabled"
        token = "token set" if platform.token else "NO TOKEN"
        print(f"    - {platform.type} [{state}, {token}]")


def _pairing(args: argparse.Namespace) -> None:
    config = _load_or_exit(args.config, args.env)
    setup_logging("WARNING")
    gate = build_pairing_gate(config)

    if args.action == "list":
        records = gate.list()
        if not records:
            print("No paired users")
            return
        for record in records:
            paired = datetime.fromtimestamp(record.paired_at / 1000, tz=timezone.utc)
            state = "approved" if record.approved else "pending"
            print(f"{record.platform}:{record.user_id}  {state}  {paired.isoformat(timespec='seconds')}")
    elif args.action == "revoke":
        if gate.revoke(args.platform, args.user_id):
            print(f"Revoked {args.platform}:{args.user_id}")
        else:
            print(f"{args.platform}:{args.user_id} was not paired")
    elif args.action == "approve-user":
        gate.approve_user(args.platform, args.user_id)
        print(f"User {args.user_id} approved successfully")


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, json_output=config.log_json)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(_signal_handler))

        app = ClawbridgeApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
