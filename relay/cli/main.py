#!/usr/bin/env python3

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv, find_dotenv

from relay.app import ApplicationContext
from relay.config import (
    Config,
    ConfigLoader,
    ProviderName,
    get_default_model,
    get_model_mode_pairs,
)
from relay.errors import RelayError
from relay.executor import build_options_from_cli
from relay.fallback import ResolutionPath, get_resolution_path_description
from relay.logger import configure_console_logging, logger

from .errors import report_relay_error


def load_environment() -> None:
    """Load .env files unless RELAY_DISABLE_DOTENV is set."""
    if Config.is_dotenv_disabled():
        return
    # 1. Current working directory and parents
    load_dotenv(find_dotenv(usecwd=True), override=False)
    # 2. User's home directory
    load_dotenv(Path.home() / ".env", override=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relay",
        description="Relay - run multi-stage LLM commands against any configured provider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--project-dir",
        help="Project directory holding .relay/ (default: current directory)"
    )

    subparsers = parser.add_subparsers(
        dest="resource",
        help="Available commands",
        metavar="<command>"
    )

    run_parser = subparsers.add_parser(
        "run",
        help="Run a command",
        description="Run a command pipeline, e.g. 'relay run implement plan.md'"
    )
    run_parser.add_argument("command", help="Command name")
    run_parser.add_argument("args", nargs="*", help="Positional arguments ($ARG_1, $ARG_2, ...)")
    run_parser.add_argument("--provider", help="Override provider")
    run_parser.add_argument("--model", help="Override model")
    run_parser.add_argument("--mode", help="Override model mode")
    run_parser.add_argument("--agent", help="Use this agent role (skips dynamic selection)")
    run_parser.add_argument("--session-id", help="Continue an existing session")
    run_parser.add_argument(
        "--interactive",
        dest="interactive",
        action="store_true",
        default=None,
        help="Allow interactive prompts (default: when stdin is a terminal)"
    )
    run_parser.add_argument(
        "--no-interactive",
        dest="interactive",
        action="store_false",
        help="Never prompt"
    )
    run_parser.add_argument(
        "--isolated",
        action="store_true",
        help="Run without session context or earlier stage outputs"
    )
    run_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    subparsers.add_parser("commands", help="List available commands")
    subparsers.add_parser("agents", help="List available agent roles")
    subparsers.add_parser("providers", help="List providers and their configuration state")
    return parser


def main(argv: Optional[list] = None):
    """Main entry point."""
    load_environment()

    parser = build_parser()
    args = parser.parse_args(argv)
    configure_console_logging(verbose=args.verbose)

    if args.resource is None:
        parser.print_help()
        sys.exit(1)

    project_dir = Path(args.project_dir) if args.project_dir else None
    try:
        if args.resource == "run":
            run_command(args, project_dir)
        elif args.resource == "commands":
            list_commands_command(project_dir)
        elif args.resource == "agents":
            list_agents_command(project_dir)
        elif args.resource == "providers":
            list_providers_command(project_dir)
    except RelayError as e:
        logger.debug(f"Command failed: {e.to_dict()}")
        report_relay_error(e, verbose=args.verbose)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


def run_command(args, project_dir: Optional[Path] = None):
    app = ApplicationContext(project_dir)
    try:
        execution = app.executor.execute(args.command, build_options_from_cli(args))
    finally:
        app.close()

    result = execution.result
    if args.json:
        print(json.dumps({
            "command": result.command_name,
            "success": result.success,
            "agent": execution.agent,
            "session_id": execution.session.session_id,
            "guided_prompt": result.guided_prompt,
            "outputs": result.outputs,
            "duration": round(result.duration, 3),
        }, indent=2, default=str))
        return

    if result.guided:
        print(result.guided_prompt)
        return

    for stage, outputs in result.outputs.items():
        print(f"── {stage} ──")
        for key, value in outputs.items():
            text = value if isinstance(value, str) else json.dumps(value, indent=2, default=str)
            print(f"{key}: {text}")
        print()
    print(f"Session: {execution.session.session_id}", file=sys.stderr)


def list_commands_command(project_dir: Optional[Path] = None):
    app = ApplicationContext(project_dir)
    names = app.command_loader.list_commands()
    if not names:
        print("No commands found.")
        return

    print(f"\nAvailable commands ({len(names)} total):")
    print("-" * 80)
    print(f"{'Name':20} {'Description':60}")
    print("-" * 80)
    for name in names:
        try:
            desc = app.command_loader.load(name).description or "No description available"
        except RelayError:
            desc = "(Error loading command)"
        desc = desc[:57] + "..." if len(desc) > 60 else desc
        print(f"{name:20} {desc:60}")


def list_agents_command(project_dir: Optional[Path] = None):
    app = ApplicationContext(project_dir)
    agents = app.agent_loader.list_agents()
    print(f"\nAvailable agents ({len(agents)} total):")
    print("-" * 80)
    for profile in agents:
        desc = profile.description[:52] + "..." if len(profile.description) > 55 else profile.description
        print(f"{profile.name:42} {desc}")


def list_providers_command(project_dir: Optional[Path] = None):
    loader = ConfigLoader(project_dir=project_dir)
    configured = set(loader.get_configured_providers())
    in_host = Config.is_zero_config_host()

    print(f"Zero-config host: {'yes' if in_host else 'no'}")
    print("-" * 80)
    for provider in ProviderName:
        if provider is ProviderName.CURSOR:
            state = "host sampling" if in_host else "requires host"
        else:
            state = "configured" if provider.value in configured else "not configured"
        print(f"{provider.value:10} {state:16} default: {get_default_model(provider.value)}")
        pairs = ", ".join(f"{model} ({mode})" for model, mode in get_model_mode_pairs(provider.value)[:4])
        print(f"{'':10} {pairs}")

    if in_host and not configured:
        print(f"\n{get_resolution_path_description(ResolutionPath.GUIDED)}")


if __name__ == "__main__":
    main()
