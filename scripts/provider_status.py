#!/usr/bin/env python3
"""
Usage: scripts/provider_status.py <command> [options]
Description: Inspect agent backends and run one-off generations.

Commands:
    check [--provider NAME] [--json]     Probe installation and auth of every provider
    models [--provider NAME] [--json]    List the models each provider serves
    run <model> <prompt...> [options]    Run one generation and stream its events

Run options:
    --cwd DIR            Working directory for the agent (default: current directory)
    --read-only          Forbid file mutation and tool use
    --tools A,B          Allowed tools (default: none)
    --thinking LEVEL     Thinking level: none, low, medium, high, ultrathink
    --timeout SECONDS    Stop the generation after this long

Examples:
    scripts/provider_status.py check
    scripts/provider_status.py models --provider cursor
    scripts/provider_status.py run sonnet "Summarize README.md" --tools Read
"""
import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import orjson

# Add project root to path for package imports
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_DIR = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_DIR))

from generation import EventBus, GenerationOrchestrator, GenerationParams, GenerationSettings
from providers import ProviderFactory

logger = logging.getLogger("provider_status")


def _select(name):
    if name is None:
        return ProviderFactory.get_all_providers()
    provider = ProviderFactory.get_provider_by_name(name)
    if provider is None:
        print(f"Error: unknown provider {name!r}", file=sys.stderr)
        sys.exit(2)
    return [provider]


async def check_providers(name=None):
    """Return {provider name: InstallationStatus} for one or all providers."""
    if name is None:
        return await ProviderFactory.check_all_providers()
    provider = _select(name)[0]
    return {provider.name: await provider.check_installation()}


def list_models(name=None):
    return {p.name: p.available_models() for p in _select(name)}


async def run_generation(model, prompt, cwd, read_only=False, tools=(), thinking=None, timeout=None):
    """Run one generation through the orchestrator, printing bus events. Returns the terminal payload."""
    settings = GenerationSettings.load()
    bus = EventBus()
    orchestrator = GenerationOrchestrator(bus, provider_config=settings.provider_config())
    terminal = {}

    def on_event(name, payload):
        if payload["type"] == "progress":
            print(payload["content"], end="", flush=True)
        else:
            terminal.update(payload)

    bus.subscribe(on_event)
    result = orchestrator.start("cli", GenerationParams(
        prompt=prompt,
        model=model,
        cwd=cwd,
        allowed_tools=tuple(tools),
        read_only=read_only,
        thinking_level=thinking,
    ))
    if not result.accepted:
        return {"type": "error", "error": result.error}

    try:
        if timeout:
            await asyncio.wait_for(orchestrator.wait("cli"), timeout=timeout)
        else:
            await orchestrator.wait("cli")
    except asyncio.TimeoutError:
        logger.warning("Timed out after %ss, stopping", timeout)
    finally:
        await orchestrator.shutdown()
    print()
    return terminal


def _print_status(statuses, as_json):
    if as_json:
        print(orjson.dumps({n: s.to_dict() for n, s in statuses.items()}, option=orjson.OPT_INDENT_2).decode())
        return
    print(f"{'PROVIDER':<15} {'INSTALLED':<10} {'AUTH':<6} {'VERSION':<24} ERROR")
    print("-" * 80)
    for name, status in statuses.items():
        print(
            f"{name:<15} {'yes' if status.installed else 'no':<10} "
            f"{'yes' if status.authenticated else 'no':<6} {(status.version or '-')[:24]:<24} "
            f"{status.error or ''}"
        )


def _print_models(models, as_json):
    if as_json:
        data = {
            name: [{"id": m.id, "name": m.name, "default": m.default} for m in defs]
            for name, defs in models.items()
        }
        print(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())
        return
    for name, defs in models.items():
        print(f"\n=== {name} ===")
        for m in defs:
            marker = " (default)" if m.default else ""
            print(f"  {m.id:<32} {m.name}{marker}")


def main():
    parser = argparse.ArgumentParser(description="Inspect agent backends")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Probe installation and auth")
    check.add_argument("--provider", default=None, help="Only this provider")
    check.add_argument("--json", action="store_true", help="Output as JSON")

    models = sub.add_parser("models", help="List available models")
    models.add_argument("--provider", default=None, help="Only this provider")
    models.add_argument("--json", action="store_true", help="Output as JSON")

    run = sub.add_parser("run", help="Run one generation")
    run.add_argument("model", help="Model id, e.g. sonnet, cursor-auto, codex-default, claude-chrome")
    run.add_argument("prompt", nargs="+", help="Prompt text")
    run.add_argument("--cwd", default=os.getcwd(), help="Working directory")
    run.add_argument("--read-only", action="store_true", help="Forbid file mutation")
    run.add_argument("--tools", default="", help="Comma-separated allowed tools")
    run.add_argument("--thinking", default=None, help="Thinking level")
    run.add_argument("--timeout", type=float, default=None, help="Stop after SECONDS")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "check":
        _print_status(asyncio.run(check_providers(args.provider)), args.json)
    elif args.command == "models":
        _print_models(list_models(args.provider), args.json)
    elif args.command == "run":
        tools = [t.strip() for t in args.tools.split(",") if t.strip()]
        terminal = asyncio.run(run_generation(
            args.model, " ".join(args.prompt), args.cwd,
            read_only=args.read_only, tools=tools, thinking=args.thinking, timeout=args.timeout,
        ))
        if terminal.get("type") != "complete":
            print(f"Error: {terminal.get('error', 'no result')}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
