"""CLI: chat-dispatch models, ask, config validate."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from ..channels import StdoutChannel
from ..config import load_config, validate_config
from ..dispatcher import ChatDispatcher
from ..types import DispatchError, DispatchRequest, QuoteItem


def _load_quotes(path: str | None) -> list[QuoteItem]:
    if not path:
        return []
    raw = json.loads(Path(path).read_text())
    if not isinstance(raw, list):
        raise ValueError("Quotes file must contain a JSON list of objects")
    return [
        QuoteItem(fields={k: str(v) for k, v in item.items()})
        for item in raw
        if isinstance(item, dict)
    ]


def cmd_models(args):
    """List the configured model capability table."""
    config = load_config(args.config)

    if not config.models:
        print("No models configured.")
        return

    print(f"{'Model':<28} {'Context':>8} {'Quotes':>8} {'MaxTemp':>8} {'$/1k':>9} {'Format':>10}")
    print("-" * 76)
    for caps in config.models.values():
        marker = "*" if caps.model == config.default_model else " "
        print(
            f"{marker}{caps.model:<27} {caps.context_max_token:>8,} {caps.quote_max_token:>8,} "
            f"{caps.max_temperature:>8.2f} {caps.price_per_1k:>9.4f} {caps.api_format:>10}"
        )


def cmd_ask(args):
    """Dispatch one question and print the answer and usage."""
    try:
        quotes = _load_quotes(args.quotes)
    except (OSError, ValueError) as e:
        print(f"Error loading quotes: {e}", file=sys.stderr)
        sys.exit(1)

    dispatcher = ChatDispatcher(config_path=args.config)
    request = DispatchRequest(
        question=args.question,
        module_name="cli",
        model=args.model or "",
        temperature=args.temperature,
        max_tokens=args.max_tokens,
        quotes=quotes,
        system_prompt=args.system or "",
        limit_prompt=args.limit or "",
        stream=not args.no_stream,
    )
    channel = StdoutChannel() if request.stream else None

    try:
        result = asyncio.run(dispatcher.dispatch(request, channel=channel))
    except DispatchError as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)

    if not request.stream:
        print(result.answer_text)
    else:
        print()

    usage = result.usage
    print()
    print("Usage")
    print("=" * 40)
    print(f"Model:       {usage.model}")
    print(f"Tokens:      {usage.total_tokens:,}")
    print(f"Max tokens:  {usage.max_token:,}")
    print(f"Quotes used: {len(usage.quote_list)}/{len(quotes)}")
    print(f"Price:       ${usage.price:.6f}")


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Models: {len(config.models)} (default: {config.default_model})")
        print(f"  Upstream: {config.upstream.base_url} ({config.upstream.api_format})")
        print(f"  Token counter: {config.token_counter}")
        print(f"  Request timeout: {config.request_timeout:.0f}s")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="chat-dispatch",
        description="Token-budgeted chat completion dispatch",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # models
    subparsers.add_parser("models", help="List configured models")

    # ask
    ask_parser = subparsers.add_parser("ask", help="Send one question to a model")
    ask_parser.add_argument("question", help="Question text")
    ask_parser.add_argument("--model", "-m", help="Model id (default: config default_model)")
    ask_parser.add_argument("--temperature", "-t", type=float, default=0.0, help="Temperature, 0-10 scale")
    ask_parser.add_argument("--max-tokens", type=int, default=None, help="Requested response tokens")
    ask_parser.add_argument("--system", help="System prompt")
    ask_parser.add_argument("--limit", help="Limit prompt placed right before the question")
    ask_parser.add_argument("--quotes", help="JSON file with a list of quote objects")
    ask_parser.add_argument("--no-stream", action="store_true", help="Wait for the full answer")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "models":
        cmd_models(args)
    elif args.command == "ask":
        cmd_ask(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: chat-dispatch config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
