"""CLI entry point for chatlog-agent."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
import uuid
from pathlib import Path

from chatlog_agent.ai.agent import history_from_dicts
from chatlog_agent.ai.tools.base import OwnerInfo
from chatlog_agent.app import ChatlogAgentApp
from chatlog_agent.config import AppConfig, load_config
from chatlog_agent.core.types import EmbeddingSource
from chatlog_agent.errors import ChatlogAgentError
from chatlog_agent.log import setup_logging
from chatlog_agent.rag.config import EmbeddingConfigManager, EmbeddingServiceConfig
from chatlog_agent.rag.embedding import validate_embedding_config


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="chatlog-agent",
        description="Ask an LLM agent questions about imported chat logs",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ask command
    ask_parser = subparsers.add_parser("ask", help="Ask a question about a chat")
    _add_config_args(ask_parser)
    ask_parser.add_argument("-s", "--session", required=True, help="Imported chat id (database file name)")
    ask_parser.add_argument("question", help="Question to ask")
    ask_parser.add_argument("--locale", default=None, help="Answer locale, e.g. zh-CN or en-US")
    ask_parser.add_argument("--history", default=None, help="JSON file with earlier [{role, content}] turns")
    ask_parser.add_argument("--owner-name", default=None, help="Your display name in the chat")
    ask_parser.add_argument("--owner-id", default=None, help="Your platform id in the chat")
    ask_parser.add_argument("--no-stream", action="store_true", help="Print only the final answer")

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    # embedding commands
    embedding_parser = subparsers.add_parser("embedding", help="Manage embedding configurations")
    _add_config_args(embedding_parser)
    embedding_sub = embedding_parser.add_subparsers(dest="action", required=True)
    embedding_sub.add_parser("list", help="List embedding configurations")
    add_parser = embedding_sub.add_parser("add", help="Add an embedding configuration")
    add_parser.add_argument("--name", required=True)
    add_parser.add_argument("--model", default="text-embedding-3-small")
    add_parser.add_argument("--base-url", default=None)
    add_parser.add_argument("--api-key", default="")
    add_parser.add_argument("--dimensions", type=int, default=None)
    add_parser.add_argument("--reuse-llm", action="store_true", help="Use the chat LLM's endpoint and key")
    add_parser.add_argument("--no-validate", action="store_true", help="Skip the test embedding request")
    activate_parser = embedding_sub.add_parser("activate", help="Make a configuration active")
    activate_parser.add_argument("config_id")
    delete_parser = embedding_sub.add_parser("delete", help="Delete a configuration")
    delete_parser.add_argument("config_id")

    # vectors commands
    vectors_parser = subparsers.add_parser("vectors", help="Inspect or clear the vector store")
    _add_config_args(vectors_parser)
    vectors_sub = vectors_parser.add_subparsers(dest="action", required=True)
    vectors_sub.add_parser("stats", help="Show vector store statistics")
    vectors_sub.add_parser("clear", help="Delete all stored vectors")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load_or_exit(args.config, args.env)
    setup_logging(config.log_level, json_output=config.log_json)

    if args.command == "ask":
        asyncio.run(_ask(config, args))
    elif args.command == "embedding":
        asyncio.run(_embedding(config, args))
    elif args.command == "vectors":
        asyncio.run(_vectors(config, args.action))


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    manager = EmbeddingConfigManager(config.storage.embedding_config_path)
    active = manager.get_active()
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  LLM: {config.llm.provider} / {config.llm.model}")
    print(f"  Agent: max_tool_rounds={config.agent.max_tool_rounds} locale={config.agent.locale}")
    print(f"  Chat databases: {config.storage.db_dir}")
    print(f"  Vector store: {config.storage.vector_db_path}")
    print(f"  Embedding: {f'{active.name} ({active.model})' if active else '(disabled)'}")
    print(f"  Rerank: {'on' if config.rag.rerank.enabled else 'off'}")


async def _ask(config: AppConfig, args: argparse.Namespace) -> None:
    history = None
    if args.history:
        history = history_from_dicts(json.loads(Path(args.history).read_text(encoding="utf-8")))
    owner_info = None
    if args.owner_name and args.owner_id:
        owner_info = OwnerInfo(display_name=args.owner_name, platform_id=args.owner_id)

    app = ChatlogAgentApp(config)
    await app.start()
    request_id = uuid.uuid4().hex[:12]

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, lambda: app.abort(request_id))
    except NotImplementedError:
        # Windows doesn't support add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: app.abort(request_id))

    options = {"history": history, "owner_info": owner_info, "locale": args.locale}
    try:
        if args.no_stream:
            result = await app.ask(args.session, args.question, request_id=request_id, **options)
            print(result.content)
        else:
            async for chunk in app.ask_stream(args.session, args.question, request_id=request_id, **options):
                if chunk.type == "content":
                    print(chunk.content, end="", flush=True)
                elif chunk.type == "tool_start":
                    print(f"\n[{chunk.tool_name}] {json.dumps(chunk.tool_params, ensure_ascii=False)}", file=sys.stderr)
                elif chunk.type == "error":
                    print(f"\nError: {chunk.error}", file=sys.stderr)
            print()
    except ChatlogAgentError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        await app.stop()


async def _embedding(config: AppConfig, args: argparse.Namespace) -> None:
    manager = EmbeddingConfigManager(config.storage.embedding_config_path)

    if args.action == "list":
        items = manager.list_for_display()
        if not items:
            print("No embedding configurations.")
        for item in items:
            marker = "*" if item["active"] else " "
            key = "key set" if item["api_key_set"] else "no key"
            print(f"{marker} {item['id']}  {item['name']}  [{item['source']}: {item['model']}] ({key})")
        return

    if args.action == "add":
        source = EmbeddingSource.REUSE_LLM if args.reuse_llm else EmbeddingSource.API
        if not args.no_validate:
            candidate = EmbeddingServiceConfig(
                id="pending",
                name=args.name,
                source=source,
                base_url=args.base_url,
                api_key=args.api_key,
                model=args.model,
                dimensions=args.dimensions,
            )
            check = await validate_embedding_config(candidate, config.llm)
            if not check.success:
                print(f"Validation failed: {check.error}", file=sys.stderr)
                sys.exit(1)
        result = manager.add(
            args.name,
            args.model,
            source=source,
            base_url=args.base_url,
            api_key=args.api_key,
            dimensions=args.dimensions,
        )
    elif args.action == "activate":
        result = manager.set_active(args.config_id)
    else:
        result = manager.delete(args.config_id)

    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)
    print(f"OK: {args.action} {result.config.name} ({result.config.id})")


async def _vectors(config: AppConfig, action: str) -> None:
    app = ChatlogAgentApp(config)
    await app.start()
    try:
        if action == "clear":
            await app.clear_vectors()
            print("Vector store cleared.")
        else:
            print(json.dumps((await app.vector_stats()).to_dict()))
    finally:
        await app.stop()


if __name__ == "__main__":
    main()
