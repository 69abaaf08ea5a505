"""Command line front end for the Chatterbox client.

Usage examples:

    chatterbox init --display-name Maverick
    chatterbox sync
    chatterbox watch
    chatterbox rooms
    chatterbox messages general
    chatterbox send general "hello"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import Session, sessionmaker

from chatterbox_client.core.settings import ClientConfig, Settings, load_client_config
from chatterbox_client.db.session import create_cache_engine, create_tables, make_session_factory
from chatterbox_client.schemas.content import display_text, parse_stored_content
from chatterbox_client.services.client import ChatClient, ChatClientError
from chatterbox_client.services.keystore import KeyStore
from chatterbox_client.services.send_pipeline import SendPipeline
from chatterbox_client.services.sync_engine import SyncEngine


@dataclass
class ClientStack:
    """Services wired together for one identity."""

    config: ClientConfig
    session_factory: sessionmaker[Session]
    client: ChatClient
    keystore: KeyStore
    engine: SyncEngine
    sender: SendPipeline

    async def close(self) -> None:
        await self.engine.stop()
        await self.client.close()


def build_stack(
    config: ClientConfig, *, transport: httpx.AsyncBaseTransport | None = None
) -> ClientStack:
    """Create the cache, client and services for `config`."""
    engine = create_cache_engine(config.database_url, echo=config.sql_debug)
    create_tables(engine)
    session_factory = make_session_factory(engine)

    client = ChatClient(config, transport=transport)
    keystore = KeyStore(session_factory, client)
    sync_engine = SyncEngine(config, client, session_factory, keystore)
    sender = SendPipeline(config, client, keystore, sync_engine)
    return ClientStack(config, session_factory, client, keystore, sync_engine, sender)


async def _cmd_init(stack: ClientStack, args: argparse.Namespace) -> int:
    public_key = await asyncio.to_thread(stack.keystore.ensure_identity)
    print(f"Identity ready for {stack.config.user_id}")
    if args.display_name:
        try:
            await stack.client.register(args.display_name, public_key)
        except ChatClientError as exc:
            print(f"Registration failed: {exc}", file=sys.stderr)
            return 1
        print(f"Registered as {args.display_name}")
    return 0


async def _cmd_sync(stack: ClientStack, args: argparse.Namespace) -> int:
    result = await stack.engine.sync_once()
    if not result.ok:
        print(f"Sync failed: {result.error}", file=sys.stderr)
        return 1
    applied = result.applied
    if applied is None:
        raise RuntimeError("Successful sync returned no apply summary")
    print(f"Synced. {applied.rooms} rooms, {applied.messages} new msgs.")
    return 0


async def _cmd_watch(stack: ClientStack, args: argparse.Namespace) -> int:
    await stack.engine.start()
    try:
        await asyncio.Event().wait()
    finally:
        await stack.engine.stop()
    return 0


async def _cmd_rooms(stack: ClientStack, args: argparse.Namespace) -> int:
    for room in await asyncio.to_thread(stack.engine.list_rooms):
        print(f"#{room.name}\t{room.room_id}")
    return 0


async def _cmd_messages(stack: ClientStack, args: argparse.Namespace) -> int:
    for message in await asyncio.to_thread(stack.engine.list_messages, args.room_id):
        text = display_text(parse_stored_content(message.content))
        print(f"[{message.created_at:%H:%M}] {message.sender_id}: {text}")
    return 0


async def _cmd_send(stack: ClientStack, args: argparse.Namespace) -> int:
    result = await stack.sender.send_text(args.room_id, args.text)
    if not result.ok:
        print(f"Send failed: {result.error}", file=sys.stderr)
        return 1
    print(f"Sent to {len(result.recipients)} recipients")
    return 0


async def _cmd_health(stack: ClientStack, args: argparse.Namespace) -> int:
    health = await stack.client.health_check()
    if health["status"] != "healthy":
        print(f"Server unhealthy: {health.get('error')}", file=sys.stderr)
        return 1
    print(f"Server healthy ({health['response_time_ms']:.0f} ms)")
    return 0


COMMANDS = {
    "init": _cmd_init,
    "sync": _cmd_sync,
    "watch": _cmd_watch,
    "rooms": _cmd_rooms,
    "messages": _cmd_messages,
    "send": _cmd_send,
    "health": _cmd_health,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatterbox", description="Chatterbox client")
    parser.add_argument("--api-url", help="Server base URL (default from CHATTERBOX_API_URL)")
    parser.add_argument("--user-id", help="Caller identity (default from CHATTERBOX_USER_ID)")
    parser.add_argument("--database-url", help="Local cache URL")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    init = sub.add_parser("init", help="Create the identity key pair and optionally register")
    init.add_argument("--display-name", help="Register this display name with the server")
    sub.add_parser("sync", help="Pull and apply one delta")
    sub.add_parser("watch", help="Keep syncing on the configured interval")
    sub.add_parser("rooms", help="List cached rooms")
    messages = sub.add_parser("messages", help="Show cached messages of a room")
    messages.add_argument("room_id")
    send = sub.add_parser("send", help="Encrypt and send a message")
    send.add_argument("room_id")
    send.add_argument("text")
    sub.add_parser("health", help="Check that the server is reachable")
    return parser


async def _run(args: argparse.Namespace) -> int:
    overrides = {
        key: value
        for key, value in (
            ("api_url", args.api_url),
            ("user_id", args.user_id),
            ("database_url", args.database_url),
        )
        if value
    }
    config = load_client_config(Settings(), **overrides)
    stack = build_stack(config)
    try:
        return await COMMANDS[args.command](stack, args)
    finally:
        await stack.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the `chatterbox` console script."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
