#!/usr/bin/env python3
"""Code Pairing Relay - terminal peer

  relay-client send              # prints a code, waits for a receiver
  relay-client receive 1234      # joins the sender holding 1234

Once paired, each stdin line is sent to the partner as
{"type": "message", "text": ...} and whatever the partner sends is printed.
The receiver announces itself with {"type": "joined"} so the sender knows
when it may start typing (the relay closes senders that talk before pairing).
"""

import argparse
import asyncio
import json
import logging
import sys

import websockets

from relay_server import config

logger = logging.getLogger("relay.client")

HANDSHAKE_TIMEOUT = 10.0  # seconds


class PairingFailed(Exception):
    pass


async def handshake(ws, mode: str, code: str | None = None) -> str:
    """Run the send/recive handshake on an open socket. Returns the code."""
    if mode == "send":
        await ws.send(json.dumps({"type": "send"}))
        reply = json.loads(await asyncio.wait_for(ws.recv(), timeout=HANDSHAKE_TIMEOUT))
        if reply.get("type") != "code":
            raise PairingFailed(f"unexpected reply: {reply}")
        return reply["code"]

    await ws.send(json.dumps({"type": "recive", "code": code}))
    try:
        reply = json.loads(await asyncio.wait_for(ws.recv(), timeout=HANDSHAKE_TIMEOUT))
    except websockets.ConnectionClosed:
        raise PairingFailed(f"relay closed the connection (is {code!r} a valid code?)")
    if reply.get("type") != "status" or reply.get("code") != "0":
        raise PairingFailed(f"no sender is waiting on code {code}")
    await ws.send(json.dumps({"type": "joined"}))
    return code


def format_incoming(raw) -> str:
    """Render a relayed frame for the terminal."""
    if isinstance(raw, bytes):
        return f"<{len(raw)} bytes>"
    try:
        data = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(data, dict):
        if data.get("type") == "message":
            return f"peer> {data.get('text', '')}"
        if data.get("type") == "joined":
            return "[peer joined]"
    return raw


async def _read_stdin(queue: asyncio.Queue):
    loop = asyncio.get_running_loop()

    def on_readable():
        line = sys.stdin.readline()
        queue.put_nowait(line if line else None)

    loop.add_reader(sys.stdin.fileno(), on_readable)
    try:
        await asyncio.Future()
    finally:
        loop.remove_reader(sys.stdin.fileno())


async def _pump_stdin(ws, queue: asyncio.Queue, can_talk: asyncio.Event):
    while True:
        line = await queue.get()
        if line is None:
            return
        await can_talk.wait()
        await ws.send(json.dumps({"type": "message", "text": line.rstrip("\n")}))


async def _pump_socket(ws, can_talk: asyncio.Event):
    async for raw in ws:
        can_talk.set()
        print(format_incoming(raw), flush=True)


async def run(mode: str, code: str | None, url: str) -> int:
    async with websockets.connect(url) as ws:
        try:
            code = await handshake(ws, mode, code)
        except (PairingFailed, asyncio.TimeoutError) as e:
            print(f"Pairing failed: {e}", file=sys.stderr)
            return 1

        can_talk = asyncio.Event()
        if mode == "send":
            print(f"Pairing code: {code} (waiting for a receiver...)", flush=True)
        else:
            print(f"Paired on code {code}", flush=True)
            can_talk.set()

        queue: asyncio.Queue = asyncio.Queue()
        tasks = [
            asyncio.create_task(_read_stdin(queue)),
            asyncio.create_task(_pump_stdin(ws, queue, can_talk)),
            asyncio.create_task(_pump_socket(ws, can_talk)),
        ]
        try:
            await asyncio.wait(tasks[1:], return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
        print("[connection closed]", file=sys.stderr)
    return 0


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="relay-client", description="Pair with another peer through the relay")
    parser.add_argument("--url", default=config.RELAY_URL, help="relay WebSocket URL")
    sub = parser.add_subparsers(dest="mode", required=True)
    sub.add_parser("send", help="get a pairing code and wait for a receiver")
    receive = sub.add_parser("receive", help="join a sender by its pairing code")
    receive.add_argument("code")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )
    try:
        sys.exit(asyncio.run(run(args.mode, getattr(args, "code", None), args.url)))
    except (OSError, websockets.InvalidURI, websockets.InvalidHandshake) as e:
        logger.error(f"Could not reach relay at {args.url}: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
