from __future__ import annotations

import argparse
import asyncio
import json
import sys

import websockets

# Shorthand commands typed on stdin -> /events messages.
COMMANDS = {
    "manual": {"type": "mode.set", "mode": "manual"},
    "auto": {"type": "mode.set", "mode": "automatic"},
    "analyze": {"type": "analyze"},
    "stop": {"type": "alarm.stop"},
    "reset": {"type": "transcript.reset"},
    "state": {"type": "state.get"},
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Print /events messages and send commands typed on stdin")
    parser.add_argument("--url", default="ws://127.0.0.1:8765/events")
    parser.add_argument("--no-status", action="store_true", help="Hide the 1Hz status messages")
    return parser


async def main() -> None:
    args = build_parser().parse_args()
    loop = asyncio.get_running_loop()
    async with websockets.connect(args.url) as ws:

        async def printer() -> None:
            async for msg in ws:
                if args.no_status and isinstance(msg, str) and '"type":"status"' in msg:
                    continue
                print(msg)

        async def reader() -> None:
            while True:
                line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line:
                    return
                cmd = line.strip()
                if not cmd:
                    continue
                if cmd.startswith("location "):
                    await ws.send(json.dumps({"type": "location.update", "location": cmd[len("location ") :]}))
                elif cmd in COMMANDS:
                    await ws.send(json.dumps(COMMANDS[cmd]))
                else:
                    print(f"unknown command {cmd!r}; try: {', '.join(sorted(COMMANDS))}, location <text>")

        await asyncio.gather(printer(), reader())


if __name__ == "__main__":
    asyncio.run(main())
