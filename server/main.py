from __future__ import annotations

import argparse
import asyncio
import dataclasses
import os
import signal

from alertserver.config import AlertConfig
from alertserver.scheduler import OperationMode
from alertserver.server import AlertServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Threat-response alert server")
    parser.add_argument("--host", default=os.environ.get("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "8765")))
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    parser.add_argument("--api-url", default=None, help="Analysis service base URL (overrides ANALYSIS_API_URL)")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in OperationMode],
        default=None,
        help="Analysis mode at startup (overrides DEFAULT_MODE)",
    )
    return parser


def build_config(args: argparse.Namespace) -> AlertConfig:
    config = AlertConfig.from_env()
    overrides: dict[str, object] = {}
    if args.api_url:
        overrides["api_base_url"] = args.api_url.rstrip("/")
    if args.mode:
        overrides["default_mode"] = args.mode
    return dataclasses.replace(config, **overrides) if overrides else config


async def _amain() -> int:
    args = build_parser().parse_args()
    server = AlertServer(host=args.host, port=args.port, log_level=args.log_level, config=build_config(args))
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, server.stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support.
            pass
    await server.run()
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
