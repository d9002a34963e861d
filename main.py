#!/usr/bin/env python3
"""
Proofgate - Proof Request Status Service
========================================

[STATUS] Опрос статуса запроса в prover network:
- Hand-rolled gRPC поверх HTTP/2 (без сгенерированного стека)
- Failover: production -> mainnet
- Best-effort: при отказе всех endpoints статус "pending"

[API] HTTP API для загрузки документов, сохранения proofs,
запуска proving pipeline и опроса статуса.

Использование:
    python main.py status <request_id>
    python main.py watch <request_id> [--interval 15] [--max-polls 40]
    python main.py serve [--host 0.0.0.0] [--port 8080]

Примеры:
    # Одиночный запрос статуса
    python main.py status 0x5f3c...e1

    # Опрос до fulfilled/failed
    python main.py watch 0x5f3c...e1 --interval 15

    # HTTP API
    python main.py serve --port 8080
"""

import argparse
import asyncio
import logging
import signal
import sys

# Загрузка переменных окружения из .env файла
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # python-dotenv не установлен

from config import config
from core.client import ProofStatusClient
from core.errors import InvalidRequestIdError
from core.poller import StatusPoller

logger = logging.getLogger("proofgate")


EXIT_OK = 0
EXIT_INVALID_INPUT = 2


def configure_logging(verbose: bool = False) -> None:
    """Настройка логирования."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # h2 очень шумный на DEBUG
    logging.getLogger("hpack").setLevel(logging.WARNING)
    logging.getLogger("h2").setLevel(logging.WARNING)


def build_client() -> ProofStatusClient:
    return ProofStatusClient(
        endpoints=config.status.endpoints,
        method=config.status.method,
        timeout=config.status.timeout,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Proof request status client and HTTP API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Query status once
  python main.py status 0x5f3c...e1

  # Poll until fulfilled or failed
  python main.py watch 0x5f3c...e1 --interval 15 --max-polls 40

  # Run HTTP API
  python main.py serve --port 8080
""",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Query proof request status once")
    status.add_argument("request_id", help="Hex request id (0x prefix optional)")

    watch = sub.add_parser("watch", help="Poll status until fulfilled or failed")
    watch.add_argument("request_id", help="Hex request id (0x prefix optional)")
    watch.add_argument(
        "--interval",
        type=float,
        default=config.status.poll_interval,
        help=f"Seconds between polls (default: {config.status.poll_interval})",
    )
    watch.add_argument(
        "--max-polls",
        type=int,
        default=config.status.max_polls,
        help="Stop after N polls, 0 = until terminal status (default: %(default)s)",
    )

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument(
        "--host", "-H",
        type=str,
        default=config.api.host,
        help=f"Host to bind to (default: {config.api.host})",
    )
    serve.add_argument(
        "--port", "-p",
        type=int,
        default=config.api.port,
        help=f"Port to listen on (default: {config.api.port})",
    )
    return parser


async def cmd_status(args: argparse.Namespace) -> int:
    client = build_client()
    status = await client.get_status(args.request_id)
    print(status)
    return EXIT_OK


async def cmd_watch(args: argparse.Namespace) -> int:
    client = build_client()
    poller = StatusPoller(
        client,
        interval=args.interval,
        max_polls=args.max_polls,
        on_update=lambda label, attempt: print(f"[{attempt}] {label}", flush=True),
    )
    _install_signal_handlers(poller.stop)
    await poller.watch(args.request_id)
    return EXIT_OK


async def cmd_serve(args: argparse.Namespace) -> int:
    from webapi import create_app, start_server

    shutdown_event = asyncio.Event()
    _install_signal_handlers(shutdown_event.set)

    app = create_app(client=build_client())
    runner = await start_server(app, args.host, args.port)
    try:
        await shutdown_event.wait()
    finally:
        logger.info("[MAIN] Shutting down...")
        await runner.cleanup()
        logger.info("[MAIN] Shutdown complete")
    return EXIT_OK


def _install_signal_handlers(callback) -> None:
    def handler():
        logger.info("[MAIN] Received shutdown signal")
        callback()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handler)
        except NotImplementedError:
            pass


COMMANDS = {
    "status": cmd_status,
    "watch": cmd_watch,
    "serve": cmd_serve,
}


async def main(argv=None) -> int:
    """
    Главная функция - точка входа.
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        return await COMMANDS[args.command](args)
    except InvalidRequestIdError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
