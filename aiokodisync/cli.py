"""Command-line interface keeping a pool of Kodi nodes in sync."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from contextlib import suppress

import aioconsole

from aiokodisync.config import DEFAULT_IDENTITIES_PATH, SyncSettings, load_identities
from aiokodisync.pool import NodePool

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the synchronizer."""
    parser = argparse.ArgumentParser(description="Keep several Kodi players in sync")
    parser.add_argument(
        "--identities",
        default=DEFAULT_IDENTITIES_PATH,
        help="File listing one host:port,user,password per line",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=2.0,
        help="Desync in seconds that triggers a catch-up",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=2.0,
        help="Seconds between two desync checks",
    )
    parser.add_argument(
        "--player-id",
        type=int,
        default=1,
        help="Kodi player id to synchronize",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=None,
        help="Give up on a node response after this many seconds (default: wait forever)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level to use",
    )
    parser.add_argument(
        "--no-console",
        action="store_true",
        help="Do not read commands from standard input",
    )
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> SyncSettings:
    """Build the engine settings from parsed arguments."""
    return SyncSettings(
        threshold=args.threshold,
        check_interval=args.interval,
        player_id=args.player_id,
        request_timeout=args.request_timeout,
    )


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))

    try:
        settings = settings_from_args(args)
    except ValueError as err:
        logger.critical("Invalid settings: %s", err)
        return 1

    try:
        identities = load_identities(args.identities)
    except OSError as err:
        logger.critical("Cannot read identities from %s: %s", args.identities, err)
        return 1

    pool = NodePool(settings)
    await pool.connect(identities)
    if not pool.nodes:
        logger.critical("No available clients")
        return 1

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    loop.add_signal_handler(signal.SIGINT, stop_event.set)

    console_task: asyncio.Task[None] | None = None
    try:
        await pool.prime()
        await pool.start()
        if not args.no_console:
            _print_instructions()
            console_task = loop.create_task(_console_loop(pool, stop_event))
        await stop_event.wait()
    except asyncio.CancelledError:  # pragma: no cover - cancellation path
        logger.debug("Main loop cancelled")
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        if console_task is not None and not console_task.done():
            console_task.cancel()
            with suppress(asyncio.CancelledError):
                await console_task
        await pool.stop()

    return 0


async def _console_loop(pool: NodePool, stop_event: asyncio.Event) -> None:
    try:
        while True:
            try:
                line = await aioconsole.ainput()
            except EOFError:
                break
            command = line.strip().lower()
            if not command:
                continue
            if command in {"quit", "exit", "q"}:
                break
            if command in {"pause", "space"}:
                await pool.request_pause()
            elif command in {"play", "p"}:
                await pool.request_resume()
            elif command in {"status", "s"}:
                await _print_status(pool)
            else:
                _print_event("Unknown command")
    finally:
        stop_event.set()


async def _print_status(pool: NodePool) -> None:
    state = await pool.get_state()
    lines = [f"State: {state.value}"]
    for node in pool.nodes:
        if node.lost:
            lines.append(f"  {node.description}: unreachable")
            continue
        elapsed = "unknown" if node.elapsed is None else f"{node.elapsed:.3f}s"
        playing = {None: "unknown", True: "playing", False: "paused"}[node.playing]
        lines.append(f"  {node.description}: {elapsed}, {playing}")
    _print_event("\n".join(lines))


def _print_event(message: str) -> None:
    print(message, flush=True)  # noqa: T201


def _print_instructions() -> None:
    print("Commands: play(p), pause, status(s), quit(q)", flush=True)  # noqa: T201


def main() -> int:
    """Run the CLI."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
