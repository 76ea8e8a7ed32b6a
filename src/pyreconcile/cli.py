"""Command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from typing import Any

from pyreconcile.config import ReconcileConfig
from pyreconcile.exceptions import DeviceConnectionError, PartitionDiscoveryError, ReconcileConfigError, StreamError
from pyreconcile.service import ReconcileService

_LOG = logging.getLogger("pyreconcile")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyreconcile",
        description=(
            "Consume device telemetry from every partition of the event stream, "
            "compare it with the desired state and send corrective commands."
        ),
    )
    parser.add_argument(
        "--desired-state",
        help="Path or http(s) URL of the desired-state JSON document (env RECONCILE_DESIRED_STATE).",
    )
    parser.add_argument(
        "--refresh-interval",
        type=float,
        help="Seconds between desired-state reloads (default 5).",
    )
    parser.add_argument(
        "--from-offset",
        type=int,
        help="Start every partition at this offset instead of from now.",
    )
    parser.add_argument(
        "--command-broker",
        help="mqtt:// or mqtts:// URL of the command broker (env RECONCILE_COMMAND_BROKER).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default INFO).",
    )
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.desired_state is not None:
        overrides["desired_state_location"] = args.desired_state
    if args.refresh_interval is not None:
        overrides["refresh_interval"] = args.refresh_interval
    if args.from_offset is not None:
        overrides["start_offset"] = args.from_offset
    if args.command_broker is not None:
        overrides["command_broker_url"] = args.command_broker
    return overrides


async def _run(config: ReconcileConfig) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    async with ReconcileService(config):
        await stop.wait()
        _LOG.info("Shutting down")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    config = ReconcileConfig.from_env(**_overrides(args))
    try:
        return asyncio.run(_run(config))
    except (ReconcileConfigError, DeviceConnectionError, PartitionDiscoveryError) as exc:
        _LOG.error("Could not connect: %s", exc)
        return 1
    except StreamError as exc:
        _LOG.error("Event stream unavailable: %s", exc)
        return 1
    except KeyboardInterrupt:
        return 0
