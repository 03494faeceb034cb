"""Command-line entry point: wire connection, session and loop together.

Configuration comes from SPS30_* environment variables; flags override them.
Records go to stdout, diagnostics to stderr.
"""

import argparse
import logging
import signal
import sys
import threading
from dataclasses import replace
from typing import Callable, List, Optional

from sps30_agent.acquisition import AcquisitionLoop, LoopExit
from sps30_agent.config import AgentConfig
from sps30_agent.connection import ConnectionManager
from sps30_agent.driver import Sps30Driver
from sps30_agent.errors import AcquisitionCancelled
from sps30_agent.reporter import Reporter
from sps30_agent.retry import RetryPolicy
from sps30_agent.session import SensorSession
from sps30_agent.transport import Transport

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sps30-agent",
        description="Measure particulate matter with an SPS30 and print one averaged record per cycle",
    )
    parser.add_argument("--port", help="Serial port (env SPS30_PORT)")
    parser.add_argument("--baud", type=int, help="Baud rate (env SPS30_BAUD)")
    parser.add_argument("--samples", type=int, help="Samples per batch (env SPS30_SAMPLES)")
    parser.add_argument(
        "--interval", type=float, help="Seconds between samples (env SPS30_SAMPLE_INTERVAL)"
    )
    parser.add_argument("--rest", type=float, help="Seconds of rest between cycles (env SPS30_REST)")
    parser.add_argument(
        "--auto-clean-days", type=int, help="Fan auto-clean interval in days (env SPS30_AUTO_CLEAN_DAYS)"
    )
    parser.add_argument("--cycles", type=int, help="Stop after this many cycles (default: run forever)")
    parser.add_argument(
        "--debug", action="store_true", default=None, help="Per-sample diagnostics (env SPS30_DEBUG)"
    )
    return parser


def resolve_config(args: argparse.Namespace, base: AgentConfig) -> AgentConfig:
    """Apply command-line overrides on top of the environment config."""
    overrides = {
        "port": args.port,
        "baud": args.baud,
        "samples_per_batch": args.samples,
        "sample_interval_s": args.interval,
        "rest_duration_s": args.rest,
        "auto_clean_days": args.auto_clean_days,
        "debug": args.debug,
    }
    return replace(base, **{k: v for k, v in overrides.items() if v is not None})


def configure_logging(debug: bool) -> None:
    """Send diagnostics to stderr; debug switches on per-sample detail."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Set stop_event on SIGINT/SIGTERM so the loop winds down cooperatively."""

    def _handle(signum: int, _frame: object) -> None:
        logger.info(f"Received signal {signum}, stopping...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_agent(
    config: AgentConfig,
    stop_event: threading.Event,
    max_cycles: Optional[int] = None,
    opener: Optional[Callable[[str, int], Transport]] = None,
    reporter: Optional[Reporter] = None,
) -> int:
    """Run connect, session startup and the acquisition loop.

    Returns:
        Process exit code: 0 on cancel or completion, 1 on start failure
    """
    policy = RetryPolicy(delay_s=config.retry_delay_s)
    connection = ConnectionManager(
        config.port, config.baud, policy=policy, stop_event=stop_event, opener=opener
    )

    try:
        transport = connection.open()
        session = SensorSession(
            Sps30Driver(transport),
            auto_clean_days=config.auto_clean_days,
            policy=policy,
            stop_event=stop_event,
        )
        context = session.start()

        loop = AcquisitionLoop(
            session.driver,
            context,
            reporter=reporter,
            samples_per_batch=config.samples_per_batch,
            sample_interval_s=config.sample_interval_s,
            rest_duration_s=config.rest_duration_s,
            stop_event=stop_event,
        )
        result = loop.run(max_cycles=max_cycles)
    except AcquisitionCancelled as e:
        logger.info(str(e))
        result = LoopExit.CANCELLED
    finally:
        connection.close()

    return 1 if result == LoopExit.START_FAILED else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = resolve_config(args, AgentConfig.from_env())
    except ValueError as e:
        print(f"sps30-agent: invalid configuration: {e}", file=sys.stderr)
        return 2

    configure_logging(config.debug)
    # Records must reach a pipe as soon as they are written
    sys.stdout.reconfigure(line_buffering=True)  # type: ignore[attr-defined]

    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    return run_agent(config, stop_event, max_cycles=args.cycles)


if __name__ == "__main__":
    sys.exit(main())
