"""CloudWatch log tailer. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from config import AppConfig, load_config, resolve_config_path
from core.errors.exceptions import ConfigurationError, PipelineError
from core.logging.setup import setup_logging
from core.logging.utilities import log_exception, log_startup_banner
from core.utils import generate_worker_id
from logtail.signals import install_shutdown_handlers, remove_shutdown_handlers
from logtail.supervisor import Supervisor

# Placeholder until setup_logging() runs in main()
logger = logging.getLogger(__name__)

TRUTHY = ("true", "1", "yes")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in TRUTHY


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="logtail",
        description="Tail CloudWatch log streams into a sink, checkpointing progress",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Use ./config.yaml (or $LOGTAIL_CONFIG)
    python -m logtail

    # Explicit config, debug logging to stdout only
    python -m logtail --config /etc/logtail/config.yaml --log-level DEBUG --log-to-stdout

    # Validate the configuration and exit
    python -m logtail --check-config
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (default: $LOGTAIL_CONFIG or ./config.yaml)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )

    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )

    parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Write file logs as JSON lines (default: from JSON_LOGS env var, true)",
    )

    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Load and validate the configuration, then exit",
    )

    return parser.parse_args(argv)


def _setup_logging(args: argparse.Namespace, worker_id: str) -> None:
    json_logs = args.json_logs if args.json_logs is not None else _env_flag("JSON_LOGS", "true")
    log_to_stdout = args.log_to_stdout or _env_flag("LOG_TO_STDOUT")
    log_dir = args.log_dir or Path(os.getenv("LOG_DIR") or "logs")

    setup_logging(
        name="logtail",
        log_dir=log_dir,
        json_format=json_logs,
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=log_to_stdout,
    )


async def run(config: AppConfig) -> None:
    supervisor = Supervisor(config)
    loop = asyncio.get_running_loop()
    install_shutdown_handlers(loop, supervisor.request_shutdown, supervisor.force_shutdown)
    try:
        await supervisor.run()
    finally:
        remove_shutdown_handlers(loop)


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv()
    args = parse_args(argv)

    worker_id = os.getenv("WORKER_ID") or generate_worker_id("logtail")
    _setup_logging(args, worker_id)
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        log_exception(logger, e, "Configuration error", level=logging.CRITICAL, include_traceback=False)
        return 1

    if args.check_config:
        logger.info("Configuration OK", extra={"path": str(resolve_config_path(args.config))})
        return 0

    log_startup_banner(
        logger,
        "CloudWatch Log Tailer",
        worker_id=worker_id,
        config=resolve_config_path(args.config),
        region=config.aws.region,
        credentials=config.aws.credential_source,
        offset_store=config.offset_store.kind.value,
        services=len(config.services),
        log_sources=sum(len(service.log_configs) for service in config.services),
        sink_policy=config.tailer.sink_failure_policy.value,
    )

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except ConfigurationError as e:
        log_exception(logger, e, "Configuration error", level=logging.CRITICAL, include_traceback=False)
        return 1
    except PipelineError as e:
        log_exception(logger, e, "Fatal error during startup", level=logging.CRITICAL)
        return 1
    except Exception as e:
        log_exception(logger, e, "Unexpected fatal error", level=logging.CRITICAL)
        return 1

    logger.info("Log tailer shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
