"""Main entry point for the Notification Delivery Engine."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import signal
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

from notifier.config.environment import EnvironmentConfig
from notifier.config.exceptions import ConfigurationError
from notifier.config.loader import load_config, validate_config_file
from notifier.config.models import AppConfig
from notifier.domain.exceptions import NotificationValidationError
from notifier.domain.models import NotificationKind, Priority
from notifier.engine import NotificationEngine
from notifier.gateway.factory import get_gateway
from notifier.intake import EventIntake
from notifier.logging import get_logger
from notifier.logging.config import configure_logging
from notifier.persistence.database import close_database, init_database
from notifier.persistence.exceptions import PersistenceError, RecordNotFoundError
from notifier.persistence.store import NotificationStore
from notifier.queue import DeliveryQueue, RedisQueueAccelerator
from notifier.rendering.templates import TemplateRenderer
from notifier.scheduler import DeliveryScheduler
from notifier.stats import StatsAggregator

logger = get_logger(__name__, component="cli")


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level or "INFO"

    return app_config, env_config


def build_engine(app_config: AppConfig, env_config: EnvironmentConfig) -> NotificationEngine:
    """
    Wire the store, queue, gateway, renderer and stats into an engine.

    Initializes the database; the caller owns close_database().
    """
    init_database(env_config.database_url)

    delivery = app_config.delivery
    store = NotificationStore()

    accelerator = None
    if app_config.queue.accelerator_enabled:
        if env_config.redis_url:
            accelerator = RedisQueueAccelerator.from_url(
                env_config.redis_url, key=app_config.queue.accelerator_key
            )
        else:
            logger.warning(
                "Queue accelerator enabled but REDIS_URL is not set; using the store only",
                extra={"event": "queue.accelerator.disabled"},
            )
    queue = DeliveryQueue(store, accelerator)

    gateway = get_gateway(app_config.gateway, env_config, send_timeout=delivery.send_timeout_seconds)
    renderer = TemplateRenderer(
        platform_name=app_config.links.platform_name,
        login_url=app_config.links.login_url,
    )
    stats = StatsAggregator(
        store,
        ttl_seconds=app_config.stats.cache_ttl_seconds if app_config.stats.cache_enabled else 0,
        recent_failures_limit=app_config.stats.recent_failures_limit,
    )

    engine = NotificationEngine(
        store=store,
        gateway=gateway,
        queue=queue,
        renderer=renderer,
        stats=stats,
        max_attempts=delivery.max_attempts,
        retry_delay_seconds=delivery.retry_delay_seconds,
        batch_size=delivery.batch_size,
        max_batches_per_pass=delivery.max_batches_per_pass,
        send_timeout_seconds=delivery.send_timeout_seconds,
        claim_timeout_seconds=delivery.claim_timeout_seconds,
        send_workers=delivery.send_workers,
    )

    if accelerator is not None:
        queue.resync()

    logger.info(
        "Services initialized",
        extra={
            "event": "services.initialized",
            "provider": gateway.name,
            "accelerated": queue.is_accelerated,
        },
    )
    return engine


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notifier",
        description="Notification Delivery Engine - durable email notification dispatch with retries",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml or config/config.yaml if present)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the dispatch and reconciliation scheduler until stopped")
    subparsers.add_parser("process-queue", help="Run one dispatch pass and exit")
    subparsers.add_parser("retry-failed", help="Run one reconciliation pass and exit")
    subparsers.add_parser("stats", help="Print delivery statistics")
    subparsers.add_parser("check-config", help="Validate the configuration file and exit")

    status = subparsers.add_parser("status", help="Print the state of one notification")
    status.add_argument("notification_id")

    history = subparsers.add_parser("history", help="Print recent notifications for a recipient")
    history.add_argument("recipient")
    history.add_argument("--limit", type=int, default=20)

    submit = subparsers.add_parser("submit", help="Submit one notification")
    submit.add_argument("--recipient", required=True)
    submit.add_argument("--kind", required=True, choices=[k.value for k in NotificationKind])
    submit.add_argument(
        "--priority", default=Priority.NORMAL.value, choices=[p.value for p in Priority]
    )
    submit.add_argument("--payload", default="{}", help="Payload as a JSON object")
    submit.add_argument(
        "--inline",
        action="store_true",
        default=None,
        help="Attempt delivery before returning (implied for urgent priority)",
    )

    ingest = subparsers.add_parser(
        "ingest", help="Feed bus events (one JSON envelope per line) through the event intake"
    )
    ingest.add_argument("file", help="Path to a JSON-lines file, or '-' for stdin")

    return parser


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def run_serve(engine: NotificationEngine, app_config: AppConfig, start_time: float) -> int:
    shutdown_event = threading.Event()
    scheduler = DeliveryScheduler(
        engine,
        dispatch_interval_seconds=app_config.scheduler.dispatch_interval_seconds,
        reconciliation_interval_seconds=app_config.scheduler.reconciliation_interval_seconds,
        clock=engine.clock,
        run_on_start=app_config.scheduler.run_on_start,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler.start()
    logger.info(
        "Scheduler started. Press Ctrl+C to stop",
        extra={"event": "service.daemon_mode.started"},
    )

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info(
            "Keyboard interrupt received, shutting down",
            extra={"event": "service.keyboard_interrupt"},
        )

    # Running passes must finish before the caller closes the engine and database
    scheduler.shutdown(wait=True)

    logger.info(
        "Notification Delivery Engine stopped",
        extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
    )
    return 0


def run_command(args: argparse.Namespace, engine: NotificationEngine, app_config: AppConfig) -> int:
    """Run a one-shot command against a built engine and return the exit code."""
    if args.command == "process-queue":
        result = engine.process_queue_now()
        _print_json(
            {
                "claimed": result.claimed,
                "sent": result.sent,
                "retry_scheduled": result.retry_scheduled,
                "failed": result.failed,
                "aborted": result.aborted,
            }
        )
        return 1 if result.aborted else 0

    if args.command == "retry-failed":
        result = engine.retry_failed_now()
        _print_json(
            {
                "promoted": result.promoted,
                "released": len(result.released_ids),
                "aborted": result.aborted,
            }
        )
        return 1 if result.aborted else 0

    if args.command == "stats":
        _print_json(engine.get_stats().to_dict())
        return 0

    if args.command == "status":
        try:
            record = engine.get_status(args.notification_id)
        except RecordNotFoundError as e:
            print(str(e), file=sys.stderr)
            return 1
        _print_json(record.model_dump(mode="json"))
        return 0

    if args.command == "history":
        records = engine.get_history(args.recipient, limit=args.limit)
        _print_json([record.model_dump(mode="json") for record in records])
        return 0

    if args.command == "submit":
        try:
            payload = json.loads(args.payload)
        except ValueError as e:
            print(f"Invalid --payload JSON: {e}", file=sys.stderr)
            return 2
        try:
            notification_id = engine.submit(
                args.recipient,
                args.kind,
                payload=payload,
                priority=args.priority,
                dispatch_inline=args.inline,
            )
        except NotificationValidationError as e:
            print(f"Rejected: {e}", file=sys.stderr)
            return 2
        _print_json(engine.get_status(notification_id).model_dump(mode="json"))
        return 0

    if args.command == "ingest":
        summary = EventIntake(engine).consume(_read_event_lines(args.file))
        _print_json(
            {
                "submitted": summary.submitted,
                "ignored": summary.ignored,
                "rejected": summary.rejected,
            }
        )
        return 1 if summary.rejected else 0

    raise ValueError(f"Unknown command: {args.command}")


def _read_event_lines(path: str):
    if path == "-":
        lines = sys.stdin.readlines()
    else:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    return [line for line in (raw.strip() for raw in lines) if line]


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the Notification Delivery Engine.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    if args.command == "check-config":
        config_path = args.config or Path("config.yaml")
        return 0 if validate_config_file(config_path) else 1

    engine = None
    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "Notification Delivery Engine starting",
            extra={
                "event": "service.starting",
                "command": args.command,
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
            },
        )

        engine = build_engine(app_config, env_config)

        if args.command == "serve":
            return run_serve(engine, app_config, start_time)
        return run_command(args, engine, app_config)

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except PersistenceError as e:
        print(f"Storage Error: {e}", file=sys.stderr)
        logger.error(
            f"Storage error: {e}",
            extra={"event": "service.storage_error", "error_type": type(e).__name__},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1
    finally:
        if engine is not None:
            engine.close()
        close_database()


if __name__ == "__main__":
    sys.exit(main())
