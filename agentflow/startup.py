"""Command line interface for the AgentFlow engine.

    agentflow --env development run
    agentflow --database-url sqlite:///./agentflow.db db init
    agentflow health
    agentflow config show
"""

import argparse
import asyncio
import sys
from typing import Callable, Dict

from .config import (
    AppConfig,
    LogLevel,
    get_development_config,
    get_production_config,
    get_testing_config,
    load_config,
    validate_config,
)
from .core.logging import get_logger, setup_logging

logger = get_logger(__name__)

PRESETS: Dict[str, Callable[[], AppConfig]] = {
    "development": get_development_config,
    "production": get_production_config,
    "testing": get_testing_config,
}

# Global flags that override a config field when given; argparse dest -> field.
_OVERRIDE_FLAGS = ("host", "port", "reload", "database_url", "log_level", "log_file", "debug", "execution_timeout")


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentflow",
        description="AgentFlow - execute visual AI workflow graphs"
    )
    parser.set_defaults(handler=cmd_run, workers=1)

    parser.add_argument("--env", choices=sorted(PRESETS), help="Start from a configuration preset")
    parser.add_argument("--config", help="Path to a .env file (ignored with --env)")
    parser.add_argument("--host", help="Host to bind the server to")
    parser.add_argument("--port", type=int, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", default=None, help="Enable auto-reload")
    parser.add_argument("--database-url", help="Database URL; omit for in-memory storage")
    parser.add_argument("--log-level", choices=[level.value for level in LogLevel], help="Logging level")
    parser.add_argument("--log-file", help="Path to a rotating log file")
    parser.add_argument("--debug", action="store_true", default=None, help="Enable debug mode")
    parser.add_argument("--execution-timeout", type=float,
                        help="Per-execution deadline in seconds; 0 disables it")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    run = commands.add_parser("run", help="Serve the HTTP API (the default)")
    run.add_argument("--workers", type=int, default=1, help="Number of worker processes")
    run.set_defaults(handler=cmd_run)

    db = commands.add_parser("db", help="Create or reset the database tables")
    db.add_argument("action", choices=["init", "reset"])
    db.set_defaults(handler=cmd_db)

    health = commands.add_parser("health", help="Check storage and the node handler registry")
    health.set_defaults(handler=cmd_health)

    config = commands.add_parser("config", help="Inspect the effective configuration")
    config.add_argument("action", choices=["show", "validate"])
    config.set_defaults(handler=cmd_config)

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Preset (or environment) configuration with the command line flags applied on top."""
    config = PRESETS[args.env]() if args.env else load_config(args.config)

    overrides = {
        field: getattr(args, field)
        for field in _OVERRIDE_FLAGS
        if getattr(args, field, None) is not None
    }
    if not overrides:
        return config
    # Re-validated so flags pass the same field validators as the environment.
    return AppConfig.model_validate({**config.model_dump(), **overrides})


def cmd_run(config: AppConfig, args: argparse.Namespace) -> int:
    import uvicorn

    from .factory import create_app

    validate_config(config)
    logger.info(f"Starting server on {config.host}:{config.port} with {args.workers} worker(s)")
    if args.workers > 1:
        # Worker processes import the app and configure themselves from the environment.
        uvicorn.run("agentflow.main:app", workers=args.workers, **config.get_uvicorn_config())
    else:
        uvicorn.run(create_app(config), **config.get_uvicorn_config())
    return 0


def cmd_db(config: AppConfig, args: argparse.Namespace) -> int:
    from .storage.database import create_database_engine, create_tables, drop_tables

    if not config.database_url:
        print("No database URL configured; nothing to do for in-memory storage.")
        return 1

    validate_config(config)
    engine = create_database_engine(
        config.database_url,
        echo=config.database_echo,
        connect_args=config.get_database_connect_args()
    )
    try:
        if args.action == "reset":
            logger.info("Dropping database tables")
            drop_tables(engine)
        create_tables(engine)
    finally:
        engine.dispose()

    print("Database reset completed successfully" if args.action == "reset"
          else "Database tables created successfully")
    return 0


async def collect_health(config: AppConfig) -> dict:
    """Run the same checks as ``/health/detailed`` against a freshly opened store."""
    from .engine.workflow_engine import build_workflow_engine
    from .factory import setup_health_checks
    from .storage.provider import initialize_storage

    storage = initialize_storage(config)
    try:
        engine = build_workflow_engine(storage, config)
        return await setup_health_checks(engine).run_all_checks()
    finally:
        await storage.close()


def cmd_health(config: AppConfig, args: argparse.Namespace) -> int:
    report = asyncio.run(collect_health(config))
    print(f"Overall Status: {report['overall_status']}")
    print(f"Timestamp: {report['timestamp']}")
    for name, result in report["checks"].items():
        print(f"  {name}: {result.get('status', 'unknown')} - {result.get('message', '')}")
    return 0 if report["overall_status"] == "healthy" else 1


def cmd_config(config: AppConfig, args: argparse.Namespace) -> int:
    if args.action == "validate":
        try:
            validate_config(config)
        except ValueError as e:
            print("Configuration validation: FAILED")
            print(f"Error: {e}")
            return 1
        print("Configuration validation: PASSED")
        return 0

    rows = [
        ("App Name", config.app_name),
        ("Version", config.app_version),
        ("Debug", config.debug),
        ("Listen", f"{config.host}:{config.port}"),
        ("Database URL", config.database_url or "(in-memory)"),
        ("Log Level", config.log_level.value),
        ("Execution Timeout", config.execution_timeout or "disabled"),
        ("Node Timeout", config.node_timeout),
        ("Branch Filtering", config.branch_filtering),
        ("OpenAI API Key", "set" if config.openai_api_key else "not set"),
        ("Anthropic API Key", "set" if config.anthropic_api_key else "not set"),
    ]
    print("Current Configuration:")
    for label, value in rows:
        print(f"  {label}: {value}")
    return 0


def main(argv=None):
    """Entry point of the ``agentflow`` command."""
    args = create_argument_parser().parse_args(argv)

    try:
        config = load_configuration(args)
        setup_logging(level=config.log_level.value, log_file=config.log_file, structured=config.log_structured)
        status = args.handler(config, args)
    except ValueError as e:
        print(f"Error: {e}")
        status = 1

    if status:
        sys.exit(status)


if __name__ == "__main__":
    main()
