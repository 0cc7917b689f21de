"""Command line runner for the deadman passes.

``--once`` runs a single pass and exits, for cron or a Kubernetes
CronJob. Without it the service loops on its own interval, serves
Prometheus metrics when enabled, and stops cleanly on SIGINT/SIGTERM.

Exit codes: ``0`` success, ``1`` the pass or the database failed, ``2``
invalid configuration, ``130`` interrupted.

Examples:
    ```bash
    deadman evaluator --once
    deadman inactivity --log-level DEBUG
    python -m deadman cleanup --config /etc/deadman/cleanup.yaml
    ```
"""

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, NamedTuple

from pydantic import ValidationError

from deadman.core import Repository, start_metrics_server
from deadman.core.base_service import BaseService
from deadman.core.exceptions import ConfigurationError
from deadman.core.logger import Logger, StructuredFormatter
from deadman.core.yaml import load_yaml
from deadman.models.constants import ServiceName
from deadman.services.cleanup import Cleanup
from deadman.services.evaluator import Evaluator, InactivityChecker


CONFIG_DIR = Path("config")
CORE_CONFIG = CONFIG_DIR / "repository.yaml"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_CONFIG = 2
EXIT_INTERRUPTED = 130

# Keys a service's ``pool:`` section may override in the shared repository config
_DATABASE_OVERRIDES = ("user", "password_env")
_LIMIT_OVERRIDES = ("min_size", "max_size")


class ServiceEntry(NamedTuple):
    cls: type[BaseService[Any]]
    config_path: Path


def _entry(name: ServiceName, cls: type[BaseService[Any]]) -> tuple[str, ServiceEntry]:
    return str(name), ServiceEntry(cls, CONFIG_DIR / "services" / f"{name}.yaml")


SERVICE_REGISTRY: dict[str, ServiceEntry] = dict(
    [
        _entry(ServiceName.EVALUATOR, Evaluator),
        _entry(ServiceName.INACTIVITY, InactivityChecker),
        _entry(ServiceName.CLEANUP, Cleanup),
    ]
)

logger = Logger("cli")


# ---------------------------------------------------------------------------
# Running a service
# ---------------------------------------------------------------------------


@contextmanager
def _shutdown_on_signals(service: BaseService[Any]) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a graceful ``request_shutdown()`` while active."""
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)

    def on_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_requested", signal=sig.name)
        service.request_shutdown()

    for sig in signals:
        loop.add_signal_handler(sig, on_signal, sig)
    try:
        yield
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)


async def _run_once(service: BaseService[Any], log: Logger) -> int:
    try:
        async with service:
            await service.run()
    except Exception as e:  # Process error boundary, reported through the exit code
        log.error("pass_failed", error=str(e), error_type=type(e).__name__)
        return EXIT_FAILED
    log.info("pass_finished")
    return EXIT_OK


async def _run_continuously(service: BaseService[Any], log: Logger) -> int:
    metrics = service.config.metrics
    server = await start_metrics_server(metrics)
    if server.is_running:
        log.info("metrics_listening", host=metrics.host, port=metrics.port, path=metrics.path)

    try:
        with _shutdown_on_signals(service):
            async with service:
                await service.run_forever()
    except Exception as e:  # Process error boundary, reported through the exit code
        log.error("service_failed", error=str(e), error_type=type(e).__name__)
        return EXIT_FAILED
    finally:
        await server.stop()
    return EXIT_OK


async def run_service(
    service_name: str,
    service_class: type[BaseService[Any]],
    repository: Repository,
    service_dict: dict[str, Any],
    *,
    once: bool,
) -> int:
    """Build *service_class* against a connected *repository* and run it.

    Args:
        service_name: Registry key, used to tag log lines.
        service_class: Service to build.
        repository: Connected database interface.
        service_dict: Service configuration with the ``pool`` section
            already removed. Empty means all defaults.
        once: Run a single pass instead of looping.

    Returns:
        The process exit code.
    """
    log = logger.bind(service=service_name)
    try:
        if service_dict:
            service = service_class.from_dict(service_dict, repository=repository)
        else:
            service = service_class(repository=repository)
    except (ValidationError, ConfigurationError) as e:
        log.error("invalid_service_config", error=str(e))
        return EXIT_BAD_CONFIG

    if once:
        return await _run_once(service, log)
    return await _run_continuously(service, log)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="deadman",
        description="Run one pass of the dead man's switch engine.",
    )
    parser.add_argument("service", choices=sorted(SERVICE_REGISTRY), help="pass to run")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="service YAML (default: config/services/<service>.yaml)",
    )
    parser.add_argument(
        "--repository-config",
        type=Path,
        default=CORE_CONFIG,
        help=f"database YAML shared by all services (default: {CORE_CONFIG})",
    )
    parser.add_argument(
        "--log-level", default="INFO", choices=("DEBUG", "INFO", "WARNING", "ERROR")
    )
    parser.add_argument(
        "--once", action="store_true", help="run a single pass and exit instead of looping"
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Send every record, ``Logger`` or plain ``logging``, through a StructuredFormatter on stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level)


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """A missing file means defaults: ``{}``."""
    if not path.is_file():
        logger.warning("config_missing_using_defaults", path=str(path))
        return {}
    return load_yaml(str(path))


def _apply_pool_overrides(
    repository_dict: dict[str, Any],
    pool_overrides: dict[str, Any] | None,
    service_name: str,
) -> None:
    """Fold a service's ``pool:`` section into the shared repository config, in place.

    Every service connects with its own ``application_name`` (default
    ``deadman-<service>``) so its sessions can be told apart in
    ``pg_stat_activity``.
    """
    overrides = pool_overrides or {}
    pool = repository_dict.setdefault("pool", {})
    settings = pool.setdefault("server_settings", {})
    settings["application_name"] = (
        overrides.get("application_name")
        or settings.get("application_name")
        or f"deadman-{service_name}"
    )

    for section, keys in (("database", _DATABASE_OVERRIDES), ("limits", _LIMIT_OVERRIDES)):
        picked = {k: overrides[k] for k in keys if k in overrides}
        if picked:
            pool.setdefault(section, {}).update(picked)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    entry = SERVICE_REGISTRY[args.service]

    service_dict = _load_yaml_dict(args.config or entry.config_path)
    repository_dict = _load_yaml_dict(args.repository_config)
    _apply_pool_overrides(repository_dict, service_dict.pop("pool", None), args.service)

    try:
        repository = Repository.from_dict(repository_dict)
    except ValidationError as e:
        logger.error("invalid_repository_config", error=str(e))
        return EXIT_BAD_CONFIG

    try:
        async with repository:
            return await run_service(
                service_name=args.service,
                service_class=entry.cls,
                repository=repository,
                service_dict=service_dict,
                once=args.once,
            )
    except ConnectionError as e:
        logger.error("database_unreachable", error=str(e))
        return EXIT_FAILED
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED


def cli() -> None:
    """``deadman`` console script."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
