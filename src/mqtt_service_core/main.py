"""
MQTT Service Core entrypoint.

CLI:
  mqtt-service run <service> [--config PATH]   -> run one service until "exit"
  mqtt-service list                            -> list services in the runner table
"""

from __future__ import annotations

import argparse
import logging
from importlib.metadata import PackageNotFoundError, version as pkg_version

logger = logging.getLogger(__name__)


def get_version_string() -> str:
    try:
        return pkg_version("mqtt-service-core")
    except PackageNotFoundError:
        return "0.0.0+dev"


def run(service_name: str, config_path: str | None) -> int:
    """
    Load config, configure logging, and run the named service.
    Returns process exit code.
    """
    # Lazy imports keep `list` and `--version` free of config side effects.
    from mqtt_service_core.config import ConfigError, load_config
    from mqtt_service_core.log_config import configure_logging
    from mqtt_service_core.runner import get_service_factory, run_service
    import mqtt_service_core.services  # noqa: F401  fills the service table

    try:
        factory = get_service_factory(service_name)
    except KeyError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.error("%s", exc.args[0])
        return 2

    try:
        cfg = load_config(config_path)
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration: %s", exc)
        return 1

    configure_logging(cfg)
    logger.info("============================================================")
    logger.info("MQTT Service Core")
    logger.info("Version: %s", get_version_string())
    logger.info("Service: %s", service_name)
    logger.info("Broker: %s", cfg.broker_address)
    logger.info("============================================================")

    return run_service(factory, cfg)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mqtt-service")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)

    run_parser = sub.add_parser("run", help="Run one service until 'exit'")
    run_parser.add_argument("service", help="Service name from the runner table")
    run_parser.add_argument(
        "--config",
        type=str,
        metavar="PATH",
        default=None,
        help="Path to JSON config file (written with defaults if missing; default ./config.json)",
    )

    sub.add_parser("list", help="List available services")

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "list":
        from mqtt_service_core.runner import SERVICES
        import mqtt_service_core.services  # noqa: F401

        for name in sorted(SERVICES):
            print(name)
        return

    if args.cmd == "run":
        raise SystemExit(run(args.service, args.config))

    raise SystemExit(2)


if __name__ == "__main__":
    main()
