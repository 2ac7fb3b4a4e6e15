"""GitRouter entry point.

Commands: serve (default; webhook server + escalation scheduler), sweep (one
escalation sweep, then exit), seed FILE (load organizations, reviewers and
rules from YAML). Usage: gitrouter [serve | sweep | seed FILE] [-c config.yaml]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from gitrouter.config import AppConfig, load_config
from gitrouter.logging import GitRouterLogging

SUBCOMMANDS = ("serve", "sweep", "seed")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI with optional subcommand (serve | sweep | seed)."""
    argv = argv if argv is not None else sys.argv[1:]
    sub = "serve"
    rest = list(argv)
    if argv and argv[0] in SUBCOMMANDS:
        sub = argv[0]
        rest = argv[1:]

    parser = argparse.ArgumentParser(
        prog=f"gitrouter {sub}",
        description="GitRouter - review routing and escalation for GitHub pull requests",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only load and validate config, then exit",
    )
    if sub == "seed":
        parser.add_argument("file", type=Path, help="YAML file with organizations, reviewers and rules")
    parsed = parser.parse_args(rest)
    parsed.subcommand = sub
    return parsed


def _run_sweep(config: AppConfig) -> int:
    from gitrouter.service import GitRouterService

    service = GitRouterService.from_config(config)
    try:
        stats = service.run_escalation_sweep()
    finally:
        service.close()
    print(json.dumps(stats.model_dump()))
    return 0


def _run_seed(config: AppConfig, path: Path) -> int:
    from gitrouter.seed import SeedError, seed_from_file
    from gitrouter.store.sql_store import SQLStore

    store = SQLStore(config.database.url, echo=config.database.echo)
    try:
        summary = seed_from_file(store, path)
    except SeedError as e:
        logging.getLogger("gitrouter.seed").error("Seeding failed: %s", e)
        return 1
    finally:
        store.close()
    print(
        f"Seeded {summary.organizations} organizations, {summary.reviewers} reviewers, "
        f"{summary.repositories} repositories, {summary.rules} rules"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point: dispatch to serve, sweep or seed."""
    args = parse_args(argv)

    config_path = args.config
    if not config_path.is_file() and config_path == Path("config.yaml"):
        if Path("config.example.yaml").is_file():
            config_path = Path("config.example.yaml")
            logging.basicConfig(level=logging.INFO)
            logging.getLogger("gitrouter").warning("config.yaml not found, using config.example.yaml")

    config = load_config(config_path)

    if args.check:
        print("Config OK:", config.database.url, config.github.webhook_path)
        return 0

    if args.subcommand == "sweep":
        GitRouterLogging(config.logging).setup()
        return _run_sweep(config)

    if args.subcommand == "seed":
        GitRouterLogging(config.logging).setup()
        return _run_seed(config, args.file)

    from gitrouter.daemon import run_daemon

    try:
        run_daemon(config)
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("gitrouter.daemon").exception("Fatal error: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
