from __future__ import annotations

import argparse
import os
import signal
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from lang_repos.config_models import CrawlerConfig, load_and_validate_config
from lang_repos.core.errors import AuthFailure, CrawlerError, MalformedResponse, StorageError
from lang_repos.core.factory import ComponentFactory
from lang_repos.core.models import CrawlReport
from lang_repos.utils.logging import get_logger, log_error, setup_logging

TOKEN_ENV_VAR = "GITHUB_TOKEN"

# Errors a later scheduled run would hit again unchanged.
UNRECOVERABLE_ERRORS = (AuthFailure, MalformedResponse, StorageError)

log = get_logger("lang_repos.main")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lang-repos",
        description="Incrementally crawl GitHub for repositories written in a given language.",
    )
    parser.add_argument("data_dir", help="directory holding the dataset and checkpoint files")
    parser.add_argument("--config", help="path to a crawler YAML configuration file")
    return parser.parse_args(argv)


def prepare_data_dir(path: Path) -> Path:
    """Create the data directory if needed and make sure it is writable."""
    if not path.is_dir():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"cannot create data directory {path}: {e}") from e
        log.debug("Created missing data directory: %s", path)

    if not os.access(path, os.W_OK | os.X_OK):
        raise StorageError(f"data directory {path} is not writable")
    return path


def install_stop_handlers(stop: threading.Event) -> None:
    """Turn SIGINT/SIGTERM into a stop request honored between pages."""

    def _handler(signum, frame):
        log.info("Received %s, terminating after the current page...", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def crawl_once(config: CrawlerConfig, data_dir: Path, token: str, stop: threading.Event) -> CrawlReport:
    prepare_data_dir(data_dir)
    built = ComponentFactory(config).build(data_dir, token, should_stop=stop.is_set)
    report = built.engine.run()
    log.info("DONE: %s", report)
    return report


def run_one(config: CrawlerConfig, data_dir: Path, token: str, stop: threading.Event) -> int:
    """Run a single crawl and map its outcome to an exit code."""
    start = time.monotonic()
    try:
        crawl_once(config, data_dir, token, stop)
        code = 0
    except CrawlerError as e:
        log_error(log, e)
        code = 1
    finally:
        log.info("Execution completed in %d seconds", time.monotonic() - start)
    return code


def scheduled_crawl(
    config: CrawlerConfig, data_dir: Path, token: str, stop: threading.Event, outcome: Dict[str, Any]
) -> None:
    """
    One scheduled run. Errors a later run could recover from are logged and
    the schedule goes on; unrecoverable ones record exit code 1 in ``outcome``
    and request a stop, which shuts the scheduler down.
    """
    start = time.monotonic()
    try:
        crawl_once(config, data_dir, token, stop)
    except UNRECOVERABLE_ERRORS as e:
        log_error(log, e)
        log.error("Stopping the schedule, later runs would fail the same way")
        outcome["exit_code"] = 1
        stop.set()
    except CrawlerError as e:
        log_error(log, e)
        log.warning("Run failed, trying again at the next scheduled time")
    finally:
        log.info("Execution completed in %d seconds", time.monotonic() - start)


def run_schedule(config: CrawlerConfig, data_dir: Path, token: str, stop: threading.Event) -> int:
    """Run the crawl periodically, never overlapping two runs."""
    scheduler = BlockingScheduler()
    outcome: Dict[str, Any] = {"exit_code": 0}
    interval_hours = config.schedule.interval_hours
    trigger = IntervalTrigger(hours=interval_hours)

    scheduler.add_job(
        scheduled_crawl,
        trigger=trigger,
        args=[config, data_dir, token, stop, outcome],
        id="crawl",
        name=f"Scheduled crawl: language={config.language}",
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(),
    )

    def _shutdown_on_stop():
        stop.wait()
        # lets a running crawl finish its page first
        scheduler.shutdown(wait=True)

    threading.Thread(target=_shutdown_on_stop, name="scheduler-stop", daemon=True).start()

    log.info("Starting scheduled crawler (every %s hours)", interval_hours)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        log.info("Scheduler stopped")
    return outcome["exit_code"]


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the crawler."""
    args = parse_args(argv)

    try:
        config = load_and_validate_config(args.config)
    except (ValueError, FileNotFoundError) as e:
        setup_logging()
        log.error("%s", e)
        return 1

    setup_logging(config.logging_config)

    token = os.environ.get(TOKEN_ENV_VAR, "").strip()
    if not token:
        log.error("Failed to get the GitHub API token: set the %s environment variable", TOKEN_ENV_VAR)
        return 1

    stop = threading.Event()
    install_stop_handlers(stop)

    data_dir = Path(args.data_dir)
    if config.schedule.enabled:
        return run_schedule(config, data_dir, token, stop)
    return run_one(config, data_dir, token, stop)


if __name__ == "__main__":
    sys.exit(main())
