"""CLI entrypoint for mirroring a website."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import signal
import sys
import threading
from typing import Any

if __package__ in {None, ""}:
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

from sitemirror.scraper import (
    CrawlCancelled,
    CrawlConfig,
    CrawlError,
    Scheduler,
    load_config,
    load_cookies,
    make_headers,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Mirror a website into a local directory for offline browsing.",
    )

    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="Start URL. Overrides the config URL if provided.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to JSON/YAML mirror config.",
    )

    parser.add_argument(
        "-i",
        "--include",
        action="append",
        default=[],
        help="Only mirror URLs whose host+path matches this regex (repeatable).",
    )
    parser.add_argument(
        "-x",
        "--exclude",
        action="append",
        default=[],
        help="Skip URLs whose host+path matches this regex (repeatable).",
    )

    parser.add_argument("-c", "--concurrency", type=int, default=None)
    parser.add_argument(
        "-d",
        "--depth",
        type=int,
        default=None,
        help="Maximum link depth; 0 means unlimited.",
    )
    parser.add_argument(
        "-q",
        "--imagequality",
        type=int,
        default=None,
        help="JPEG quality 1-100 for re-encoding images; 0 disables it.",
    )

    parser.add_argument("-t", "--timeout", type=float, default=None, help="Per-request timeout in seconds.")
    parser.add_argument("--retry_delay", type=float, default=None, help="Initial delay before retrying a 5xx.")
    parser.add_argument("-n", "--tries", type=int, default=None, help="Attempts per URL on server errors.")

    parser.add_argument("-o", "--output", type=str, default=None, help="Output directory.")
    parser.add_argument("-u", "--user", type=str, default=None, help="Basic auth as user:password.")
    parser.add_argument(
        "-H",
        "--header",
        action="append",
        default=[],
        help="Extra request header 'Name: value' (repeatable).",
    )
    parser.add_argument("--cookiefile", type=Path, default=None, help="JSON file with cookies to send.")
    parser.add_argument("-p", "--proxy", type=str, default=None, help="HTTP(S) proxy URL.")
    parser.add_argument("-a", "--user_agent", type=str, default=None)

    parser.add_argument(
        "--stats_json",
        type=Path,
        default=None,
        help="Write the full stats JSON to this path after the run.",
    )
    parser.add_argument(
        "--log_file",
        type=Path,
        default=None,
        help="Also write logs to this file.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CrawlConfig:
    if args.config is not None:
        payload: dict[str, Any] = load_config(args.config).to_dict()
    else:
        payload = {}

    if args.url:
        payload["url"] = args.url
    if not payload.get("url"):
        raise ValueError("No start URL provided. Pass a URL or use --config.")

    if args.include:
        payload["includes"] = list(args.include)
    if args.exclude:
        payload["excludes"] = list(args.exclude)

    if args.concurrency is not None:
        payload["concurrency"] = args.concurrency
    if args.depth is not None:
        payload["max_depth"] = args.depth
    if args.imagequality is not None:
        payload["image_quality"] = args.imagequality

    if args.timeout is not None:
        payload["timeout_seconds"] = args.timeout
    if args.retry_delay is not None:
        payload["retry_delay_seconds"] = args.retry_delay
    if args.tries is not None:
        payload["tries"] = args.tries

    if args.output is not None:
        payload["output_dir"] = args.output

    if args.user:
        username, _, password = args.user.partition(":")
        payload["username"] = username
        payload["password"] = password

    if args.header:
        headers = dict(payload.get("headers") or {})
        headers.update(make_headers(args.header))
        payload["headers"] = headers
    if args.cookiefile is not None:
        payload["cookies"] = [cookie.to_json() for cookie in load_cookies(args.cookiefile)]

    if args.proxy is not None:
        payload["proxy"] = args.proxy
    if args.user_agent is not None:
        payload["user_agent"] = args.user_agent

    return CrawlConfig.from_dict(payload)


def setup_logging(verbose: bool, log_file: Path | None = None) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Connection-pool and image-plugin debug output drowns the crawl log.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def print_summary(config: CrawlConfig, stats: dict[str, Any]) -> None:
    fetch = stats.get("fetch", {})
    storage = stats.get("storage", {})
    frontier = stats.get("frontier", {})

    print("\n=== Mirror Complete ===")
    print(f"url: {config.url}")
    print(f"output_dir: {config.output_dir}")

    print("\n--- Stats ---")
    print(f"fetches: {fetch.get('fetches', 0)}")
    print(f"files_stored: {storage.get('files_stored', 0)}")
    print(f"bytes_stored: {storage.get('bytes_stored', 0)}")
    print(f"storage_failures: {storage.get('failures', 0)}")
    print(f"requeued: {frontier.get('requeued', 0)}")
    print(f"duration_seconds: {stats.get('duration_seconds', 0.0):.2f}")

    status_counts = fetch.get("status_code_counts", {})
    if status_counts:
        print("\n--- HTTP Status Codes ---")
        for code in sorted(status_counts):
            print(f"{code}: {status_counts[code]}")


def write_stats_json(path: Path, stats: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(stats, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        config = build_config(args)
    except (OSError, ValueError) as exc:
        logging.error("Failed to build config: %s", exc)
        return 2

    cancel = threading.Event()

    def _handle_sigint(signum: int, frame: Any) -> None:
        logging.warning("Interrupt received, finishing in-flight downloads")
        cancel.set()

    previous_handler = signal.signal(signal.SIGINT, _handle_sigint)
    try:
        scheduler = Scheduler(config)
        stats = scheduler.start(cancel=cancel)
    except CrawlCancelled:
        logging.error("Interrupted by user")
        return 130
    except ValueError as exc:
        logging.error("Invalid crawl settings: %s", exc)
        return 2
    except CrawlError:
        logging.exception("Mirroring failed")
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print_summary(config, stats)
    if args.stats_json is not None:
        write_stats_json(args.stats_json, stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
