#!/usr/bin/env python3
"""Run one job message in-process, without the push endpoint.

Usage:
  ./venv/bin/python scripts/run_job.py message.json
  echo '{"jobId": "...", ...}' | ./venv/bin/python scripts/run_job.py -
"""

import argparse
import json
import sys

from media_pipeline.config import load_config
from media_pipeline.extensions import build_services
from media_pipeline.logging_config import configure_logging
from media_pipeline.services.worker_service import handle_job_message, now_ms


def load_message(path):
    if path == "-":
        return json.load(sys.stdin)
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def main():
    parser = argparse.ArgumentParser(description="Process a single job message against the configured project.")
    parser.add_argument("message", help="Path to a JSON job message, or - to read it from stdin.")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Stamp the message with the current time so the staleness check lets it through.",
    )
    args = parser.parse_args()

    payload = load_message(args.message)
    if args.fresh and isinstance(payload, dict):
        payload["timestamp"] = now_ms()

    config = load_config()
    configure_logging(config.log_level)
    services = build_services(config)
    outcome = handle_job_message(payload, services=services, config=config)
    print(f"outcome={outcome}")
    return 0 if outcome in {"completed", "duplicate"} else 1


if __name__ == "__main__":
    raise SystemExit(main())
