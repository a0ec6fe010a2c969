"""
Reading Indexer CLI

One-shot access to the jobs defined in the jobs file, without starting the
HTTP service.
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from .config import settings
from .jobs import JobFactory, JobsConfig, load_jobs
from .runner import result_ok, run_job_once
from ..core.errors import ConfigurationError
from ..persistence import DatabasePool


logger = logging.getLogger(__name__)


def _result_payload(result: Any) -> dict:
    if dataclasses.is_dataclass(result):
        payload = dataclasses.asdict(result)
        return {k: (v.value if hasattr(v, "value") else v) for k, v in payload.items()}
    return {"result": repr(result)}


def list_jobs(config: JobsConfig) -> int:
    print(f"{'Name':<28} {'Kind':<12} {'Enabled':<8} {'Every':<8}")
    print("-" * 60)
    for section, job in config.all_jobs():
        print(f"{job.name:<28} {section[:-1]:<12} {str(job.enabled):<8} {job.interval_seconds:<8}")
    for failure in config.failures:
        print(f"{failure.name:<28} {failure.section[:-1]:<12} {'INVALID':<8} {failure.message}")
    return 0 if not config.failures else 1


async def run_one(config: JobsConfig, name: str) -> int:
    found = config.get(name)
    if found is None:
        print(f"ERROR: no job named '{name}'", file=sys.stderr)
        return 2

    section, spec = found
    db_pool: Optional[DatabasePool] = None
    if section == "persisters":
        if not settings.database_url:
            print("ERROR: persister jobs need DATABASE_URL", file=sys.stderr)
            return 2
        db_pool = DatabasePool()
        await db_pool.connect(settings.database_url)

    try:
        job = JobFactory(settings, config, db_pool).build(section, spec)
        result = await run_job_once(job)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    finally:
        if db_pool is not None:
            await db_pool.close()

    print(json.dumps(_result_payload(result), indent=2, default=str))
    return 0 if result_ok(result) else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="reading-indexer",
        description="Run or inspect reading indexer jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  reading-indexer list
  reading-indexer run weather-5s
  reading-indexer --jobs-file /etc/reading-indexer/jobs.json run weather-zip
        """,
    )
    parser.add_argument(
        "--jobs-file",
        type=Path,
        default=None,
        help=f"Jobs file (default: {settings.jobs_file})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("list", help="List configured jobs")
    run_parser = subparsers.add_parser("run", help="Run one job once")
    run_parser.add_argument("job", help="Job name")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_jobs(args.jobs_file or settings.jobs_file)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    if args.command == "list":
        return list_jobs(config)
    return asyncio.run(run_one(config, args.job))


if __name__ == "__main__":
    sys.exit(main())
