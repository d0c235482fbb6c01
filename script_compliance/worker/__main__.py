"""
Compliance worker CLI entry point.

Usage:
    python -m script_compliance.worker [OPTIONS]

Options:
    --once --job ID     Drain one job's chunks, aggregate it, and exit
    --poll-interval N   Seconds between polls (default: from config)
    --high-recall       Skip the router and judge every scannable article
    --deterministic     Force temperature 0 and a fixed seed where jobs leave them unset
"""
from __future__ import annotations

import argparse
import sys

from .loop import run_worker


def main(argv=None) -> int:
    """Main entry point for worker CLI."""
    parser = argparse.ArgumentParser(
        description="Script compliance worker - judges analysis chunks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Poll forever with default settings
    python -m script_compliance.worker

    # Drain a single job and exit
    python -m script_compliance.worker --once --job 3f2a...

    # Judge against every article without routing
    python -m script_compliance.worker --high-recall
        """,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Process a single job and exit (requires --job)",
    )
    parser.add_argument(
        "--job",
        type=str,
        default=None,
        help="Job id for --once",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between poll cycles (default: from config)",
    )
    parser.add_argument(
        "--high-recall",
        action="store_true",
        default=None,
        help="Bypass the router (default: from config)",
    )
    parser.add_argument(
        "--deterministic",
        action="store_true",
        default=None,
        help="Force deterministic temperature/seed (default: from config)",
    )

    args = parser.parse_args(argv)
    if args.once and not args.job:
        parser.error("--once requires --job")

    try:
        processed = run_worker(
            poll_interval=args.poll_interval,
            high_recall=args.high_recall,
            deterministic=args.deterministic,
            once_job_id=args.job if args.once else None,
        )
        if args.once:
            print(f"Processed {processed} chunk(s) for job {args.job}")
        return 0
    except KeyboardInterrupt:
        print("\nWorker stopped by user")
        return 0
    except Exception as e:
        print(f"Worker error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
