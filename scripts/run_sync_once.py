"""
Run one bank sync pass in the foreground and print the result.

Usage:
    python -m scripts.run_sync_once
    python -m scripts.run_sync_once --rescan
"""

import argparse
import asyncio
from dotenv import load_dotenv

load_dotenv()


async def _run(rescan: bool) -> None:
    from app.core.db.engine import AsyncSessionLocal, create_tables
    from app.core.dependencies import get_reconciliation_service, get_sync_orchestrator

    await create_tables()
    orchestrator = get_sync_orchestrator()

    print("Running bank sync...")
    async with AsyncSessionLocal() as db:
        result = await orchestrator.sync_now(db, trigger="cli")

        print("\n=== Sync Result ===")
        print(f"Run: {result.run_id} ({result.status.value})")
        if result.window_start and result.window_end:
            print(f"Window: {result.window_start.date()} .. {result.window_end.date()}")
        print(f"Fetched: {result.fetched}")
        print(f"Imported: {result.imported}")
        print(f"Skipped: {result.skipped}")
        print(f"Blacklisted: {result.blacklisted}")
        print(f"Matched: {result.matched}")
        print(f"Warnings: {result.warnings}")
        print(f"Failed: {result.failed}")
        if result.errors:
            print("\nError details:")
            for err in result.errors:
                print(f"- {err}")

        if rescan:
            summary = await get_reconciliation_service().rescan(db)
            print("\n=== Rescan ===")
            print(
                f"Scanned {summary.scanned}: {summary.matched} matched, {summary.allocated} allocated, "
                f"{summary.suggested} suggested, {summary.failed} failed"
            )


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one bank sync pass")
    parser.add_argument(
        "--rescan",
        action="store_true",
        help="Re-run matching over all open transactions afterwards",
    )
    args = parser.parse_args()
    asyncio.run(_run(rescan=args.rescan))


if __name__ == "__main__":
    main()
