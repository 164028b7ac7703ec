"""Run a full asset export against the configured source and blob store.

Usage:
  python3 scripts/run_export.py

  # Re-export everything, ignoring cached blobs:
  python3 scripts/run_export.py --force-refresh

  # Read assets from an offline folder into a local store:
  python3 scripts/run_export.py --offline ./offline_export --store-path ./data

  # Continue a session a previous run left running:
  python3 scripts/run_export.py --resume
"""

import argparse
import asyncio
import logging
import sys

# Ensure asset_catalog is importable when run from project root
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def _run(args: argparse.Namespace) -> int:
    from asset_catalog.core.config import Settings
    from asset_catalog.core.errors import ListingError
    from asset_catalog.services import build_services

    overrides = {}
    if args.offline:
        overrides["ASSET_SOURCE_MODE"] = "offline"
        overrides["OFFLINE_SOURCE_PATH"] = args.offline
    if args.store_path:
        overrides["BLOB_STORE_BACKEND"] = "filesystem"
        overrides["BLOB_STORE_PATH"] = args.store_path
    settings = Settings(**overrides)

    services = build_services(settings)
    orchestrator = services.orchestrator
    try:
        adopted = await orchestrator.startup()
        if adopted is not None and args.resume:
            print(f"Resuming export session {adopted.session_id}")
        try:
            summary = await orchestrator.export_all(
                force_refresh=args.force_refresh,
                resume=args.resume and adopted is not None,
            )
        except ListingError as exc:
            print(f"Export failed: {exc}", file=sys.stderr)
            return 1
        if summary is None:
            print("Export was cancelled.", file=sys.stderr)
            return 1
        if not args.skip_catalog:
            await orchestrator.wait_for_background()
    finally:
        await orchestrator.shutdown()
        await services.store.close()

    print("\n=== Export Summary ===")
    for key, stats in summary.results.items():
        print(
            f"  {key:<12} total={stats.total:<6} updated={stats.updated:<6} "
            f"cached={stats.cached:<6} errors={stats.errors}"
        )
    print(f"  Total assets: {summary.total_assets}")
    print(f"  Total errors: {summary.total_errors}")
    if summary.incomplete_types:
        print(f"  Incomplete:   {', '.join(summary.incomplete_types)}")
    print(f"  Duration:     {summary.duration_s}s")
    return 0


def main() -> None:
    from asset_catalog.core.config import settings

    parser = argparse.ArgumentParser(
        description="Export BI assets into the blob store and rebuild the index."
    )
    parser.add_argument("--force-refresh", action="store_true", help="Ignore cached asset blobs")
    parser.add_argument("--resume", action="store_true", help="Resume a session left running")
    parser.add_argument("--offline", default=None, help="Read assets from this offline folder")
    parser.add_argument("--store-path", default=None, help="Write to a filesystem store at this path")
    parser.add_argument(
        "--skip-catalog",
        action="store_true",
        help="Exit without waiting for the post-export catalog rebuild",
    )
    parser.add_argument("--log-level", default=None, help="Defaults to LOG_LEVEL from the settings")
    args = parser.parse_args()

    logging.basicConfig(
        level=(args.log_level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
