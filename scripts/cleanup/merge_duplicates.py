#!/usr/bin/env python3
"""
Duplicate entity sweep: find roots of one family whose names normalize to the
same key and merge each group into its most-used member.

Usage:
  # Dry-run (default): list duplicate groups without making changes
  python scripts/cleanup/merge_duplicates.py --tenant <space-id> --family supplier

  # Apply: merge every group into its most-used member
  python scripts/cleanup/merge_duplicates.py --tenant <space-id> --family supplier --apply

  # Locations are swept one warehouse at a time
  python scripts/cleanup/merge_duplicates.py --tenant <space-id> --family location --warehouse <id>

  # Write a JSON report
  python scripts/cleanup/merge_duplicates.py --tenant <space-id> --family account --output report.json
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from shared.logging import get_logger, setup_logging
from tally.identity import (
    DuplicateGroup,
    EntityRecord,
    Family,
    IdentityEngine,
    IdentityError,
    PartialMergeError,
    TenantContext,
    UsageReport,
    get_settings,
)
from tally.identity.store import PostgresRowStore

logger = get_logger("cleanup.merge_duplicates")


def choose_target(group: DuplicateGroup, usage: UsageReport) -> EntityRecord:
    """Most-used member of the group; earliest listed wins ties."""
    totals = {root.root_id: root.total for root in usage.roots}
    return max(group.entities, key=lambda entity: totals.get(entity.id, 0))


async def merge_group(
    engine: IdentityEngine,
    ctx: TenantContext,
    family: Family,
    group: DuplicateGroup,
    usage: UsageReport,
    dry_run: bool = True,
) -> Dict[str, Any]:
    target = choose_target(group, usage)
    source_ids = [entity.id for entity in group.entities if entity.id != target.id]
    summary: Dict[str, Any] = {
        "key": group.key,
        "target_id": target.id,
        "target_name": target.name,
        "source_ids": source_ids,
    }
    if dry_run:
        summary["status"] = "would_merge"
        return summary
    try:
        report = await engine.merge(ctx, family, source_ids, target.id)
    except PartialMergeError as exc:
        logger.error("duplicate_group_partially_merged", key=group.key, target_id=target.id)
        summary.update(status="partial", report=exc.report.model_dump(mode="json"))
        return summary
    except IdentityError as exc:
        logger.error("duplicate_group_merge_failed", key=group.key, target_id=target.id, error=str(exc))
        summary.update(status="error", error=str(exc))
        return summary
    summary.update(status="merged", report=report.model_dump(mode="json"))
    return summary


async def run(args: argparse.Namespace, engine: Optional[IdentityEngine] = None) -> Dict[str, Any]:
    engine = engine or IdentityEngine(PostgresRowStore(args.database_url))
    ctx = TenantContext(user_id=args.actor, tenant_id=args.tenant)
    family = Family(args.family)

    groups, usage = await asyncio.gather(
        engine.find_duplicate_groups(ctx, family, warehouse_id=args.warehouse),
        engine.usage_counts(ctx, family, warehouse_id=args.warehouse),
    )
    if args.limit:
        groups = groups[: args.limit]

    results: List[Dict[str, Any]] = []
    for index, group in enumerate(groups, 1):
        result = await merge_group(engine, ctx, family, group, usage, dry_run=not args.apply)
        result["group"] = index
        results.append(result)
        if args.verbose:
            print(f"[{index}/{len(groups)}] {group.key!r}: {len(group.entities)} entities -> {result['status']}")

    return {
        "timestamp": datetime.now().isoformat(),
        "mode": "apply" if args.apply else "dry-run",
        "tenant": args.tenant,
        "family": family.value,
        "total_groups": len(groups),
        "merged": sum(1 for result in results if result["status"] == "merged"),
        "errors": sum(1 for result in results if result["status"] in ("error", "partial")),
        "results": results,
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Discover and merge duplicate entities by normalized name")
    parser.add_argument("--tenant", required=True, help="Tenant (space) id to sweep")
    parser.add_argument(
        "--family",
        choices=[family.value for family in Family],
        default=Family.SUPPLIER.value,
        help="Entity family to sweep",
    )
    parser.add_argument("--warehouse", default=None, help="Warehouse id (required for --family location)")
    parser.add_argument("--apply", action="store_true", help="Actually perform the merges")
    parser.add_argument("--output", type=str, default=None, help="Output file path for JSON report")
    parser.add_argument("--limit", type=int, default=None, help="Limit number of duplicate groups to process")
    parser.add_argument("--actor", type=str, default="merge_duplicates_cli", help="Actor recorded in the context")
    parser.add_argument("--database-url", type=str, default=None, help="Database URL (or use DATABASE_URL env var)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(get_settings().log_level)
    if args.family == Family.LOCATION.value and not args.warehouse:
        print("Error: --warehouse is required for locations", file=sys.stderr)
        return 2

    mode = "apply" if args.apply else "dry-run"
    print(f"Duplicate Merge Tool - {mode.upper()} mode")
    print(f"Tenant: {args.tenant}  Family: {args.family}")
    print()

    try:
        summary = asyncio.run(run(args))
    except IdentityError as exc:
        logger.exception("merge_duplicates_failed", error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print("=" * 60)
    print(f"Total groups: {summary['total_groups']}")
    print(f"Merged: {summary['merged']}")
    print(f"Errors: {summary['errors']}")
    print(f"Mode: {mode.upper()}")

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump(summary, f, indent=2, default=str, ensure_ascii=False)
        print(f"Report written to: {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
