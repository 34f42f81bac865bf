"""Seed demo duplicate deals and preview how the merge engine handles them.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py
    # or
    python -m scripts.seed_demo
"""

from __future__ import annotations

import argparse
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import delete

# Make `dealmerge` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from dealmerge.db.session import SessionLocal
from dealmerge.models import Deal, DuplicateCluster, DuplicateDetection
from dealmerge.services.auto_merge import auto_merge_high_confidence_duplicates
from dealmerge.services.preview import preview_merge
from dealmerge.services.suggestions import get_smart_merge_suggestions


DEMO_PREFIX = "demo-"
DEMO_CLUSTER_ID = "demo-cluster-0001"


def build_demo_deals() -> list[Deal]:
    """Return a deterministic set of deals with two obvious duplicate groups."""

    now = datetime.now(timezone.utc)
    rows = [
        ("demo-deal-0001", "Acme Corp Firewall Renewal", 50000.0, "passed", 0.92, 2, ["firewall"], ["f-email-1"]),
        ("demo-deal-0002", "ACME Corp - Firewall Renewal", 55000.0, None, 0.71, 40, ["firewall", "vpn"], ["f-sheet-1"]),
        ("demo-deal-0003", "Acme Corp Firewall Renewal Inc", None, "failed", 0.40, 120, [], ["f-call-1"]),
        ("demo-deal-0004", "Globex Endpoint Rollout", 120000.0, "passed", 0.88, 1, ["edr"], ["f-email-2"]),
        ("demo-deal-0005", "Globex Endpoint Rollout", 120000.0, None, 0.83, 5, ["edr", "siem"], ["f-email-3"]),
        ("demo-deal-0006", "Initech Backup Expansion", 18000.0, None, 0.65, 10, ["backup"], ["f-sheet-2"]),
    ]
    return [
        Deal(
            id=deal_id,
            deal_name=name,
            customer_name=name.split()[0],
            deal_value=value,
            currency="USD",
            close_date=date(2026, 12, 31),
            deal_stage="proposal",
            validation_status=validation,
            ai_confidence_score=confidence,
            products=products,
            source_file_ids=files,
            created_at=now - timedelta(days=age_days),
            updated_at=now - timedelta(days=age_days),
        )
        for deal_id, name, value, validation, confidence, age_days, products, files in rows
    ]


def build_demo_duplicates() -> tuple[DuplicateCluster, list[DuplicateDetection]]:
    cluster = DuplicateCluster(
        id=DEMO_CLUSTER_ID,
        entity_type="deal",
        entity_ids=["demo-deal-0001", "demo-deal-0002", "demo-deal-0003"],
        confidence_score=0.97,
    )
    detections = [
        DuplicateDetection(
            id="demo-detection-0001",
            entity_type="deal",
            entity_id_1="demo-deal-0001",
            entity_id_2="demo-deal-0002",
            similarity_score=0.96,
            confidence_level=0.96,
            detection_strategy="fuzzy_name",
        ),
        DuplicateDetection(
            id="demo-detection-0002",
            entity_type="deal",
            entity_id_1="demo-deal-0004",
            entity_id_2="demo-deal-0005",
            similarity_score=0.99,
            confidence_level=0.99,
            detection_strategy="exact_name",
        ),
    ]
    return cluster, detections


def reset_demo(db) -> None:
    """Remove previously seeded demo rows."""

    db.execute(delete(DuplicateDetection).where(DuplicateDetection.id.like(f"{DEMO_PREFIX}%")))
    db.execute(delete(DuplicateCluster).where(DuplicateCluster.id.like(f"{DEMO_PREFIX}%")))
    db.execute(delete(Deal).where(Deal.id.like(f"{DEMO_PREFIX}%")))
    db.commit()


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed demo duplicate deals and preview merges.")
    parser.add_argument(
        "--no-reset",
        action="store_true",
        help="Do not delete previously seeded demo rows before seeding.",
    )
    parser.add_argument(
        "--auto-merge",
        action="store_true",
        help="Run the auto-merge sweep for real instead of a dry run.",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data and print a short summary."""

    args = parse_args()

    with SessionLocal() as db:
        if not args.no_reset:
            reset_demo(db)

        deals = build_demo_deals()
        cluster, detections = build_demo_duplicates()
        db.add_all([*deals, cluster, *detections])
        db.commit()

        preview = preview_merge(db, cluster.entity_ids, "deal")
        suggestions = get_smart_merge_suggestions(db, "deal", limit=5)
        sweep = auto_merge_high_confidence_duplicates(db, threshold=0.95, dry_run=not args.auto_merge)

    print("Seed complete")
    print(f"deals_created={len(deals)}")
    print(f"cluster_id={DEMO_CLUSTER_ID}")
    print(f"preview_master={preview.suggested_master} conflicts={len(preview.conflicts)} confidence={preview.confidence:.2f}")
    for suggestion in suggestions:
        names = " / ".join(entity.name or entity.id for entity in suggestion.entities)
        print(f"suggestion {suggestion.suggested_action} {suggestion.confidence:.2f} {names}")
    print(
        f"auto_merge dry_run={sweep.dry_run} total={sweep.total_clusters} "
        f"merged={sweep.merged_clusters} failed={sweep.failed_clusters}"
    )
    print()
    print("Inspect:")
    print("  POST /merge/preview")
    print(f"  POST /merge/cluster/{DEMO_CLUSTER_ID}")
    print("  GET /merge/suggestions")
    print("  GET /merge/history")


if __name__ == "__main__":
    main()
