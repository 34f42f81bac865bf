"""Service-level tests for merge preview and transactional merge execution."""

from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from unittest import mock

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dealmerge.merging.conflicts import ConflictResolutionStrategy
from dealmerge.merging.errors import MergeNotFoundError, MergeValidationError
from dealmerge.models import Deal, DuplicateCluster, DuplicateDetection, FieldConflictRecord, MergeHistory
from dealmerge.models.base import Base
from dealmerge.schemas.merge import MergeOptions
from dealmerge.services.merge_executor import merge_entities
from dealmerge.services.preview import preview_merge


class MergeExecutorTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        self._reset_tables()
        self.now = datetime.now(timezone.utc)
        self._deal(
            "deal-a",
            deal_value=50000.0,
            ai_confidence_score=0.9,
            validation_status="passed",
            products=["firewall"],
            source_file_ids=["file-1"],
        )
        self._deal(
            "deal-b",
            deal_value=55000.0,
            ai_confidence_score=0.6,
            products=["vpn"],
            source_file_ids=["file-2", "file-1"],
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def _reset_tables(self) -> None:
        self.db.execute(delete(FieldConflictRecord))
        self.db.execute(delete(MergeHistory))
        self.db.execute(delete(DuplicateDetection))
        self.db.execute(delete(DuplicateCluster))
        self.db.execute(delete(Deal))
        self.db.commit()

    def _deal(self, deal_id: str, **fields) -> Deal:
        values = {
            "deal_name": "Acme Firewall Renewal",
            "customer_name": "Acme",
            "currency": "USD",
            "close_date": date(2026, 9, 30),
            "products": [],
            "source_file_ids": [],
            "created_at": self.now - timedelta(days=3),
            "updated_at": self.now - timedelta(days=2),
        }
        values.update(fields)
        deal = Deal(id=deal_id, **values)
        self.db.add(deal)
        return deal

    def _count(self, model) -> int:
        return int(self.db.scalar(select(func.count()).select_from(model)) or 0)

    def test_preview_reports_single_deal_value_conflict(self) -> None:
        self._deal("deal-c", deal_value=50000.0, ai_confidence_score=0.9)
        self._deal("deal-d", deal_value=55000.0, ai_confidence_score=0.6)
        self.db.commit()

        preview = preview_merge(self.db, ["deal-c", "deal-d"], "deal")

        self.assertEqual([conflict.field_name for conflict in preview.conflicts], ["deal_value"])
        conflict = preview.conflicts[0]
        self.assertEqual({value.value for value in conflict.values}, {50000.0, 55000.0})
        self.assertTrue(conflict.suggested_reason)
        self.assertEqual(preview.suggested_master, "deal-c")
        self.assertEqual(set(preview.quality_scores), {"deal-c", "deal-d"})
        self.assertGreaterEqual(preview.confidence, 0.0)
        self.assertLessEqual(preview.confidence, 1.0)
        self.assertEqual(preview.resolved_fields["deal_value"], 50000.0)

    def test_preview_warns_on_many_unresolvable_conflicts(self) -> None:
        self._deal(
            "deal-e",
            deal_name="Acme Firewall Renewal",
            customer_name="Acme",
            deal_value=10000.0,
            currency="USD",
            close_date=date(2026, 9, 30),
            vendor_id="vendor-1",
            deal_stage="proposal",
            ai_confidence_score=0.1,
        )
        self._deal(
            "deal-f",
            deal_name="Initech Backup Expansion",
            customer_name="Initech",
            deal_value=20000.0,
            currency="EUR",
            close_date=date(2026, 12, 31),
            vendor_id="vendor-2",
            deal_stage="negotiation",
            ai_confidence_score=0.1,
        )
        self.db.commit()

        preview = preview_merge(self.db, ["deal-e", "deal-f"])

        self.assertGreater(len(preview.conflicts), 5)
        self.assertTrue(all(conflict.requires_manual_review for conflict in preview.conflicts))
        self.assertLess(preview.confidence, 0.7)
        self.assertEqual(len(preview.warnings), 3)
        self.assertTrue(preview.warnings[0].startswith("High number of conflicts"))
        self.assertIn("require manual review", preview.warnings[1])
        self.assertTrue(preview.warnings[2].startswith("Low merge confidence"))

    def test_preview_of_clean_high_quality_pair_has_no_warnings(self) -> None:
        for deal_id in ("deal-g", "deal-h"):
            self._deal(
                deal_id,
                deal_value=50000.0,
                vendor_id="vendor-1",
                ai_confidence_score=0.95,
                validation_status="passed",
            )
        self.db.commit()

        preview = preview_merge(self.db, ["deal-g", "deal-h"])

        self.assertEqual(preview.conflicts, [])
        self.assertGreater(preview.confidence, 0.7)
        self.assertEqual(preview.warnings, [])

    def test_preview_requires_two_entities(self) -> None:
        for entity_ids in ([], ["deal-a"], ["deal-a", "deal-a"], ["missing-1", "missing-2"]):
            with self.subTest(entity_ids=entity_ids):
                with self.assertRaises(MergeValidationError) as ctx:
                    preview_merge(self.db, entity_ids)
                self.assertIn("At least 2 entities", str(ctx.exception))

    def test_preview_does_not_write(self) -> None:
        preview_merge(self.db, ["deal-a", "deal-b"])
        self.assertEqual(self._count(MergeHistory), 0)
        self.assertEqual(self._count(Deal), 2)

    def test_merge_requires_source(self) -> None:
        for source_ids in ([], ["deal-a"], ["  "]):
            with self.subTest(source_ids=source_ids):
                with self.assertRaises(MergeValidationError) as ctx:
                    merge_entities(self.db, source_ids, "deal-a")
                self.assertEqual(str(ctx.exception), "At least 1 source entity required")

    def test_merge_missing_target_fails(self) -> None:
        with self.assertRaises(MergeNotFoundError) as ctx:
            merge_entities(self.db, ["deal-b"], "missing")
        self.assertIn("Target entity missing not found", str(ctx.exception))
        self.assertEqual(self._count(MergeHistory), 0)

    def test_merge_with_only_missing_sources_fails(self) -> None:
        with self.assertRaises(MergeValidationError):
            merge_entities(self.db, ["missing"], "deal-a")
        self.assertEqual(self._count(MergeHistory), 0)

    def test_merge_resolves_fields_and_writes_history(self) -> None:
        result = merge_entities(self.db, ["deal-b"], "deal-a", MergeOptions(merged_by="analyst"))

        self.assertTrue(result.success)
        self.assertEqual(result.merged_entity_id, "deal-a")
        self.assertEqual(result.source_entity_ids, ["deal-b"])
        self.assertEqual(result.conflicts_pending, 0)
        self.assertEqual(result.conflicts_resolved, 3)

        self.db.expire_all()
        target = self.db.get(Deal, "deal-a")
        assert target is not None
        self.assertEqual(target.deal_value, 50000.0)
        self.assertEqual(target.products, ["firewall", "vpn"])
        self.assertIsNone(self.db.get(Deal, "deal-b"))

        history = self.db.get(MergeHistory, result.merge_history_id)
        assert history is not None
        self.assertEqual(history.target_entity_id, "deal-a")
        self.assertEqual(history.source_entity_ids, ["deal-b"])
        self.assertEqual(history.merged_by, "analyst")
        self.assertEqual(history.merge_type, "manual")
        self.assertFalse(history.unmerged)
        self.assertEqual(history.merged_data["version"], 1)
        self.assertEqual(set(history.merged_data["pre_merge"]), {"deal-a", "deal-b"})
        self.assertEqual(history.merged_data["pre_merge"]["deal-b"]["deal_value"], 55000.0)

        conflict_fields = set(
            self.db.scalars(
                select(FieldConflictRecord.field_name).where(
                    FieldConflictRecord.merge_history_id == result.merge_history_id
                )
            ).all()
        )
        self.assertEqual(conflict_fields, {"deal_value", "products", "source_file_ids"})

    def test_merge_unions_source_file_ids(self) -> None:
        result = merge_entities(
            self.db,
            ["deal-b"],
            "deal-a",
            MergeOptions(conflict_resolution=ConflictResolutionStrategy.PREFER_TARGET),
        )

        self.db.expire_all()
        target = self.db.get(Deal, "deal-a")
        assert target is not None
        self.assertEqual(target.source_file_ids, ["file-1", "file-2"])
        self.assertEqual(result.merged_data["source_file_ids"], ["file-1", "file-2"])
        self.assertEqual(target.products, ["firewall"])

    def test_manual_strategy_leaves_scalar_conflicts_pending(self) -> None:
        result = merge_entities(
            self.db,
            ["deal-b"],
            "deal-a",
            MergeOptions(conflict_resolution=ConflictResolutionStrategy.MANUAL),
        )

        self.assertEqual(result.conflicts_pending, 1)
        self.db.expire_all()
        target = self.db.get(Deal, "deal-a")
        assert target is not None
        self.assertIsNone(target.deal_value)
        self.assertEqual(target.products, ["firewall", "vpn"])

    def test_preserve_source_marks_sources_merged(self) -> None:
        merge_entities(self.db, ["deal-b"], "deal-a", MergeOptions(preserve_source=True))

        self.db.expire_all()
        source = self.db.get(Deal, "deal-b")
        assert source is not None
        self.assertEqual(source.status, "merged")
        self.assertIn("Merged into deal-a", source.notes or "")

        with self.assertRaises(MergeValidationError):
            merge_entities(self.db, ["deal-b"], "deal-a")

    def test_merge_links_detections_and_clusters(self) -> None:
        self.db.add(
            DuplicateDetection(
                id="det-1",
                entity_type="deal",
                entity_id_1="deal-a",
                entity_id_2="deal-b",
                similarity_score=0.97,
                confidence_level=0.97,
                detection_strategy="fuzzy_name",
            )
        )
        self.db.add(
            DuplicateCluster(id="cluster-1", entity_type="deal", entity_ids=["deal-a", "deal-b"], confidence_score=0.97)
        )
        self.db.commit()

        result = merge_entities(self.db, ["deal-b"], "deal-a")

        self.db.expire_all()
        detection = self.db.get(DuplicateDetection, "det-1")
        cluster = self.db.get(DuplicateCluster, "cluster-1")
        assert detection is not None and cluster is not None
        self.assertEqual(detection.status, "merged")
        self.assertEqual(detection.merge_history_id, result.merge_history_id)
        self.assertIsNotNone(detection.resolved_at)
        self.assertEqual(cluster.status, "merged")
        self.assertEqual(cluster.master_entity_id, "deal-a")
        self.assertEqual(cluster.merge_history_id, result.merge_history_id)

    def test_cluster_links_match_only_member_clusters(self) -> None:
        self._deal("dëal-x", deal_value=50000.0, ai_confidence_score=0.5)
        self.db.add(
            DuplicateCluster(id="cluster-2", entity_type="deal", entity_ids=["deal-z", "dëal-x"], confidence_score=0.9)
        )
        self.db.add(
            DuplicateCluster(id="cluster-3", entity_type="deal", entity_ids=["deal-y", "deal-z"], confidence_score=0.9)
        )
        self.db.add(
            DuplicateCluster(id="cluster-4", entity_type="vendor", entity_ids=["deal-a", "vendor-1"], confidence_score=0.9)
        )
        self.db.commit()

        result = merge_entities(self.db, ["dëal-x"], "deal-a")

        self.db.expire_all()
        linked = self.db.get(DuplicateCluster, "cluster-2")
        unrelated = self.db.get(DuplicateCluster, "cluster-3")
        other_type = self.db.get(DuplicateCluster, "cluster-4")
        assert linked is not None and unrelated is not None and other_type is not None
        self.assertEqual(linked.status, "merged")
        self.assertEqual(linked.merge_history_id, result.merge_history_id)
        self.assertEqual(unrelated.status, "active")
        self.assertIsNone(unrelated.merge_history_id)
        self.assertEqual(other_type.status, "active")

    def test_failing_step_rolls_back_everything(self) -> None:
        with mock.patch(
            "dealmerge.services.merge_executor._update_duplicate_links",
            side_effect=RuntimeError("link update failed"),
        ):
            with self.assertRaises(RuntimeError) as ctx:
                merge_entities(self.db, ["deal-b"], "deal-a")
        self.assertEqual(str(ctx.exception), "link update failed")

        self.db.expire_all()
        self.assertEqual(self._count(MergeHistory), 0)
        self.assertEqual(self._count(FieldConflictRecord), 0)
        source = self.db.get(Deal, "deal-b")
        target = self.db.get(Deal, "deal-a")
        assert source is not None and target is not None
        self.assertEqual(source.status, "active")
        self.assertEqual(target.products, ["firewall"])
        self.assertEqual(target.source_file_ids, ["file-1"])

    def test_cancellation_rolls_back(self) -> None:
        with mock.patch(
            "dealmerge.services.merge_executor._update_cluster_links",
            side_effect=KeyboardInterrupt(),
        ):
            with self.assertRaises(KeyboardInterrupt):
                merge_entities(self.db, ["deal-b"], "deal-a")

        self.db.expire_all()
        self.assertEqual(self._count(MergeHistory), 0)
        self.assertIsNotNone(self.db.get(Deal, "deal-b"))


if __name__ == "__main__":
    unittest.main()
