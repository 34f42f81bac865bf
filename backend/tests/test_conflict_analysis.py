"""Unit tests for conflict analysis, per-field resolution and master selection."""

import unittest
from datetime import datetime, timedelta, timezone

from dealmerge.merging.conflicts import (
    REASON_MANUAL,
    REASON_MOST_RECENT,
    ConflictResolutionStrategy,
    analyze_conflicts,
    resolve_field,
)
from dealmerge.merging.errors import MergeStateError, MergeValidationError
from dealmerge.merging.selection import MergeStrategy, select_master
from dealmerge.merging.snapshot import MergeSnapshot

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _record(entity_id: str, **fields) -> dict[str, object]:
    record: dict[str, object] = {
        "id": entity_id,
        "deal_name": "Acme Firewall Renewal",
        "customer_name": "Acme",
        "deal_value": 50000.0,
        "products": ["firewall"],
        "source_file_ids": ["file-a"],
        "ai_confidence_score": 0.8,
        "validation_status": None,
        "updated_at": NOW - timedelta(days=1),
    }
    record.update(fields)
    return record


class ConflictAnalysisTests(unittest.TestCase):
    def test_single_deal_value_conflict_reports_both_values_and_reason(self) -> None:
        records = [
            _record("deal-a", deal_value=50000.0, ai_confidence_score=0.9),
            _record("deal-b", deal_value=55000.0, ai_confidence_score=0.6),
        ]

        analysis = analyze_conflicts(records)

        self.assertEqual([conflict.field_name for conflict in analysis.conflicts], ["deal_value"])
        conflict = analysis.conflicts[0]
        self.assertEqual({item.value for item in conflict.values}, {50000.0, 55000.0})
        self.assertEqual(conflict.suggested_value, 50000.0)
        self.assertIn("higher confidence", conflict.suggested_reason)
        self.assertFalse(conflict.requires_manual_review)

    def test_identical_records_and_reserved_fields_have_no_conflicts(self) -> None:
        records = [
            _record("deal-a", ai_confidence_score=0.2, validation_status="passed", notes="x"),
            _record("deal-b", ai_confidence_score=0.9, validation_status="failed", notes="y"),
        ]
        self.assertEqual(analyze_conflicts(records).conflicts, [])

    def test_arrays_compare_as_sets_and_union_on_conflict(self) -> None:
        same = analyze_conflicts(
            [
                _record("deal-a", products=["vpn", "firewall"]),
                _record("deal-b", products=["firewall", "vpn"]),
            ]
        )
        self.assertEqual(same.conflicts, [])

        different = analyze_conflicts(
            [
                _record("deal-a", products=["firewall"]),
                _record("deal-b", products=["vpn", "firewall"]),
            ]
        )
        conflict = different.conflicts[0]
        self.assertEqual(conflict.field_name, "products")
        self.assertEqual(conflict.suggested_value, ["firewall", "vpn"])

    def test_null_against_value_is_a_conflict_that_prefers_the_value(self) -> None:
        analysis = analyze_conflicts(
            [
                _record("deal-a", customer_name=None, ai_confidence_score=0.9),
                _record("deal-b", customer_name="Acme Inc", ai_confidence_score=0.5),
            ]
        )
        conflict = analysis.conflicts[0]
        self.assertEqual(conflict.field_name, "customer_name")
        self.assertEqual(len(conflict.values), 2)
        self.assertEqual(conflict.suggested_value, "Acme Inc")

    def test_close_confidence_falls_back_to_most_recent(self) -> None:
        analysis = analyze_conflicts(
            [
                _record("deal-a", deal_value=1.0, ai_confidence_score=0.80, updated_at=NOW - timedelta(days=9)),
                _record("deal-b", deal_value=2.0, ai_confidence_score=0.83, updated_at=NOW - timedelta(days=1)),
            ]
        )
        conflict = analysis.conflicts[0]
        self.assertEqual(conflict.suggested_value, 2.0)
        self.assertEqual(conflict.suggested_reason, REASON_MOST_RECENT)

    def test_equal_confidence_and_recency_requires_manual_review(self) -> None:
        stamp = NOW - timedelta(days=2)
        analysis = analyze_conflicts(
            [
                _record("deal-a", deal_value=1.0, updated_at=stamp),
                _record("deal-b", deal_value=2.0, updated_at=stamp),
            ]
        )
        conflict = analysis.conflicts[0]
        self.assertTrue(conflict.requires_manual_review)
        self.assertEqual(conflict.suggested_reason, REASON_MANUAL)
        self.assertEqual(analysis.manual_review_count, 1)


class ResolveFieldTests(unittest.TestCase):
    def setUp(self) -> None:
        self.analysis = analyze_conflicts(
            [
                _record(
                    "target",
                    deal_value=50000.0,
                    ai_confidence_score=0.6,
                    products=["firewall"],
                    source_file_ids=["file-a"],
                ),
                _record(
                    "source",
                    deal_value=55000.0,
                    ai_confidence_score=0.9,
                    validation_status="passed",
                    products=["vpn"],
                    source_file_ids=["file-b", "file-a"],
                ),
            ]
        )
        self.conflicts = {conflict.field_name: conflict for conflict in self.analysis.conflicts}

    def _resolve(self, field_name: str, strategy: ConflictResolutionStrategy):
        return resolve_field(self.conflicts[field_name], strategy, target_id="target", source_ids=["source"])

    def test_prefer_target_and_source(self) -> None:
        self.assertEqual(self._resolve("deal_value", ConflictResolutionStrategy.PREFER_TARGET).value, 50000.0)
        self.assertEqual(self._resolve("deal_value", ConflictResolutionStrategy.PREFER_SOURCE).value, 55000.0)
        self.assertEqual(self._resolve("products", ConflictResolutionStrategy.PREFER_TARGET).value, ["firewall"])

    def test_prefer_complete_uses_suggestion(self) -> None:
        resolution = self._resolve("deal_value", ConflictResolutionStrategy.PREFER_COMPLETE)
        self.assertEqual(resolution.value, 55000.0)
        self.assertFalse(resolution.pending)

    def test_prefer_validated_picks_validated_value(self) -> None:
        self.assertEqual(self._resolve("deal_value", ConflictResolutionStrategy.PREFER_VALIDATED).value, 55000.0)

    def test_manual_leaves_scalars_unset_but_unions_arrays(self) -> None:
        scalar = self._resolve("deal_value", ConflictResolutionStrategy.MANUAL)
        self.assertIsNone(scalar.value)
        self.assertTrue(scalar.pending)

        array = self._resolve("products", ConflictResolutionStrategy.MANUAL)
        self.assertEqual(array.value, ["firewall", "vpn"])
        self.assertFalse(array.pending)

    def test_source_file_ids_are_unioned_under_every_strategy(self) -> None:
        for strategy in ConflictResolutionStrategy:
            with self.subTest(strategy=strategy):
                self.assertEqual(self._resolve("source_file_ids", strategy).value, ["file-a", "file-b"])


class MasterSelectionTests(unittest.TestCase):
    def test_highest_quality_wins(self) -> None:
        records = [
            _record("deal-a", ai_confidence_score=0.3),
            _record("deal-b", ai_confidence_score=0.9, validation_status="passed"),
        ]
        master, reason = select_master(records, as_of=NOW)
        self.assertEqual(master["id"], "deal-b")
        self.assertIn("highest quality", reason)

    def test_quality_tie_breaks_on_recency_then_id(self) -> None:
        stamp = NOW - timedelta(days=1)
        tied = [_record("deal-b", updated_at=stamp), _record("deal-a", updated_at=stamp)]
        master, _ = select_master(tied, as_of=NOW)
        self.assertEqual(master["id"], "deal-a")

    def test_keep_newest_and_keep_first(self) -> None:
        records = [
            _record("deal-a", created_at=NOW - timedelta(days=30), updated_at=NOW - timedelta(days=10)),
            _record("deal-b", created_at=NOW - timedelta(days=5), updated_at=NOW - timedelta(days=1)),
        ]
        newest, _ = select_master(records, MergeStrategy.KEEP_NEWEST, as_of=NOW)
        first, _ = select_master(records, MergeStrategy.KEEP_FIRST, as_of=NOW)
        self.assertEqual(newest["id"], "deal-b")
        self.assertEqual(first["id"], "deal-a")

    def test_empty_input_raises(self) -> None:
        with self.assertRaises(MergeValidationError):
            select_master([])


class MergeSnapshotTests(unittest.TestCase):
    def test_unknown_snapshot_version_is_rejected(self) -> None:
        snapshot = MergeSnapshot(
            target_entity_id="target",
            source_entity_ids=("source",),
            merged_data={"deal_value": 1.0},
            pre_merge={"source": {"id": "source"}},
            conflicts=(),
            merge_strategy="quality",
            conflict_resolution_strategy="complete",
            preserve_source=False,
        )
        payload = snapshot.to_json()
        self.assertEqual(MergeSnapshot.from_json(payload), snapshot)

        payload["version"] = 99
        with self.assertRaises(MergeStateError):
            MergeSnapshot.from_json(payload)


if __name__ == "__main__":
    unittest.main()
