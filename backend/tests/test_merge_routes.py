"""HTTP contract tests for the merge router."""

from __future__ import annotations

import unittest
from collections.abc import Iterator
from datetime import date, datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dealmerge.db.dependencies import get_db
from dealmerge.main import app
from dealmerge.models import Deal, DuplicateCluster, DuplicateDetection, FieldConflictRecord, MergeHistory
from dealmerge.models.base import Base


class MergeRouteTests(unittest.TestCase):
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

        def _override_db() -> Iterator[Session]:
            db = cls.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _override_db
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls) -> None:
        app.dependency_overrides.pop(get_db, None)
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        now = datetime.now(timezone.utc)
        with self.SessionLocal() as db:
            db.execute(delete(FieldConflictRecord))
            db.execute(delete(MergeHistory))
            db.execute(delete(DuplicateDetection))
            db.execute(delete(DuplicateCluster))
            db.execute(delete(Deal))
            for deal_id, value, confidence in (("deal-a", 50000.0, 0.9), ("deal-b", 55000.0, 0.6)):
                db.add(
                    Deal(
                        id=deal_id,
                        deal_name="Acme Firewall Renewal",
                        customer_name="Acme",
                        currency="USD",
                        close_date=date(2026, 9, 30),
                        deal_value=value,
                        ai_confidence_score=confidence,
                        products=[],
                        source_file_ids=[],
                        created_at=now - timedelta(days=3),
                        updated_at=now - timedelta(days=2),
                    )
                )
            db.commit()

    def _execute(self) -> str:
        response = self.client.post(
            "/merge/execute",
            json={"source_entity_ids": ["deal-b"], "target_entity_id": "deal-a", "merged_by": "analyst"},
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["data"]["merge_history_id"]

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})
        self.assertEqual(self.client.get("/merge/health").json(), {"status": "ok", "service": "merge"})

    def test_preview(self) -> None:
        response = self.client.post("/merge/preview", json={"entity_ids": ["deal-a", "deal-b"]})
        self.assertEqual(response.status_code, 200, response.text)
        data = response.json()["data"]
        self.assertEqual(data["suggested_master"], "deal-a")
        self.assertEqual([conflict["field_name"] for conflict in data["conflicts"]], ["deal_value"])

    def test_preview_validation(self) -> None:
        self.assertEqual(self.client.post("/merge/preview", json={"entity_ids": ["deal-a"]}).status_code, 422)
        response = self.client.post("/merge/preview", json={"entity_ids": ["missing-1", "missing-2"]})
        self.assertEqual(response.status_code, 400)
        self.assertIn("At least 2 entities", response.json()["detail"])

    def test_execute_then_unmerge(self) -> None:
        history_id = self._execute()

        history = self.client.get("/merge/history").json()["data"]
        self.assertEqual([row["id"] for row in history], [history_id])
        self.assertEqual(history[0]["merged_by"], "analyst")
        conflicts = self.client.get(f"/merge/conflicts/{history_id}").json()["data"]
        self.assertEqual([conflict["field_name"] for conflict in conflicts], ["deal_value"])

        response = self.client.post(f"/merge/unmerge/{history_id}", json={"reason": "wrong customer"})
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["data"]["restored_entity_ids"], ["deal-b"])

        again = self.client.post(f"/merge/unmerge/{history_id}", json={})
        self.assertEqual(again.status_code, 404)

    def test_execute_with_missing_target_is_not_found(self) -> None:
        response = self.client.post(
            "/merge/execute",
            json={"source_entity_ids": ["deal-b"], "target_entity_id": "missing"},
        )
        self.assertEqual(response.status_code, 404)

    def test_irreversible_merge_conflicts(self) -> None:
        history_id = self._execute()
        with self.SessionLocal() as db:
            db.execute(update(MergeHistory).where(MergeHistory.id == history_id).values(can_unmerge=False))
            db.commit()

        response = self.client.post(f"/merge/unmerge/{history_id}", json={})
        self.assertEqual(response.status_code, 409)
        self.assertIn("irreversible", response.json()["detail"])

    def test_unknown_cluster_is_not_found(self) -> None:
        self.assertEqual(self.client.post("/merge/cluster/missing", json={}).status_code, 404)

    def test_auto_merge_threshold_bounds(self) -> None:
        self.assertEqual(self.client.post("/merge/auto", json={"threshold": 0.2}).status_code, 422)
        response = self.client.post("/merge/auto", json={})
        self.assertEqual(response.status_code, 200, response.text)
        data = response.json()["data"]
        self.assertTrue(data["dry_run"])
        self.assertEqual(data["total_clusters"], 0)

    def test_strategies(self) -> None:
        data = self.client.get("/merge/strategies").json()["data"]
        self.assertEqual(data["merge_strategies"], ["newest", "quality", "first", "manual", "weighted"])
        self.assertIn("manual", data["conflict_resolution_strategies"])
        self.assertEqual(data["defaults"]["merge_strategy"], "quality")
        self.assertEqual(data["defaults"]["conflict_resolution"], "complete")

    def test_quality_score(self) -> None:
        response = self.client.get("/merge/quality-score/deal-a")
        self.assertEqual(response.status_code, 200, response.text)
        self.assertIn("total", response.json()["data"]["breakdown"])
        self.assertEqual(self.client.get("/merge/quality-score/missing").status_code, 404)

    def test_audit_export(self) -> None:
        history_id = self._execute()

        response = self.client.get("/merge/audit/export", params={"entity_type": "deal"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/csv"))
        self.assertIn("attachment", response.headers["content-disposition"])
        self.assertIn(history_id, response.text)

        bad_range = self.client.get(
            "/merge/audit/export",
            params={"start_date": "2026-02-01T00:00:00Z", "end_date": "2026-01-01T00:00:00Z"},
        )
        self.assertEqual(bad_range.status_code, 400)


if __name__ == "__main__":
    unittest.main()
