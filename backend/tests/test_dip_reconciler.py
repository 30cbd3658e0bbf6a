"""
Tests for the DIP Reconciler.

1. Best candidate by coalesce(net_loan, gross_loan, 0)
2. Ties keep the earliest row
3. Exactly one DIP row after repeated runs
4. No candidates -> no DIP row
5. Failures are swallowed
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest


BASE_TIME = datetime(2026, 1, 5, 9, 0, 0)


def _seed(db, family, quote_id, results):
    """Insert a quote and QUOTE-stage results with increasing created_at."""
    db.add(family.quote_model(id=quote_id, reference_number=f"REF-{quote_id}", calculator_type=family.value, payload={}))
    for i, fields in enumerate(results):
        db.add(family.result_model(
            id=f"{quote_id}-r{i}",
            quote_id=quote_id,
            stage="QUOTE",
            created_at=BASE_TIME + timedelta(minutes=i),
            payload={},
            **fields,
        ))
    db.commit()


def _dip_rows(db, family, quote_id):
    model = family.result_model
    return db.query(model).filter(model.quote_id == quote_id, model.stage == "DIP").all()


# =============================================================================
# TEST: CANDIDATE SELECTION
# =============================================================================

class TestSelectBestCandidate:

    def test_highest_net_loan_wins(self):
        from quote_engine.services.dip_reconciler import select_best_candidate

        rows = [{"id": "a", "net_loan": 100000}, {"id": "b", "net_loan": 250000}, {"id": "c", "net_loan": 180000}]

        assert select_best_candidate(rows)["id"] == "b"

    def test_gross_loan_used_when_net_missing(self):
        from quote_engine.services.dip_reconciler import select_best_candidate

        rows = [{"id": "a", "gross_loan": 50000}, {"id": "b", "gross_loan": 90000}]

        assert select_best_candidate(rows)["id"] == "b"

    def test_tie_keeps_first(self):
        from quote_engine.services.dip_reconciler import select_best_candidate

        rows = [{"id": "first", "net_loan": 100}, {"id": "second", "net_loan": 100}]

        assert select_best_candidate(rows)["id"] == "first"

    def test_all_null_scores_zero_and_keeps_first(self):
        from quote_engine.services.dip_reconciler import candidate_score, select_best_candidate

        rows = [{"id": "a"}, {"id": "b", "net_loan": None, "gross_loan": None}]

        assert candidate_score(rows[1]) == 0.0
        assert select_best_candidate(rows)["id"] == "a"

    def test_empty(self):
        from quote_engine.services.dip_reconciler import select_best_candidate

        assert select_best_candidate([]) is None


class TestIsIssuedStatus:

    @pytest.mark.parametrize("status,expected", [
        ("Issued", True),
        ("issued", True),
        ("DIP ISSUED", True),
        ("Reissued to broker", True),
        ("Draft", False),
        ("", False),
        (None, False),
        (1, False),
    ])
    def test_issued_substring(self, status, expected):
        from quote_engine.services.dip_reconciler import is_issued_status

        assert is_issued_status(status) is expected


# =============================================================================
# TEST: RECONCILE
# =============================================================================

class TestDipReconciler:

    def test_clones_best_candidate(self, db):
        from quote_engine.models.db_models import ProductFamily
        from quote_engine.services.dip_reconciler import DipReconciler

        _seed(db, ProductFamily.BTL, "q-1", [
            {"fee_column": "1", "net_loan": 100000},
            {"fee_column": "2", "net_loan": 250000, "product_name": "Tracker"},
            {"fee_column": "3", "net_loan": 180000},
        ])

        dip = DipReconciler(db).reconcile("q-1", ProductFamily.BTL)

        assert dip["stage"] == "DIP"
        assert dip["fee_column"] == "2"
        assert dip["product_name"] == "Tracker"
        assert dip["id"] != "q-1-r1"
        rows = _dip_rows(db, ProductFamily.BTL, "q-1")
        assert len(rows) == 1
        assert rows[0].net_loan == 250000

    def test_repeated_runs_keep_single_dip_row(self, db):
        from quote_engine.models.db_models import ProductFamily
        from quote_engine.services.dip_reconciler import DipReconciler

        _seed(db, ProductFamily.BRIDGING, "b-1", [
            {"fee_column": "1", "gross_loan": 50000},
            {"fee_column": "2", "gross_loan": 90000},
        ])
        reconciler = DipReconciler(db)

        for _ in range(3):
            reconciler.reconcile("b-1", ProductFamily.BRIDGING)

        rows = _dip_rows(db, ProductFamily.BRIDGING, "b-1")
        assert len(rows) == 1
        assert rows[0].fee_column == "2"

    def test_existing_dip_row_never_chosen_as_candidate(self, db):
        from quote_engine.models.db_models import ProductFamily, QuoteResultDB
        from quote_engine.services.dip_reconciler import DipReconciler

        _seed(db, ProductFamily.BTL, "q-2", [{"fee_column": "1", "net_loan": 1000}])
        db.add(QuoteResultDB(id="old-dip", quote_id="q-2", stage="DIP", net_loan=999999, payload={}))
        db.commit()

        dip = DipReconciler(db).reconcile("q-2", ProductFamily.BTL)

        assert dip["net_loan"] == 1000
        assert [r.id for r in _dip_rows(db, ProductFamily.BTL, "q-2")] == [dip["id"]]

    def test_no_candidates_returns_none(self, db):
        from quote_engine.models.db_models import ProductFamily
        from quote_engine.services.dip_reconciler import DipReconciler

        _seed(db, ProductFamily.BTL, "q-3", [])

        assert DipReconciler(db).reconcile("q-3", ProductFamily.BTL) is None
        assert _dip_rows(db, ProductFamily.BTL, "q-3") == []

    def test_payload_fields_are_cloned(self, db):
        from quote_engine.models.db_models import ProductFamily, QuoteResultDB
        from quote_engine.services.dip_reconciler import DipReconciler

        _seed(db, ProductFamily.BTL, "q-4", [])
        db.add(QuoteResultDB(
            id="r", quote_id="q-4", stage="QUOTE", net_loan=5, payload={"initial_rate": 4.99},
        ))
        db.commit()

        dip = DipReconciler(db).reconcile("q-4", ProductFamily.BTL)

        assert dip["initial_rate"] == 4.99

    def test_failure_is_swallowed(self):
        from quote_engine.models.db_models import ProductFamily
        from quote_engine.services.dip_reconciler import DipReconciler

        mock_db = MagicMock()
        mock_db.query.side_effect = RuntimeError("connection reset")

        assert DipReconciler(mock_db).reconcile("q-1", ProductFamily.BTL) is None
        mock_db.rollback.assert_called_once()
