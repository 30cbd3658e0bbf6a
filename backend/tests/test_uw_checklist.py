"""
Tests for the UW checklist service.
"""
from unittest.mock import MagicMock

import pytest


class TestNormalizeCheckedItems:

    def test_map_keeps_true_only(self):
        from quote_engine.services.uw_checklist import normalize_checked_items

        assert normalize_checked_items({"id-check": True, "valuation": False, "aml": True}) == ["id-check", "aml"]

    def test_list_passes_through(self):
        from quote_engine.services.uw_checklist import normalize_checked_items

        assert normalize_checked_items(["a", 2]) == ["a", "2"]

    def test_none_is_empty(self):
        from quote_engine.services.uw_checklist import normalize_checked_items

        assert normalize_checked_items(None) == []

    def test_scalar_rejected(self):
        from quote_engine.errors import ValidationError
        from quote_engine.services.uw_checklist import normalize_checked_items

        with pytest.raises(ValidationError):
            normalize_checked_items("a,b")


class TestUWChecklistService:

    def test_empty_state(self, db, store):
        from quote_engine.services.uw_checklist import UWChecklistService

        state = UWChecklistService(db, store=store).get_checklist("q-1")

        assert state == {"quote_id": "q-1", "checked_items": {}, "custom_requirements": None, "stage": "Both"}

    def test_save_upserts_and_mirrors_progress(self, db, store):
        from quote_engine.models.db_models import UWChecklistStateDB
        from quote_engine.services.uw_checklist import UWChecklistService

        quote = store.create("bridging", {})
        service = UWChecklistService(db, store=store)

        service.save_checklist(quote["id"], {"a": True, "b": True}, stage="DIP", updated_by="uw@mfs.example")
        saved = service.save_checklist(quote["id"], ["a", "b", "c"], stage="DIP")

        assert saved["checked_items"] == {"a": True, "b": True, "c": True}
        assert saved["last_updated_by"] == "system"
        assert db.query(UWChecklistStateDB).count() == 1
        assert store.get(quote["id"])["uw_checklist_progress"] == 3
        assert service.get_checklist(quote["id"], stage="DIP")["checked_items"] == {"a": True, "b": True, "c": True}

    def test_stages_are_independent(self, db, store):
        from quote_engine.services.uw_checklist import UWChecklistService

        service = UWChecklistService(db, store=store)
        service.save_checklist("q-1", ["a"], stage="Quote")

        assert service.get_checklist("q-1", stage="DIP")["checked_items"] == {}

    def test_invalid_stage(self, db, store):
        from quote_engine.errors import ValidationError
        from quote_engine.services.uw_checklist import UWChecklistService

        with pytest.raises(ValidationError, match="Invalid stage"):
            UWChecklistService(db, store=store).get_checklist("q-1", stage="Completion")

    def test_progress_failure_does_not_fail_save(self, db):
        from quote_engine.errors import NotFoundError
        from quote_engine.services.uw_checklist import UWChecklistService

        store = MagicMock()
        store.set_checklist_progress.side_effect = NotFoundError("Quote not found in either table")

        saved = UWChecklistService(db, store=store).save_checklist("orphan", ["a"])

        assert saved["checked_items"] == {"a": True}
        store.set_checklist_progress.assert_called_once_with("orphan", 1)
