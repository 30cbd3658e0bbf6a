"""
HTTP contract tests for the quote, rate and admin routers.
"""
import pytest


RESULTS = [
    {"fee_column": "2", "net_loan": 100000, "initial_term": 24, "rolled_months": 6},
    {"fee_column": "3", "net_loan": 250000},
]


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# =============================================================================
# TEST: QUOTES
# =============================================================================

class TestQuotesApi:

    def test_create_and_get_bridging_quote(self, client, broker):
        response = client.post("/quotes", json={
            "calculator_type": "bridging",
            "name": "Jones",
            "loan_amount": 300000,
            "term_months": 12,
            "results": RESULTS,
        })

        assert response.status_code == 201
        quote = response.json()["quote"]
        assert quote["calculator_type"] == "BRIDGING"
        assert quote["user_id"] == broker.id
        assert quote["term_months"] == 12
        assert quote["reference_number"] == "MFS000001"

        fetched = client.get(f"/quotes/{quote['id']}", params={"include_results": True}).json()["quote"]
        assert fetched["id"] == quote["id"]
        assert len(fetched["results"]) == 2

    def test_invalid_calculator_type(self, client):
        response = client.post("/quotes", json={"calculator_type": "mortgage"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert "calculator_type" in body["error"]["details"]

    def test_unknown_quote_is_404(self, client):
        response = client.get("/quotes/ghost")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": {"code": "NOT_FOUND", "message": "Quote not found"}}

    def test_issue_dip_via_put(self, client, db):
        from quote_engine.models.db_models import QuoteResultDB

        quote = client.post("/quotes", json={"calculator_type": "btl", "results": RESULTS}).json()["quote"]

        response = client.put(f"/quotes/{quote['id']}", json={"dip_status": "Issued", "quote_status": "Issued"})

        assert response.status_code == 200
        updated = response.json()["quote"]
        assert updated["dip_issued_at"] is not None
        assert updated["quote_issued_at"] is not None
        dip_rows = db.query(QuoteResultDB).filter(
            QuoteResultDB.quote_id == quote["id"], QuoteResultDB.stage == "DIP",
        ).all()
        assert len(dip_rows) == 1
        assert dip_rows[0].fee_column == "3"

    def test_explicit_null_does_not_clear_issued_at(self, client):
        quote = client.post("/quotes", json={"calculator_type": "btl"}).json()["quote"]
        issued = client.put(f"/quotes/{quote['id']}", json={"quote_status": "Issued"}).json()["quote"]

        cleared = client.put(f"/quotes/{quote['id']}", json={"quote_issued_at": None}).json()["quote"]

        assert cleared["quote_issued_at"] == issued["quote_issued_at"]

    def test_combined_list(self, client):
        client.post("/quotes", json={"calculator_type": "btl", "name": "A"})
        client.post("/quotes", json={"calculator_type": "bridging", "name": "B"})

        quotes = client.get("/quotes").json()["quotes"]
        assert {q["name"] for q in quotes} == {"A", "B"}

        bridging = client.get("/quotes", params={"calculator_type": "bridging"}).json()["quotes"]
        assert [q["name"] for q in bridging] == ["B"]

    def test_delete(self, client):
        quote = client.post("/quotes", json={"calculator_type": "bridging"}).json()["quote"]

        response = client.delete(f"/quotes/{quote['id']}")

        assert response.status_code == 200
        assert response.json()["deleted"]["id"] == quote["id"]
        assert client.get(f"/quotes/{quote['id']}").status_code == 404

    def test_uw_checklist_round_trip(self, client):
        quote = client.post("/quotes", json={"calculator_type": "btl"}).json()["quote"]

        saved = client.put(f"/quotes/{quote['id']}/uw-checklist", json={
            "checked_items": {"id-check": True, "valuation": False},
            "stage": "Quote",
        })

        assert saved.status_code == 200
        assert saved.json()["checked_items"] == {"id-check": True}
        assert saved.json()["last_updated_by"] == "broker@mfs.example"
        fetched = client.get(f"/quotes/{quote['id']}/uw-checklist", params={"stage": "Quote"}).json()
        assert fetched["checked_items"] == {"id-check": True}
        assert client.get(f"/quotes/{quote['id']}").json()["quote"]["uw_checklist_progress"] == 1


# =============================================================================
# TEST: RATES / ADMIN
# =============================================================================

@pytest.fixture
def rate_rows(db):
    from quote_engine.models.db_models import RateFlatDB

    rows = [
        RateFlatDB(set_key="RATES_SPEC", property="Residential", product="2yr Fix", tier="1",
                   product_fee="2", rate=5.49, max_ltv="75"),
        RateFlatDB(set_key="RATES_SPEC", property="Residential", product="2yr Fix", tier="1",
                   product_fee="2", rate=5.49, max_ltv="75"),
        RateFlatDB(set_key="RATES_SPEC", property="Residential", product="2yr Fix", tier="2",
                   product_fee="2", rate=5.29, max_ltv=None),
    ]
    db.add_all(rows)
    db.commit()
    return rows


class TestRatesApi:

    def test_list_rates(self, client, rate_rows):
        response = client.get("/rates", params={"set_key": "RATES_SPEC", "tier": "2"})

        assert response.status_code == 200
        assert [r["rate"] for r in response.json()["rates"]] == [5.29]

    def test_patch_requires_admin(self, client, rate_rows):
        response = client.patch(f"/rates/{rate_rows[0].id}", json={
            "field": "rate", "value": 5.0, "table_name": "rates_flat",
        })

        assert response.status_code == 403

    def test_admin_patch_and_audit_log(self, admin_client, rate_rows):
        rate_id = rate_rows[0].id
        response = admin_client.patch(f"/rates/{rate_id}", json={
            "field": "rate", "value": "5.25", "table_name": "rates_flat",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["audit_logged"] is True
        assert body["rate"]["rate"] == 5.25
        assert body["message"] == "rate updated successfully"

        log = admin_client.get("/rates/audit-log").json()["audit_log"]
        assert log[0]["record_id"] == rate_id
        assert log[0]["old_value"] == "5.49"

    def test_admin_patch_rejects_bad_rate(self, admin_client, rate_rows):
        response = admin_client.patch(f"/rates/{rate_rows[0].id}", json={
            "field": "rate", "value": 250, "table_name": "rates_flat",
        })

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Rate must be a number between 0 and 100"


class TestDataHealthApi:

    def test_report(self, admin_client, rate_rows):
        response = admin_client.get("/admin/data-health", params={"set_key": "RATES_SPEC"})

        assert response.status_code == 200
        report = response.json()
        assert report["stats"]["total_rows"] == 3
        assert report["stats"]["property"] == "ALL"
        assert report["exact_duplicates"][0]["count"] == 2
        assert report["cross_tier_duplicates"][0]["tiers"] == ["1", "2"]
        assert [a["id"] for a in report["anomalies"]["missing_max_ltv"]] == [rate_rows[2].id]

    def test_requires_admin(self, client):
        assert client.get("/admin/data-health").status_code == 403
