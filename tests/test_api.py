"""
HTTP API tests — endpoints, permission gate and error-to-status mapping.

Tests:
1-3.   Health and permission gate (401 / 403)
4-11.  Rate catalog endpoints
12-13. Freight calculation
14-20. Draft wizard end to end
21-23. Budget items and pricing
"""

from datetime import date

from precast import models

PRICING_DATE = "2026-03-15"


# --- Test fixtures ---

def _start_draft(client, auth_headers):
    response = client.post("/api/drafts", json={"customer_id": "C-1"}, headers=auth_headers)
    assert response.status_code == 201
    return response.json()


def _add_items(client, auth_headers, budget_id):
    for item in [
        {"piece_id": "VIGA-01", "quantity": 2, "unit_weight_tons": 5.0, "length_m": 10.0},
        {"piece_id": "COL-02", "quantity": 4, "unit_weight_tons": 2.0, "length_m": 6.0},
    ]:
        response = client.post(f"/api/budgets/{budget_id}/items", json=item, headers=auth_headers)
        assert response.status_code == 201


def _complete_steps(client, auth_headers, token):
    steps = {
        1: {"customer_id": "C-1", "project_id": "P-9"},
        2: {"origin_plant": "PLANTA-NORTE"},
        3: {"distance_km": 250, "destination": "Rosario"},
        4: {},
        5: {"assembly_days": 0, "crane_days": 0},
    }
    for step, data in steps.items():
        response = client.put(f"/api/drafts/{token}/steps/{step}", json={"data": data}, headers=auth_headers)
        assert response.status_code == 200


# --- Health and permissions ---

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_token_required(client):
    assert client.get("/api/rates/freight").status_code == 401
    bad = {"Authorization": "Bearer not-a-jwt"}
    assert client.get("/api/rates/freight", headers=bad).status_code == 401


def test_missing_permission_forbidden(client, viewer_headers):
    assert client.get("/api/rates/freight", headers=viewer_headers).status_code == 200
    response = client.post("/api/rates/freight", json={
        "km_from": 0, "km_to": 100, "rate_under": 5, "rate_over": 6,
    }, headers=viewer_headers)
    assert response.status_code == 403


# --- Rate catalog ---

def test_create_and_list_freight_rates(client, auth_headers):
    response = client.post("/api/rates/freight", json={
        "km_from": 0, "km_to": 100, "rate_under": 5, "rate_over": 6, "effective_date": "2026-01-01",
    }, headers=auth_headers)
    assert response.status_code == 201
    assert response.json()["created_by"] == "tester"

    listed = client.get("/api/rates/freight", headers=auth_headers).json()
    assert [r["rate_under"] for r in listed] == [5]


def test_empty_band_is_bad_request(client, auth_headers):
    response = client.post("/api/rates/freight", json={
        "km_from": 300, "km_to": 100, "rate_under": 5, "rate_over": 6,
    }, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"


def test_resolve_freight_band(client, auth_headers, seeded_catalog):
    response = client.get(
        "/api/rates/resolve/freight",
        params={"distance_km": 250, "as_of": PRICING_DATE},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["record"]["rate_under"] == 8


def test_resolve_without_rate_is_422(client, auth_headers, seeded_catalog):
    response = client.get(
        "/api/rates/resolve/freight",
        params={"distance_km": 5000, "as_of": PRICING_DATE},
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "no_applicable_rate"


def test_formula_bootstrap_is_repeatable(client, auth_headers, db):
    first = client.post("/api/rates/formula/bootstrap", headers=auth_headers).json()
    second = client.post("/api/rates/formula/bootstrap", headers=auth_headers).json()
    assert first["id"] == second["id"]
    assert db.query(models.PolynomialFormula).count() == 1


def test_bulk_adjustment_rolls_back(client, auth_headers, db):
    client.post("/api/rates/materials", json={
        "material_code": "CEMENT", "price": 100, "effective_date": "2026-01-01",
    }, headers=auth_headers)

    response = client.post("/api/rates/materials/adjust", json={
        "percentage": 10, "effective_date": "2026-04-01", "material_codes": ["CEMENT", "MISSING"],
    }, headers=auth_headers)
    assert response.status_code == 422
    assert db.query(models.MaterialPrice).count() == 1

    response = client.post("/api/rates/materials/adjust", json={
        "percentage": 10, "effective_date": "2026-04-01",
    }, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()[0]["price"] == 110.0


def test_index_adjustment(client, auth_headers, seeded_catalog):
    response = client.post("/api/rates/indices/adjustment", json={
        "base_month": 1, "base_year": 2026, "target_month": 3, "target_year": 2026,
    }, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["adjustment_percentage"] == 7.5


def test_duplicate_index_month_conflicts(client, auth_headers, seeded_catalog):
    response = client.post("/api/rates/indices", json={
        "month": 1, "year": 2026, "steel_index": 1, "labor_index": 1,
        "concrete_index": 1, "fuel_index": 1,
    }, headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["error"] == "conflict"


# --- Freight ---

def test_freight_calculation(client, auth_headers, seeded_catalog):
    payload = {"distance_km": 250, "truck_loads": 3, "long_haul": True,
               "as_of": PRICING_DATE, "request_key": "retry-1"}
    first = client.post("/api/freight/calculate", json=payload, headers=auth_headers)
    retry = client.post("/api/freight/calculate", json=payload, headers=auth_headers)

    assert first.status_code == 200
    assert first.json()["total_cost"] == 30.0
    assert retry.json()["id"] == first.json()["id"]


def test_freight_needs_trucks(client, auth_headers, seeded_catalog):
    response = client.post("/api/freight/calculate", json={
        "distance_km": 250, "truck_loads": 0,
    }, headers=auth_headers)
    assert response.status_code == 422  # rejected by request validation


# --- Draft wizard ---

def test_draft_end_to_end(client, auth_headers, seeded_catalog):
    draft = _start_draft(client, auth_headers)
    token, budget_id = draft["resume_token"], draft["budget_id"]
    _add_items(client, auth_headers, budget_id)
    _complete_steps(client, auth_headers, token)

    resumed = client.get(f"/api/drafts/{token}", headers=auth_headers).json()
    assert resumed["completed_steps"] == [1, 2, 3, 4, 5]
    assert resumed["draft_data"]["3"]["distance_km"] == 250

    response = client.post(f"/api/drafts/{token}/finalize", json={"as_of": PRICING_DATE}, headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "finalized"
    assert body["final_total"] == 5308.0
    assert len(body["items"]) == 2

    assert client.get(f"/api/drafts/{token}", headers=auth_headers).status_code == 404
    stored = client.get(f"/api/budgets/{budget_id}", headers=auth_headers).json()
    assert stored["is_draft"] is False


def test_finalize_incomplete_draft(client, auth_headers, seeded_catalog):
    token = _start_draft(client, auth_headers)["resume_token"]
    client.put(f"/api/drafts/{token}/steps/1", json={"data": {"customer_id": "C-1"}}, headers=auth_headers)

    response = client.post(f"/api/drafts/{token}/finalize", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "incomplete_draft"
    assert response.json()["missing_steps"] == [2, 3, 4, 5]


def test_step_out_of_range(client, auth_headers):
    token = _start_draft(client, auth_headers)["resume_token"]
    response = client.put(f"/api/drafts/{token}/steps/7", json={"data": {}}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"


def test_unknown_draft(client, auth_headers):
    response = client.get("/api/drafts/nope", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_draft_summary(client, auth_headers):
    token = _start_draft(client, auth_headers)["resume_token"]
    client.put(f"/api/drafts/{token}/steps/2", json={"data": {"origin_plant": "PLANTA-SUR"}}, headers=auth_headers)

    summary = client.get("/api/drafts/summary", headers=auth_headers).json()
    assert sorted(summary) == ["1", "2", "3", "4", "5", "6"]
    assert [d["resume_token"] for d in summary["2"]] == [token]


def test_discard_draft(client, auth_headers, db):
    token = _start_draft(client, auth_headers)["resume_token"]
    assert client.delete(f"/api/drafts/{token}", headers=auth_headers).status_code == 204
    assert client.get(f"/api/drafts/{token}", headers=auth_headers).status_code == 404
    assert db.query(models.Budget).count() == 0


def test_viewer_cannot_start_draft(client, viewer_headers):
    assert client.post("/api/drafts", json={}, headers=viewer_headers).status_code == 403


# --- Budget items and pricing ---

def test_item_edit_marks_budget_for_repricing(client, auth_headers, seeded_catalog):
    draft = _start_draft(client, auth_headers)
    budget_id = draft["budget_id"]
    _add_items(client, auth_headers, budget_id)
    _complete_steps(client, auth_headers, draft["resume_token"])

    priced = client.post(f"/api/budgets/{budget_id}/price", json={"as_of": PRICING_DATE}, headers=auth_headers)
    assert priced.status_code == 200
    assert priced.json()["grand_total"] == 5308.0
    assert client.get(f"/api/budgets/{budget_id}", headers=auth_headers).json()["needs_repricing"] is False

    item_id = priced.json()["lines"][0]["item_id"]
    response = client.patch(f"/api/budgets/{budget_id}/items/{item_id}", json={"quantity": 3}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["line_total"] is None
    assert client.get(f"/api/budgets/{budget_id}", headers=auth_headers).json()["needs_repricing"] is True

    assert client.delete(f"/api/budgets/{budget_id}/items/{item_id}", headers=auth_headers).status_code == 204
    assert len(client.get(f"/api/budgets/{budget_id}", headers=auth_headers).json()["items"]) == 1


def test_degenerate_formula_is_422(client, auth_headers, seeded_catalog, db):
    draft = _start_draft(client, auth_headers)
    budget_id = draft["budget_id"]
    _add_items(client, auth_headers, budget_id)
    _complete_steps(client, auth_headers, draft["resume_token"])
    db.add(models.PolynomialFormula(
        name="incomplete", steel_coefficient=0.5, labor_coefficient=0.5,
        concrete_coefficient=None, fuel_coefficient=None, effective_date=date(2026, 3, 1),
    ))
    db.commit()

    response = client.post(f"/api/budgets/{budget_id}/price", json={"as_of": PRICING_DATE}, headers=auth_headers)
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_formula"


def test_unknown_budget(client, auth_headers):
    assert client.get("/api/budgets/999", headers=auth_headers).status_code == 404
