"""HTTP tests for the FastAPI app, run in-process with TestClient."""

import pytest
from fastapi.testclient import TestClient

from caraudio_pos.api.routes import limiter
from caraudio_pos.core.config import Settings, get_settings
from caraudio_pos.main import app
from caraudio_pos.models.accessory import VehicleAccessoryRecord
from caraudio_pos.models.vehicle import VehicleFitmentRecord
from caraudio_pos.services.allocation import AllocationEngine
from caraudio_pos.services.fitment_engine import FitmentEngine
from caraudio_pos.services.fitment_store import AccessoryTable, FitmentDataStore
from caraudio_pos.services.inventory_repo import InMemoryInventoryRepository

CIVIC = {"year": 2018, "make": "Honda", "model": "Civic"}

CATALOG = [
    {"id": "p1", "sku": "P1", "name": "Coax 6.5", "category": "Speakers", "speakerSize": "6.5", "price": 99.0},
    {"id": "p2", "sku": "P2", "name": "Coax 6x9", "category": "Speakers", "speakerSize": "6x9", "price": 129.0},
    {"id": "k1", "sku": "99-7899", "name": "Dash kit", "category": "Dash Kits", "price": 25.0},
    {"id": "z1", "sku": "ZZ-1", "name": "Unrelated", "category": "Accessories"},
]


def _fitment_engine() -> FitmentEngine:
    record = VehicleFitmentRecord(
        year_start=2016,
        year_end=2021,
        make="Honda",
        model="Civic",
        locations=[
            {"role": "Front Door", "sizes": ["6.5"]},
            {"role": "Rear Deck", "sizes": ["6x9"]},
        ],
    )
    accessories = AccessoryTable(
        {
            "2018|Honda|Civic": VehicleAccessoryRecord.model_validate(
                {"dashKits": {"singleDin": ["99-7899"]}}
            )
        }
    )
    return FitmentEngine(FitmentDataStore([record]), accessories)


@pytest.fixture
def client():
    with TestClient(app) as c:
        app.state.fitment_engine = _fitment_engine()
        app.state.allocation_engine = AllocationEngine(InMemoryInventoryRepository())
        limiter.reset()
        yield c
    app.dependency_overrides.clear()


def _create_product(client: TestClient, product_id: str = "sub", brand: str = "JL Audio") -> None:
    response = client.put(f"/api/products/{product_id}", json={"sku": "10W3V3-4", "brand": brand})
    assert response.status_code == 200


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_basic(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_detailed_reports_snapshot_size(self, client):
        data = client.get("/health", params={"detailed": True}).json()
        assert data["status"] == "healthy"
        assert data["vehicle_keys"] > 0


# ---------------------------------------------------------------------------
# Vehicle options and fitment
# ---------------------------------------------------------------------------


class TestVehicleOptions:
    def test_years_makes_models(self, client):
        assert client.get("/api/vehicles/years").json()["years"][0] == 2021
        assert client.get("/api/vehicles/makes", params={"year": 2018}).json() == {"makes": ["Honda"]}
        models = client.get("/api/vehicles/models", params={"year": 2018, "make": "honda"}).json()
        assert models == {"models": ["Civic"]}

    def test_unknown_year_is_empty(self, client):
        assert client.get("/api/vehicles/makes", params={"year": 1950}).json() == {"makes": []}

    def test_year_must_be_integer(self, client):
        assert client.get("/api/vehicles/makes", params={"year": "soon"}).status_code == 422


class TestFitment:
    def test_known_vehicle(self, client):
        data = client.get("/api/fitment", params=CIVIC).json()
        assert data["fitment"]["make"] == "Honda"
        assert [loc["role"] for loc in data["fitment"]["locations"]] == ["Front Door", "Rear Deck"]

    def test_unknown_vehicle_is_null(self, client):
        data = client.get("/api/fitment", params={"year": 2018, "make": "Yugo", "model": "GV"}).json()
        assert data == {"fitment": None}

    def test_din_sizes(self, client):
        data = client.get("/api/fitment/din-sizes", params=CIVIC).json()
        assert data == {"singleDin": True, "doubleDin": False}

    def test_recommendations(self, client):
        response = client.post(
            "/api/fitment/recommendations", json={"vehicle": CIVIC, "products": CATALOG}
        )
        assert response.status_code == 200
        data = response.json()
        assert [p["id"] for p in data["products"]] == ["p1", "p2", "k1"]
        assert data["bucketCounts"] == {"Speakers": 2, "Dash Kits": 1}
        assert data["speakersByLocation"] == {"Front Door": ['6.5"'], "Rear Deck": ["6x9"]}
        assert data["dinSizes"]["singleDin"] is True

    def test_bucket_filter_keeps_counts(self, client):
        data = client.post(
            "/api/fitment/recommendations",
            json={"vehicle": CIVIC, "products": CATALOG, "bucket": "Dash Kits"},
        ).json()
        assert [p["id"] for p in data["products"]] == ["k1"]
        assert data["bucketCounts"]["Speakers"] == 2

    def test_unknown_vehicle_returns_empty(self, client):
        data = client.post(
            "/api/fitment/recommendations",
            json={"vehicle": {"year": 2018, "make": "Yugo", "model": "GV"}, "products": CATALOG},
        ).json()
        assert data["fitment"] is None
        assert data["products"] == []


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class TestInventory:
    def test_upsert_keeps_cost_history(self, client):
        _create_product(client)
        client.post("/api/products/sub/check-in", json={"unitCosts": [10.0, 12.0]})
        product = client.put("/api/products/sub", json={"price": 199.0}).json()["product"]
        assert product["avgCost"] == 11.0
        assert product["price"] == 199.0
        assert product["brand"] == "JL Audio"

    def test_check_in_then_list_units(self, client):
        _create_product(client)
        result = client.post("/api/products/sub/check-in", json={"unitCosts": [10.0, 12.0], "spot": "A1"})
        assert result.status_code == 200
        body = result.json()
        assert body["addedToStock"] == 2
        assert body["avgCost"] == 11.0

        units = client.get("/api/products/sub/units", params={"status": "in_stock"}).json()["units"]
        assert [u["label"] for u in units] == ["JO0001", "JO0002"]
        assert units[0]["spot"] == "A1"

    def test_unknown_status_filter(self, client):
        assert client.get("/api/products/sub/units", params={"status": "lost"}).status_code == 422

    def test_check_in_unknown_product(self, client):
        response = client.post("/api/products/nope/check-in", json={"unitCosts": [10.0]})
        assert response.status_code == 404

    def test_check_in_cost_count_mismatch(self, client):
        _create_product(client)
        response = client.post(
            "/api/products/sub/check-in", json={"qtyReceived": 3, "unitCosts": [10.0]}
        )
        assert response.status_code == 422

    def test_order_line_from_stock(self, client):
        _create_product(client)
        client.post("/api/products/sub/check-in", json={"unitCosts": [10.0, 12.0]})
        response = client.post("/api/orders/o1/items", json={"productId": "sub", "quantity": 1})
        assert response.status_code == 200
        item = response.json()["orderItem"]
        assert (item["fulfilledQty"], item["backorderedQty"]) == (1, 0)

    def test_shortfall_needs_confirmation(self, client):
        _create_product(client)
        response = client.post("/api/orders/o1/items", json={"productId": "sub", "quantity": 2})
        assert response.status_code == 409
        assert "requires manager confirmation" in response.json()["detail"]

    def test_confirmed_backorder_filled_by_check_in(self, client):
        _create_product(client)
        item = client.post(
            "/api/orders/o1/items",
            json={"productId": "sub", "quantity": 3, "confirmBackorder": True, "customerId": "c1"},
        ).json()["orderItem"]
        assert item["backorderedQty"] == 3

        body = client.post("/api/products/sub/check-in", json={"unitCosts": [10.0, 12.0]}).json()
        assert body["appliedToBackorders"] == 2
        assert body["backorderActions"][0]["newStatus"] == "partial"
        assert body["backorderActions"][0]["customerId"] == "c1"

    def test_order_line_of_other_product(self, client):
        _create_product(client)
        _create_product(client, "amp")
        item = client.post(
            "/api/orders/o1/items", json={"productId": "sub", "quantity": 1, "confirmBackorder": True}
        ).json()["orderItem"]
        response = client.post(
            "/api/orders/o1/items",
            json={"productId": "amp", "quantity": 1, "confirmBackorder": True, "orderItemId": item["id"]},
        )
        assert response.status_code == 422

    def test_invalid_quantity(self, client):
        _create_product(client)
        response = client.post("/api/orders/o1/items", json={"productId": "sub", "quantity": 0})
        assert response.status_code == 422

    def test_sell_and_delete(self, client):
        _create_product(client)
        unit_ids = client.post(
            "/api/products/sub/check-in", json={"unitCosts": [10.0, 12.0]}
        ).json()["unitIds"]

        sold = client.post(f"/api/units/{unit_ids[0]}/sell")
        assert sold.status_code == 200
        assert sold.json()["unit"]["status"] == "sold"
        assert client.post(f"/api/units/{unit_ids[0]}/sell").status_code == 409

        response = client.delete(f"/api/units/{unit_ids[0]}")
        assert response.status_code == 409
        assert response.json()["detail"] == "Sold units cannot be deleted."

        assert client.delete(f"/api/units/{unit_ids[1]}").json() == {"deleted": unit_ids[1]}
        assert client.delete("/api/units/ghost").status_code == 404


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class TestAdminReload:
    def test_not_configured(self, client):
        app.dependency_overrides[get_settings] = lambda: Settings(API_ADMIN_KEY="")
        assert client.post("/api/admin/reload").status_code == 503

    def test_missing_and_wrong_key(self, client):
        app.dependency_overrides[get_settings] = lambda: Settings(API_ADMIN_KEY="secret")
        assert client.post("/api/admin/reload").status_code == 401
        response = client.post("/api/admin/reload", headers={"X-Admin-Key": "nope"})
        assert response.status_code == 403

    def test_reload_replaces_snapshot(self, client):
        app.dependency_overrides[get_settings] = lambda: Settings(API_ADMIN_KEY="secret")
        response = client.post("/api/admin/reload", headers={"X-Admin-Key": "secret"})
        assert response.status_code == 200
        data = response.json()
        assert data["vehicleKeys"] > 0
        assert data["accessoryKeys"] > 0
        # Bundled snapshot includes vehicles the test engine did not know
        assert "Dodge" in client.get("/api/vehicles/makes", params={"year": 2013}).json()["makes"]
