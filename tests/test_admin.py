from bson import ObjectId

from helpers import completed_booking, service_payload


def test_admin_routes_require_admin(client, customer):
    assert client.get("/api/admin/stats").status_code == 401
    response = client.get("/api/admin/stats", headers=customer["headers"])
    assert response.status_code == 403
    assert response.json()["message"] == "User role client is not authorized to access this route"


def test_dashboard_stats(client, mongo_db, admin, customer, provider, make_user, make_service):
    make_user("provider", provider_status="under_review")
    completed_booking(mongo_db, make_service(), customer["id"], provider["id"], total_amount=3500)

    data = client.get("/api/admin/stats", headers=admin["headers"]).json()["data"]
    assert data["total_users"] == 4
    assert data["total_providers"] == 2
    assert data["pending_verifications"] == 1
    assert data["approved_providers"] == 1
    assert data["completed_bookings"] == 1
    assert data["total_revenue"] == 3500


def test_list_users(client, admin, customer, provider):
    response = client.get("/api/admin/users", params={"user_type": "provider"}, headers=admin["headers"])
    users = response.json()["data"]["users"]
    assert [u["id"] for u in users] == [provider["id"]]
    assert "tokens" not in users[0]

    response = client.get("/api/admin/users", params={"search": customer["doc"]["email"][:12]}, headers=admin["headers"])
    assert response.json()["results"] == 1


def test_deactivated_user_loses_access(client, admin, customer):
    response = client.put(f"/api/admin/users/{customer['id']}/status", json={"is_active": False}, headers=admin["headers"])
    assert response.status_code == 200
    assert response.json()["data"]["user"]["is_active"] is False

    response = client.get("/api/bookings", headers=customer["headers"])
    assert response.status_code == 401
    assert response.json()["message"] == "Account is deactivated"


def test_admin_cannot_deactivate_self(client, admin):
    response = client.put(f"/api/admin/users/{admin['id']}/status", json={"is_active": False}, headers=admin["headers"])
    assert response.status_code == 400


def test_list_providers(client, admin, provider, make_user):
    make_user("provider", provider_status="pending", provider_profile={"skills": ["roofing"]})

    approved = client.get("/api/admin/providers", params={"status": "approved"}, headers=admin["headers"]).json()
    assert [p["id"] for p in approved["data"]["providers"]] == [provider["id"]]

    roofers = client.get("/api/admin/providers", params={"skills": "roofing, hvac"}, headers=admin["headers"]).json()
    assert roofers["results"] == 1

    everyone = client.get("/api/admin/providers", params={"status": "all"}, headers=admin["headers"]).json()
    assert everyone["results"] == 2


def test_admin_service_crud(client, mongo_db, admin):
    response = client.post("/api/admin/services", json=service_payload(), headers=admin["headers"])
    assert response.status_code == 201
    service_id = response.json()["data"]["service"]["id"]

    response = client.put(f"/api/admin/services/{service_id}", json={"name": "Pipe Replacement"}, headers=admin["headers"])
    assert response.json()["data"]["service"]["name"] == "Pipe Replacement"

    response = client.put(f"/api/admin/services/{service_id}/toggle-active", headers=admin["headers"])
    assert response.json()["message"] == "Service deactivated successfully"

    listing = client.get("/api/admin/services", params={"status": "inactive"}, headers=admin["headers"]).json()
    assert listing["results"] == 1
    assert listing["mock_mode"] is False

    response = client.delete(f"/api/admin/services/{service_id}", headers=admin["headers"])
    assert response.status_code == 200
    assert mongo_db["services"].count_documents({}) == 0
    assert client.get(f"/api/admin/services/{service_id}", headers=admin["headers"]).status_code == 404


def test_admin_delete_blocked_by_active_booking(client, mongo_db, admin, make_service):
    service_id = make_service()
    mongo_db["bookings"].insert_one({"service": service_id, "status": "in-progress"})

    response = client.delete(f"/api/admin/services/{service_id}", headers=admin["headers"])
    assert response.status_code == 400
    assert mongo_db["services"].count_documents({}) == 1


def test_bulk_service_action(client, mongo_db, admin, make_service):
    first, second = make_service(name="First Service"), make_service(name="Second Service")
    missing = str(ObjectId())

    response = client.post(
        "/api/admin/services/bulk-action",
        json={"action": "deactivate", "service_ids": [first, second, missing]},
        headers=admin["headers"],
    )

    results = response.json()["data"]["results"]
    assert len(results["successful"]) == 2
    assert results["failed"] == [{"service_id": missing, "error": "Service not found"}]
    assert mongo_db["services"].count_documents({"is_active": False}) == 2


def test_bulk_action_requires_ids(client, admin):
    response = client.post("/api/admin/services/bulk-action", json={"action": "delete", "service_ids": []}, headers=admin["headers"])
    assert response.status_code == 400


def test_sync_endpoints(client, admin, writer):
    stats = client.get("/api/admin/sync/stats", headers=admin["headers"]).json()["data"]
    assert stats["stats"]["primary_database"] == "mongodb"
    assert stats["pending"] == []

    reconcile = client.post("/api/admin/sync/reconcile", headers=admin["headers"]).json()["data"]
    assert reconcile == {"synced": 0, "errors": 0, "details": []}

    response = client.post("/api/admin/sync/primary", json={"primary_database": "firestore"}, headers=admin["headers"])
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot switch to Firestore: Firestore is not configured"

    response = client.post("/api/admin/sync/primary", json={"primary_database": "postgres"}, headers=admin["headers"])
    assert response.status_code == 400

    response = client.post("/api/admin/sync/primary", json={"primary_database": "mongodb"}, headers=admin["headers"])
    assert response.json()["data"]["previous"] == "mongodb"


def test_status_change_keeps_account_fields(client, mongo_db, admin, make_user):
    user = make_user("client", password="$2b$12$hash", auth_provider="firebase")

    response = client.put(f"/api/admin/users/{user['id']}/status", json={"is_active": False}, headers=admin["headers"])
    assert response.status_code == 200

    stored = mongo_db["users"].find_one({"_id": ObjectId(user["id"])})
    assert stored["is_active"] is False
    assert stored["password"] == "$2b$12$hash"
    assert stored["auth_provider"] == "firebase"
    assert stored["tokens"] == [user["token"]]


def test_invalid_stored_document_is_rejected(client, mongo_db, admin, make_user):
    user = make_user("client")
    mongo_db["users"].update_one({"_id": ObjectId(user["id"])}, {"$set": {"email": "not-an-email"}})

    response = client.put(f"/api/admin/users/{user['id']}/status", json={"is_active": False}, headers=admin["headers"])

    assert response.status_code == 400
    assert response.json()["status"] == "error"
    assert response.json()["message"].startswith("email: ")
    assert mongo_db["users"].find_one({"_id": ObjectId(user["id"])})["is_active"] is True


def test_primary_store_outage_returns_503(client, writer, admin, make_service, monkeypatch):
    service_id = make_service()

    def unavailable(*args):
        raise ConnectionError("mongodb unreachable")

    monkeypatch.setattr(writer, "_mongo", unavailable)

    response = client.put(f"/api/admin/services/{service_id}/toggle-active", headers=admin["headers"])
    assert response.status_code == 503
    assert response.json() == {"status": "error", "message": "Database not available"}
    assert len(writer.sync_errors) == 1
