from helpers import service_payload


def test_list_services_empty(client):
    response = client.get("/api/services")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "success"
    assert payload["results"] == 0
    assert payload["pagination"] == {"page": 1, "pages": 0, "total": 0, "limit": 10}


def test_pagination_second_page(client, make_service):
    for i in range(15):
        make_service(name=f"Service {i:02d}")

    response = client.get("/api/services", params={"page": 2, "limit": 10})
    assert response.status_code == 200
    payload = response.json()
    assert payload["results"] == 5
    assert payload["pagination"]["pages"] == 2
    assert payload["pagination"]["total"] == 15


def test_list_filters_by_price(client, make_service):
    make_service(name="Cheap Fix", base_price=500)
    make_service(name="Big Job", base_price=9000)

    response = client.get("/api/services", params={"min_price": 1000})
    names = [s["name"] for s in response.json()["data"]["services"]]
    assert names == ["Big Job"]


def test_invalid_category_returns_400(client):
    response = client.get("/api/services/category/teleportation")
    assert response.status_code == 400
    assert response.json() == {"status": "error", "message": "Invalid category"}


def test_category_listing_is_case_insensitive(client, make_service):
    make_service(name="Wall Painting", category="painting", description="Interior walls")
    make_service()

    response = client.get("/api/services/category/Painting")
    assert response.status_code == 200
    services = response.json()["data"]["services"]
    assert [s["name"] for s in services] == ["Wall Painting"]


def test_create_rejects_unknown_category(client, admin):
    response = client.post("/api/services", json=service_payload(category="teleportation"), headers=admin["headers"])
    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["message"].startswith("category")


def test_create_requires_admin(client, customer):
    response = client.post("/api/services", json=service_payload(), headers=customer["headers"])
    assert response.status_code == 403


def test_create_requires_authentication(client):
    response = client.post("/api/services", json=service_payload())
    assert response.status_code == 401


def test_create_ignores_client_supplied_popularity(client, admin):
    response = client.post(
        "/api/services",
        json=service_payload(is_popular=True, booking_count=50),
        headers=admin["headers"],
    )
    assert response.status_code == 201
    service = response.json()["data"]["service"]
    assert service["is_popular"] is False
    assert service["booking_count"] == 0
    assert service["created_by"] == admin["id"]


def test_popularity_recomputed_on_update(writer, make_service):
    service_id = make_service()

    updated = writer.update_service(service_id, {"rating": {"average": 4.6, "count": 12}, "booking_count": 10})
    assert updated["is_popular"] is True

    updated = writer.update_service(service_id, {"rating": {"average": 4.4, "count": 13}})
    assert updated["is_popular"] is False


def test_popular_endpoint(client, writer, make_service):
    popular_id = make_service(name="Deep Cleaning", category="cleaning")
    make_service()
    writer.update_service(popular_id, {"rating": {"average": 4.9, "count": 40}, "booking_count": 40})

    response = client.get("/api/services/popular")
    services = response.json()["data"]["services"]
    assert [s["id"] for s in services] == [popular_id]


def test_search(client, make_service):
    make_service()
    make_service(name="Wall Painting", category="painting", description="Interior walls", tags=[])

    response = client.get("/api/services/search", params={"q": "paint"})
    assert response.status_code == 200
    assert [s["name"] for s in response.json()["data"]["services"]] == ["Wall Painting"]

    assert client.get("/api/services/search").status_code == 400


def test_get_service(client, make_service):
    service_id = make_service()
    response = client.get(f"/api/services/{service_id}")
    assert response.status_code == 200
    assert response.json()["data"]["service"]["id"] == service_id


def test_get_service_not_found_and_bad_id(client):
    assert client.get("/api/services/64a1b2c3d4e5f67890123456").status_code == 404
    response = client.get("/api/services/not.an.id")
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid ID format"


def test_update_service_as_provider(client, provider, make_service):
    service_id = make_service()
    response = client.put(f"/api/services/{service_id}", json={"base_price": 2500}, headers=provider["headers"])
    assert response.status_code == 200
    service = response.json()["data"]["service"]
    assert service["base_price"] == 2500
    assert service["name"] == "Pipe Repair"


def test_delete_blocked_by_active_booking(client, mongo_db, admin, make_service):
    service_id = make_service()
    mongo_db["bookings"].insert_one({"service": service_id, "status": "confirmed"})

    response = client.delete(f"/api/services/{service_id}", headers=admin["headers"])
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot delete service with active bookings"


def test_delete_allowed_with_finished_bookings(client, mongo_db, admin, make_service):
    service_id = make_service()
    mongo_db["bookings"].insert_many([
        {"service": service_id, "status": "completed"},
        {"service": service_id, "status": "cancelled"},
    ])

    response = client.delete(f"/api/services/{service_id}", headers=admin["headers"])
    assert response.status_code == 200

    # Soft delete: the document stays but drops out of the public listing.
    assert mongo_db["services"].count_documents({}) == 1
    assert client.get("/api/services").json()["results"] == 0
