import pytest
from bson import ObjectId

from helpers import completed_booking


@pytest.fixture
def service_id(make_service):
    return make_service()


@pytest.fixture
def booking_id(mongo_db, customer, provider, service_id):
    return completed_booking(mongo_db, service_id, customer["id"], provider["id"])


def _review(client, user, booking_id, rating=5, comment="Quick and tidy work"):
    return client.post(
        "/api/reviews",
        json={"booking": booking_id, "rating": rating, "comment": comment},
        headers=user["headers"],
    )


def test_create_review_updates_ratings(client, mongo_db, customer, provider, service_id, booking_id):
    response = _review(client, customer, booking_id, rating=4)

    assert response.status_code == 201
    review = response.json()["data"]["review"]
    assert review["rating"] == 4
    assert review["reviewer"] == customer["id"]
    assert review["is_verified"] is True

    booking = mongo_db["bookings"].find_one({"_id": ObjectId(booking_id)})
    assert booking["review"] == review["id"]

    service = mongo_db["services"].find_one({"_id": ObjectId(service_id)})
    assert service["rating"] == {"average": 4.0, "count": 1}

    user = mongo_db["users"].find_one({"_id": ObjectId(provider["id"])})
    assert user["provider_profile"]["rating"] == 4.0
    assert user["provider_profile"]["review_count"] == 1


def test_review_makes_service_popular(client, mongo_db, writer, customer, service_id, booking_id):
    writer.update_service(service_id, {"booking_count": 12})

    _review(client, customer, booking_id, rating=5)

    assert mongo_db["services"].find_one({"_id": ObjectId(service_id)})["is_popular"] is True


def test_duplicate_review_conflicts(client, customer, booking_id):
    assert _review(client, customer, booking_id).status_code == 201
    response = _review(client, customer, booking_id)
    assert response.status_code == 409
    assert response.json()["message"] == "You have already reviewed this booking"


def test_only_the_client_can_review(client, provider, make_user, booking_id):
    assert _review(client, provider, booking_id).status_code == 403
    assert _review(client, make_user("client"), booking_id).status_code == 403


def test_booking_must_be_completed(client, mongo_db, customer, provider, service_id):
    booking_id = completed_booking(mongo_db, service_id, customer["id"], provider["id"], status="confirmed")
    response = _review(client, customer, booking_id)
    assert response.status_code == 400
    assert response.json()["message"] == "You can only review completed bookings"


def test_rating_range(client, customer, booking_id):
    assert _review(client, customer, booking_id, rating=6).status_code == 400
    assert _review(client, customer, booking_id, comment="").status_code == 400


def test_service_reviews(client, mongo_db, customer, provider, service_id, booking_id, make_user):
    _review(client, customer, booking_id, rating=5)
    other = make_user("client")
    other_booking = completed_booking(mongo_db, service_id, other["id"], provider["id"])
    _review(client, other, other_booking, rating=4)

    response = client.get(f"/api/reviews/service/{service_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["results"] == 2
    assert body["data"]["rating_distribution"] == {"1": 0, "2": 0, "3": 0, "4": 1, "5": 1}
    assert body["data"]["average_rating"] == 4.5
