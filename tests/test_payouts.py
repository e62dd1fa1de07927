from datetime import timedelta

import pytest
from bson import ObjectId

from helpers import completed_booking
from payouts import (
    PayoutExistsError,
    PayoutStateError,
    calculate_amounts,
    cancel_payout,
    create_payout_for_booking,
    mark_ready_payouts,
    payout_settings,
)
from schemas import utcnow

BASE = "/api/admin/payouts"


@pytest.fixture
def new_booking(mongo_db, customer, provider, make_service):
    service_id = make_service()

    def factory(**kwargs):
        return completed_booking(mongo_db, service_id, customer["id"], provider["id"], **kwargs)

    return factory


@pytest.fixture
def payout(client, admin, new_booking):
    booking_id = new_booking(completed_at=utcnow() - timedelta(hours=2))
    response = client.post(f"{BASE}/create", json={"booking_id": booking_id}, headers=admin["headers"])
    assert response.status_code == 201
    return response.json()["data"]["payout"]


def test_calculate_amounts():
    assert calculate_amounts(2000) == {
        "total_amount": 2000,
        "commission_amount": 600,
        "payout_amount": 1400,
        "commission_rate": 30,
    }
    amounts = calculate_amounts(999, 15)
    assert amounts["commission_amount"] == 150
    assert amounts["payout_amount"] == 849


def test_create_payout(payout, customer, provider):
    assert payout["status"] == "pending"
    assert payout["provider"] == provider["id"]
    assert payout["client"] == customer["id"]
    assert payout["amounts"]["payout_amount"] == 1400
    assert payout["metadata"]["service_title"] == "Pipe Repair"
    assert payout["metadata"]["client_email"] == customer["doc"]["email"]
    assert [a["type"] for a in payout["activities"]] == ["created"]


def test_payout_scheduled_after_delay(mongo_db, writer, new_booking):
    completed_at = utcnow().replace(microsecond=0)
    booking = mongo_db["bookings"].find_one({"_id": ObjectId(new_booking(completed_at=completed_at))})

    payout = create_payout_for_booking(mongo_db, booking, writer)

    assert payout["timeline"]["service_completed"] == completed_at
    assert payout["timeline"]["payout_scheduled"] == completed_at + timedelta(minutes=60)


def test_duplicate_payout_conflicts(client, admin, payout):
    response = client.post(f"{BASE}/create", json={"booking_id": payout["booking"]}, headers=admin["headers"])
    assert response.status_code == 409


def test_payout_requires_completed_booking(client, mongo_db, writer, admin, new_booking):
    booking_id = new_booking(status="in-progress")

    response = client.post(f"{BASE}/create", json={"booking_id": booking_id}, headers=admin["headers"])
    assert response.status_code == 400

    booking = mongo_db["bookings"].find_one({"_id": ObjectId(booking_id)})
    with pytest.raises(PayoutStateError):
        create_payout_for_booking(mongo_db, booking, writer)


def test_duplicate_is_a_state_error(mongo_db, writer, new_booking):
    booking = mongo_db["bookings"].find_one({"_id": ObjectId(new_booking())})
    create_payout_for_booking(mongo_db, booking, writer)
    with pytest.raises(PayoutExistsError):
        create_payout_for_booking(mongo_db, booking, writer)


def test_mark_ready_only_moves_due_payouts(client, mongo_db, writer, admin, payout, new_booking):
    fresh = mongo_db["bookings"].find_one({"_id": ObjectId(new_booking())})
    create_payout_for_booking(mongo_db, fresh, writer)

    response = client.post(f"{BASE}/mark-ready", headers=admin["headers"])
    assert response.status_code == 200
    body = response.json()
    assert body["results"] == 1
    ready = body["data"]["payouts"][0]
    assert ready["id"] == payout["id"]
    assert ready["status"] == "ready"
    assert [a["type"] for a in ready["activities"]] == ["created", "ready"]

    assert mongo_db["payouts"].count_documents({"status": "pending"}) == 1
    later = utcnow() + timedelta(hours=2)
    assert len(mark_ready_payouts(mongo_db, writer, now=later)) == 1


def test_process_then_cancel_is_refused(client, admin, payout):
    response = client.post(f"{BASE}/{payout['id']}/process", headers=admin["headers"])
    assert response.status_code == 200
    processed = response.json()["data"]["payout"]
    assert processed["status"] == "completed"
    assert processed["metadata"]["attempt_count"] == 1
    assert processed["timeline"]["payout_completed"] is not None
    assert processed["activities"][-1]["type"] == "admin_manual_process"
    assert processed["activities"][-1]["admin_id"] == admin["id"]

    response = client.post(f"{BASE}/{payout['id']}/cancel", json={"reason": "Duplicate"}, headers=admin["headers"])
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot cancel this payout"

    response = client.post(f"{BASE}/{payout['id']}/process", headers=admin["headers"])
    assert response.status_code == 400


def test_cancel_requires_reason(client, admin, payout):
    response = client.post(f"{BASE}/{payout['id']}/cancel", json={}, headers=admin["headers"])
    assert response.status_code == 400
    assert response.json()["message"] == "Cancellation reason is required"

    response = client.post(f"{BASE}/{payout['id']}/cancel", json={"reason": "Client disputed"}, headers=admin["headers"])
    assert response.status_code == 200
    cancelled = response.json()["data"]["payout"]
    assert cancelled["status"] == "cancelled"
    assert cancelled["activities"][-1]["reason"] == "Client disputed"


def test_cancel_payout_function_refuses_cancelled(writer):
    with pytest.raises(PayoutStateError):
        cancel_payout(writer, {"_id": ObjectId(), "status": "cancelled"}, "again")


def test_retry_failed_payout(client, mongo_db, admin, payout):
    response = client.post(f"{BASE}/{payout['id']}/retry", headers=admin["headers"])
    assert response.status_code == 400

    mongo_db["payouts"].update_one({"_id": ObjectId(payout["id"])}, {"$set": {"status": "failed"}})
    response = client.post(f"{BASE}/{payout['id']}/retry", json={"reason": "Bank back online"}, headers=admin["headers"])
    assert response.status_code == 200
    assert response.json()["data"]["payout"]["status"] == "ready"


def test_bulk_action(client, mongo_db, writer, admin, payout, new_booking):
    other = create_payout_for_booking(mongo_db, mongo_db["bookings"].find_one({"_id": ObjectId(new_booking())}), writer)
    missing = str(ObjectId())

    response = client.post(
        f"{BASE}/bulk-action",
        json={"action": "cancel", "payout_ids": [payout["id"], str(other["_id"]), missing]},
        headers=admin["headers"],
    )

    assert response.status_code == 200
    results = response.json()["data"]["results"]
    assert {r["payout_id"] for r in results["successful"]} == {payout["id"], str(other["_id"])}
    assert results["failed"] == [{"payout_id": missing, "error": "Payout not found"}]
    assert mongo_db["payouts"].count_documents({"status": "cancelled"}) == 2


def test_list_payouts(client, admin, payout):
    response = client.get(BASE, params={"status": "pending"}, headers=admin["headers"])
    assert response.status_code == 200
    body = response.json()
    assert body["results"] == 1
    assert body["pagination"] == {"page": 1, "pages": 1, "total": 1, "limit": 20}
    assert body["data"]["summary"] == [
        {"status": "pending", "count": 1, "total_amount": 1400, "total_commission": 600},
    ]

    assert client.get(BASE, params={"status": "completed"}, headers=admin["headers"]).json()["results"] == 0
    assert client.get(BASE, params={"min_amount": 5000}, headers=admin["headers"]).json()["results"] == 0


def test_payout_stats(client, admin, provider, payout):
    client.post(f"{BASE}/{payout['id']}/process", headers=admin["headers"])

    response = client.get(f"{BASE}/stats", params={"period": "7d"}, headers=admin["headers"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["overall"]["total_payouts"] == 1
    assert data["overall"]["total_commission_earned"] == 600
    assert data["recent_period"]["period_payouts"] == 1
    assert data["top_providers"][0]["provider_id"] == provider["id"]
    assert data["top_providers"][0]["total_amount"] == 1400

    assert client.get(f"{BASE}/stats", params={"period": "2w"}, headers=admin["headers"]).status_code == 400


def test_update_settings_changes_commission(client, mongo_db, writer, admin, new_booking):
    response = client.put(f"{BASE}/settings", json={"commission_rate": 20, "payout_delay_minutes": 0}, headers=admin["headers"])
    assert response.status_code == 200
    settings = response.json()["data"]["settings"]
    assert settings["commission_rate"] == 20
    assert settings["updated_by"] == admin["id"]
    assert payout_settings.payout_delay_minutes == 0

    booking = mongo_db["bookings"].find_one({"_id": ObjectId(new_booking())})
    payout = create_payout_for_booking(mongo_db, booking, writer)
    assert payout["amounts"]["commission_amount"] == 400


def test_payout_routes_are_admin_only(client, customer, payout):
    assert client.get(BASE, headers=customer["headers"]).status_code == 403
    assert client.get(f"{BASE}/{payout['id']}", headers=customer["headers"]).status_code == 403


def test_get_payout(client, admin, payout):
    assert client.get(f"{BASE}/{payout['id']}", headers=admin["headers"]).json()["data"]["payout"]["id"] == payout["id"]
    assert client.get(f"{BASE}/{ObjectId()}", headers=admin["headers"]).status_code == 404
