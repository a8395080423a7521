from datetime import timedelta

import pytest
from sqlmodel import select

from models import Conversation, Donation, DonationStatus, Role, User, VolunteerRequest, utcnow

PASSWORD = "secret123"


def donation_payload(**overrides):
    payload = {
        "title": "Canned soup",
        "description": "Two boxes",
        "category": "FOOD",
        "quantity": 24,
        "unit": "cans",
        "expiry_date": (utcnow() + timedelta(days=2)).isoformat(),
        "pickup_address": "12 Harbor Rd",
    }
    payload.update(overrides)
    return payload


def test_health(client):
    assert client.get("/").json()["status"] == "ok"


def test_donation_end_to_end(client, make_user, headers_for):
    donor = make_user(Role.DONOR)
    org = make_user(Role.ORGANIZATION)
    volunteer = make_user(Role.VOLUNTEER)

    resp = client.post("/donations/", json=donation_payload(), headers=headers_for(donor))
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    donation_id = body["data"]["id"]
    assert body["data"]["status"] == "available"

    resp = client.post(
        f"/organization/donations/{donation_id}/claim", headers=headers_for(org)
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["donation"]["status"] == "claiming"
    assert data["donation"]["organization_id"] == org.id
    assert {data["conversation"]["participant1_id"], data["conversation"]["participant2_id"]} == {
        org.id,
        donor.id,
    }

    resp = client.post(
        f"/organization/donations/{donation_id}/request-volunteers",
        json={"volunteer_count": 1},
        headers=headers_for(org),
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["volunteer_count"] == 1
    (request,) = data["requests"]
    assert request["volunteer_id"] == volunteer.id
    assert request["status"] == "pending"

    resp = client.get("/volunteer/requests?status=pending", headers=headers_for(volunteer))
    assert [r["id"] for r in resp.json()] == [request["id"]]

    resp = client.put(
        f"/volunteer/requests/{request['id']}/respond",
        json={"status": "accepted"},
        headers=headers_for(volunteer),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Volunteer request accepted successfully"
    assert body["data"]["donation"]["status"] == "in_transit"
    assert body["data"]["donation"]["volunteer_id"] == volunteer.id

    resp = client.get("/volunteer/donations/assigned", headers=headers_for(volunteer))
    assert [d["id"] for d in resp.json()] == [donation_id]

    resp = client.put(
        f"/volunteer/donations/{donation_id}/status",
        json={"status": "completed"},
        headers=headers_for(volunteer),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "completed"

    resp = client.get("/organization/donations/claimed", headers=headers_for(org))
    (claimed,) = resp.json()
    assert claimed["status"] == "completed"
    assert [r["status"] for r in claimed["volunteer_requests"]] == ["accepted"]


@pytest.mark.parametrize("role", [Role.ORGANIZATION, Role.VOLUNTEER])
def test_only_donors_create(client, make_user, headers_for, role):
    resp = client.post("/donations/", json=donation_payload(), headers=headers_for(make_user(role)))
    assert resp.status_code == 403
    assert resp.json() == {"success": False, "message": "Only donors can create donations"}


def test_requires_login(client):
    resp = client.get("/donations/available")
    assert resp.status_code == 401
    assert resp.json()["success"] is False

    resp = client.get("/donations/available", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401


def test_bad_payloads_are_400(client, make_user, headers_for):
    headers = headers_for(make_user(Role.DONOR))

    resp = client.post("/donations/", json=donation_payload(quantity=0), headers=headers)
    assert resp.status_code == 400
    assert "quantity" in resp.json()["message"]

    past = (utcnow() - timedelta(hours=1)).isoformat()
    resp = client.post("/donations/", json=donation_payload(expiry_date=past), headers=headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Expiry date must be in the future"


def test_unknown_donation_is_404(client, make_user, headers_for):
    resp = client.get("/donations/4242", headers=headers_for(make_user(Role.DONOR)))
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Donation not found"}


def test_expired_donations_leave_the_listing(client, session, make_user, make_donation, headers_for):
    donor = make_user(Role.DONOR)
    fresh = make_donation(donor)
    stale = make_donation(donor, title="Milk", expiry_date=utcnow() - timedelta(minutes=5))

    resp = client.get("/donations/available", headers=headers_for(make_user(Role.VOLUNTEER)))
    assert [d["id"] for d in resp.json()] == [fresh.id]

    session.refresh(stale)
    assert stale.status == DonationStatus.EXPIRED

    resp = client.post(
        f"/organization/donations/{stale.id}/claim", headers=headers_for(make_user(Role.ORGANIZATION))
    )
    assert resp.status_code == 400


def test_claim_twice_fails(client, make_user, make_donation, headers_for):
    donation = make_donation(make_user(Role.DONOR))
    first, second = make_user(Role.ORGANIZATION), make_user(Role.ORGANIZATION)

    assert client.post(f"/organization/donations/{donation.id}/claim", headers=headers_for(first)).status_code == 200
    resp = client.post(f"/organization/donations/{donation.id}/claim", headers=headers_for(second))
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_organization_cancel_releases(client, session, make_user, make_donation, headers_for):
    donation = make_donation(make_user(Role.DONOR))
    org = make_user(Role.ORGANIZATION)
    make_user(Role.VOLUNTEER)
    client.post(f"/organization/donations/{donation.id}/claim", headers=headers_for(org))
    client.post(
        f"/organization/donations/{donation.id}/request-volunteers",
        json={"volunteer_count": 1},
        headers=headers_for(org),
    )

    resp = client.put(
        f"/organization/donations/{donation.id}/status",
        json={"status": "cancelled"},
        headers=headers_for(org),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "available"
    assert data["organization_id"] is None
    assert data["volunteer_id"] is None

    statuses = session.exec(select(VolunteerRequest.status)).all()
    assert [s.value for s in statuses] == ["rejected"]


def test_organization_cannot_complete(client, make_user, make_donation, headers_for):
    donation = make_donation(make_user(Role.DONOR))
    org = make_user(Role.ORGANIZATION)
    client.post(f"/organization/donations/{donation.id}/claim", headers=headers_for(org))

    resp = client.put(
        f"/organization/donations/{donation.id}/status",
        json={"status": "completed"},
        headers=headers_for(org),
    )
    assert resp.status_code in (400, 403)
    assert resp.json()["success"] is False


def test_register_login_and_me(client):
    resp = client.post(
        "/register",
        json={
            "username": "pantry",
            "email": "pantry@example.com",
            "password": "hunter22",
            "first_name": "Food",
            "last_name": "Pantry",
            "role": "organization",
        },
    )
    assert resp.status_code == 201
    assert resp.json()["data"]["user"]["role"] == "organization"
    assert "password_hash" not in resp.json()["data"]["user"]

    resp = client.post("/login", json={"email_or_username": "pantry", "password": "wrong!"})
    assert resp.status_code == 401

    resp = client.post("/login", json={"email_or_username": "pantry@example.com", "password": "hunter22"})
    assert resp.status_code == 200
    token = resp.json()["data"]["token"]

    resp = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.json()["username"] == "pantry"


def test_register_rejects_duplicates_and_admin(client, make_user):
    user = make_user(Role.DONOR)
    base = {
        "username": user.username,
        "email": "other@example.com",
        "password": "hunter22",
        "first_name": "A",
        "last_name": "B",
        "role": "donor",
    }
    assert client.post("/register", json=base).status_code == 400
    assert client.post("/register", json={**base, "username": "new", "role": "admin"}).status_code == 400


def test_change_password(client, make_user, headers_for):
    user = make_user(Role.VOLUNTEER)
    headers = headers_for(user)

    resp = client.post(
        "/change-password",
        json={"current_password": "nope", "new_password": "brandnew"},
        headers=headers,
    )
    assert resp.status_code == 400

    resp = client.post(
        "/change-password",
        json={"current_password": PASSWORD, "new_password": "brandnew"},
        headers=headers,
    )
    assert resp.status_code == 200
    resp = client.post("/login", json={"email_or_username": user.username, "password": "brandnew"})
    assert resp.status_code == 200


def test_conversation_create_then_reuse(client, make_user, headers_for):
    org, volunteer = make_user(Role.ORGANIZATION), make_user(Role.VOLUNTEER)
    payload = {"participant2_id": volunteer.id, "participant2_type": "volunteer"}

    first = client.post("/conversations/", json=payload, headers=headers_for(org))
    again = client.post("/conversations/", json=payload, headers=headers_for(org))
    assert first.status_code == 201
    assert again.status_code == 200
    assert first.json()["id"] == again.json()["id"]
    conversation_id = first.json()["id"]

    resp = client.post(
        f"/conversations/{conversation_id}/messages",
        json={"text": "Hi there"},
        headers=headers_for(org),
    )
    assert resp.status_code == 201

    assert client.get("/conversations/unread-count", headers=headers_for(volunteer)).json() == {
        "unread_count": 1
    }
    resp = client.get(f"/conversations/{conversation_id}", headers=headers_for(volunteer))
    assert [m["text"] for m in resp.json()["messages"]] == ["Hi there"]
    assert client.get("/conversations/unread-count", headers=headers_for(volunteer)).json() == {
        "unread_count": 0
    }


def test_delete_account_releases_claims(client, session, make_user, make_donation, headers_for):
    donor = make_user(Role.DONOR)
    org = make_user(Role.ORGANIZATION)
    donation = make_donation(donor)
    own = make_donation(donor, title="Rice")
    org_id, donation_id, own_id = org.id, donation.id, own.id
    headers = headers_for(org)
    client.post(f"/organization/donations/{donation_id}/claim", headers=headers)

    resp = client.delete("/users/me", headers=headers)
    assert resp.status_code == 204

    session.expire_all()
    assert session.get(User, org_id) is None
    released = session.get(Donation, donation_id)
    assert released.status == DonationStatus.AVAILABLE
    assert released.organization_id is None
    assert session.get(Donation, own_id) is not None
    assert session.exec(select(Conversation)).all() == []

    assert client.get("/me", headers=headers).status_code == 401


def test_delete_volunteer_returns_donation_to_claiming(client, session, make_user, make_donation, headers_for):
    donation = make_donation(make_user(Role.DONOR))
    org, volunteer = make_user(Role.ORGANIZATION), make_user(Role.VOLUNTEER)
    donation_id, volunteer_id = donation.id, volunteer.id
    client.post(f"/organization/donations/{donation_id}/claim", headers=headers_for(org))
    (request,) = client.post(
        f"/organization/donations/{donation_id}/request-volunteers",
        json={"volunteer_count": 1},
        headers=headers_for(org),
    ).json()["data"]["requests"]
    client.put(
        f"/volunteer/requests/{request['id']}/respond",
        json={"status": "accepted"},
        headers=headers_for(volunteer),
    )

    assert client.delete("/users/me", headers=headers_for(volunteer)).status_code == 204

    session.expire_all()
    assert session.get(User, volunteer_id) is None
    donation = session.get(Donation, donation_id)
    assert donation.status == DonationStatus.CLAIMING
    assert donation.volunteer_id is None
    assert donation.organization_id == org.id
    assert session.exec(select(VolunteerRequest)).all() == []


def test_volunteer_cannot_cancel(client, make_user, make_donation, headers_for):
    donation = make_donation(make_user(Role.DONOR))
    org, volunteer = make_user(Role.ORGANIZATION), make_user(Role.VOLUNTEER)
    donation_id = donation.id
    client.post(f"/organization/donations/{donation_id}/claim", headers=headers_for(org))
    (request,) = client.post(
        f"/organization/donations/{donation_id}/request-volunteers",
        json={"volunteer_count": 1},
        headers=headers_for(org),
    ).json()["data"]["requests"]
    client.put(
        f"/volunteer/requests/{request['id']}/respond",
        json={"status": "accepted"},
        headers=headers_for(volunteer),
    )

    resp = client.put(
        f"/volunteer/donations/{donation_id}/status",
        json={"status": "cancelled"},
        headers=headers_for(volunteer),
    )
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "message": "Volunteers can only mark donations as completed",
    }
