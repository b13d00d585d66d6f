from datetime import date

import pytest
from starlette.websockets import WebSocketDisconnect

from ticketa.auth.permissions import Role
from ticketa.auth.utils import create_access_token
from ticketa.models import Ticket

from conftest import PASSWORD, auth_headers


def _token(user):
    return create_access_token({"sub": str(user.id), "email": user.email})


def _book(client, user, trip_id, seat, name="Jane Doe"):
    return client.post("/api/v1/bookings/", headers=auth_headers(user), json={
        "trip_id": trip_id,
        "seat_number": seat,
        "passenger_name": name,
        "passenger_phone": "0912345678"
    })


def test_root_and_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["docs"] == "/docs"


def test_register_login_and_me(client):
    response = client.post("/api/v1/auth/register", json={
        "email": "Jane@Example.com", "password": "secret123", "full_name": "Jane Doe"
    })
    assert response.status_code == 201
    assert response.json()["email"] == "jane@example.com"
    assert response.json()["roles"] == ["passenger"]

    duplicate = client.post("/api/v1/auth/register", json={
        "email": "jane@example.com", "password": "secret123", "full_name": "Jane Doe"
    })
    assert duplicate.status_code == 400

    bad = client.post("/api/v1/auth/login", json={"email": "jane@example.com", "password": "wrong"})
    assert bad.status_code == 401

    login = client.post("/api/v1/auth/login", json={"email": "jane@example.com", "password": "secret123"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["profile"]["full_name"] == "Jane Doe"


def test_oauth2_token_form(client, factory):
    user = factory.user(email="form@example.com")
    response = client.post("/api/v1/auth/token", data={"username": "form@example.com", "password": PASSWORD})
    assert response.status_code == 200
    assert client.get("/api/v1/auth/me", headers={
        "Authorization": f"Bearer {response.json()['access_token']}"
    }).json()["id"] == user.id


def test_protected_routes_require_token(client):
    assert client.get("/api/v1/bookings/my-tickets").status_code == 401
    assert client.get("/api/v1/bookings/my-tickets", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_search_and_seat_map(client, factory):
    trip = factory.trip(trip_date=date(2026, 10, 18))

    found = client.get("/api/v1/trips/search", params={"date": "2026-10-18", "origin": "Yang"})
    assert found.status_code == 200
    assert found.json()["total"] == 1
    assert found.json()["trips"][0]["id"] == trip.id

    assert client.get(f"/api/v1/trips/{trip.id}").json()["available_seats"] == 40
    assert client.get("/api/v1/trips/999").status_code == 404
    assert client.get(f"/api/v1/trips/{trip.id}/seats").json()["booked_seats"] == []


def test_booking_flow(client, factory):
    trip = factory.trip(seat_capacity=40)
    passenger = factory.user()

    response = _book(client, passenger, trip.id, 12)
    assert response.status_code == 201
    ticket = response.json()
    assert ticket["status"] == "active"
    assert ticket["trip"]["origin"] == "Yangon"

    taken = _book(client, factory.user(), trip.id, 12, name="John Roe")
    assert taken.status_code == 409

    assert _book(client, passenger, trip.id, 99).status_code == 400
    assert _book(client, passenger, 999, 1).status_code == 404

    seats = client.get(f"/api/v1/trips/{trip.id}/seats").json()
    assert seats["booked_seats"] == [12]
    assert seats["available_seats"] == 39

    available = client.get("/api/v1/bookings/seat-available", params={"trip_id": trip.id, "seat_number": 12})
    assert available.json()["is_available"] is False

    mine = client.get("/api/v1/bookings/my-tickets", headers=auth_headers(passenger)).json()
    assert [t["id"] for t in mine] == [ticket["id"]]

    other = client.get(f"/api/v1/bookings/tickets/{ticket['id']}", headers=auth_headers(factory.user()))
    assert other.status_code == 403

    qr = client.get(f"/api/v1/bookings/tickets/{ticket['id']}/qr", headers=auth_headers(passenger))
    assert qr.status_code == 200
    assert qr.headers["content-type"] == "image/png"
    assert qr.content.startswith(b"\x89PNG")


def test_booking_validation_errors(client, factory):
    trip = factory.trip()
    response = client.post("/api/v1/bookings/", headers=auth_headers(factory.user()), json={
        "trip_id": trip.id, "seat_number": 0, "passenger_name": "J", "passenger_phone": "1"
    })
    assert response.status_code == 422


def test_cancel_flow(client, factory):
    trip = factory.trip(seat_capacity=40)
    passenger = factory.user()
    ticket = _book(client, passenger, trip.id, 3).json()

    forbidden = client.post(f"/api/v1/bookings/tickets/{ticket['id']}/cancel", headers=auth_headers(factory.user()))
    assert forbidden.status_code == 403

    cancelled = client.post(f"/api/v1/bookings/tickets/{ticket['id']}/cancel", headers=auth_headers(passenger))
    assert cancelled.status_code == 200
    assert cancelled.json()["seat_released"] is True
    assert cancelled.json()["ticket"]["status"] == "cancelled"

    again = client.post(f"/api/v1/bookings/tickets/{ticket['id']}/cancel", headers=auth_headers(passenger))
    assert again.status_code == 409

    assert _book(client, factory.user(), trip.id, 3).status_code == 201


def test_scan_endpoint(client, factory):
    company = factory.company()
    trip = factory.trip(company=company)
    driver = factory.driver(company)
    ticket = _book(client, factory.user(), trip.id, 12).json()

    first = client.post("/api/v1/scanner/scan", headers=auth_headers(driver), json={"code": ticket["ticket_code"]})
    assert first.status_code == 200
    assert first.json()["outcome"] == "valid"

    second = client.post("/api/v1/scanner/scan", headers=auth_headers(driver), json={"code": ticket["ticket_code"]})
    assert second.json()["outcome"] == "already_used"

    missing = client.post("/api/v1/scanner/scan", headers=auth_headers(driver), json={"code": "TKTNOPE0000"})
    assert missing.json()["outcome"] == "not_found"

    history = client.get("/api/v1/scanner/history", headers=auth_headers(driver)).json()
    assert history["total"] == 3

    passenger = client.post("/api/v1/scanner/scan", headers=auth_headers(factory.user()), json={"code": "X"})
    assert passenger.status_code == 403

    no_profile = factory.user(roles=(Role.DRIVER,))
    response = client.post("/api/v1/scanner/scan", headers=auth_headers(no_profile), json={"code": "X"})
    assert response.status_code == 403


def test_scanner_websocket_debounces_repeats(client, factory, db):
    company = factory.company()
    trip = factory.trip(company=company)
    driver = factory.driver(company)
    code = _book(client, factory.user(), trip.id, 1).json()["ticket_code"]

    with client.websocket_connect(f"/api/v1/scanner/ws?token={_token(driver)}") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

        ws.send_json({"type": "decoded", "code": code})
        result = ws.receive_json()
        assert result["type"] == "scan_result"
        assert result["outcome"] == "valid"

        for _ in range(3):
            ws.send_json({"type": "decoded", "code": code})
            assert ws.receive_json() == {"type": "suppressed", "code": code}

    db.expire_all()
    assert db.query(Ticket).filter(Ticket.ticket_code == code).one().status == "used"


def test_scanner_websocket_rejects_non_drivers(client, factory):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/api/v1/scanner/ws?token={_token(factory.user())}"):
            pass
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/api/v1/scanner/ws"):
            pass


def test_trip_feed_receives_scan_updates(client, factory):
    company = factory.company()
    trip = factory.trip(company=company)
    driver = factory.driver(company)
    ticket = _book(client, factory.user(), trip.id, 7, name="Jane Doe").json()

    with client.websocket_connect(f"/api/v1/trips/{trip.id}/ws?token={_token(driver)}") as ws:
        confirmed = ws.receive_json()
        assert confirmed == {
            "type": "subscription_confirmed", "trip_id": trip.id, "timestamp": confirmed["timestamp"]
        }

        scan = client.post("/api/v1/scanner/scan", headers=auth_headers(driver), json={"code": ticket["ticket_code"]})
        assert scan.json()["outcome"] == "valid"

        update = ws.receive_json()
        assert update["type"] == "ticket_update"
        assert update["event"] == "UPDATE"
        assert update["ticket"]["id"] == ticket["id"]
        assert update["ticket"]["status"] == "used"
        assert update["ticket"]["scanned_at"] is not None



def test_idle_trip_feed_holds_no_connection(client, factory, engine):
    company = factory.company()
    trip = factory.trip(company=company)
    driver = factory.driver(company)
    checked_out = engine.pool.checkedout()

    with client.websocket_connect(f"/api/v1/trips/{trip.id}/ws?token={_token(driver)}") as ws:
        assert ws.receive_json()["type"] == "subscription_confirmed"
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

        assert engine.pool.checkedout() == checked_out


def test_scanner_releases_connection_between_scans(client, factory, engine):
    company = factory.company()
    trip = factory.trip(company=company)
    driver = factory.driver(company)
    code = _book(client, factory.user(), trip.id, 2).json()["ticket_code"]
    checked_out = engine.pool.checkedout()

    with client.websocket_connect(f"/api/v1/scanner/ws?token={_token(driver)}") as ws:
        ws.send_json({"type": "decoded", "code": code})
        assert ws.receive_json()["outcome"] == "valid"
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

        assert engine.pool.checkedout() == checked_out

def test_trip_feed_requires_company_staff(client, factory):
    trip = factory.trip()
    outsider = factory.driver(factory.company())
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/api/v1/trips/{trip.id}/ws?token={_token(outsider)}"):
            pass


def test_operator_runs_a_company(client, factory):
    operator = factory.user()
    admin = factory.user(roles=(Role.ADMIN,))
    headers = auth_headers(operator)

    company = client.post("/api/v1/companies/", headers=headers, json={"name": "Express Lines"})
    assert company.status_code == 201
    company_id = company.json()["id"]
    assert company.json()["is_approved"] is False

    bus = client.post(f"/api/v1/companies/{company_id}/buses", headers=headers, json={
        "registration_number": "ygn-7", "seat_capacity": 30
    })
    assert bus.status_code == 201
    route = client.post(f"/api/v1/companies/{company_id}/routes", headers=headers, json={
        "origin": "Yangon", "destination": "Mandalay"
    })
    assert route.status_code == 201
    schedule = client.post(f"/api/v1/companies/{company_id}/schedules", headers=headers, json={
        "route_id": route.json()["id"], "bus_id": bus.json()["id"],
        "departure_time": "08:00:00", "days_of_week": [0], "price": "25000"
    })
    assert schedule.status_code == 201

    trips = client.post(
        f"/api/v1/companies/{company_id}/schedules/{schedule.json()['id']}/trips",
        headers=headers, json={"start_date": "2026-10-18", "days": 7}
    )
    assert trips.status_code == 201
    assert [t["trip_date"] for t in trips.json()] == ["2026-10-18"]
    trip_id = trips.json()[0]["id"]

    # Pending companies are not searchable
    assert client.get("/api/v1/trips/search", params={"date": "2026-10-18"}).json()["total"] == 0

    forbidden = client.post(f"/api/v1/admin/companies/{company_id}/approve", headers=headers)
    assert forbidden.status_code == 403
    approved = client.post(f"/api/v1/admin/companies/{company_id}/approve", headers=auth_headers(admin))
    assert approved.json()["is_approved"] is True
    assert client.get("/api/v1/trips/search", params={"date": "2026-10-18"}).json()["total"] == 1

    driver_user = factory.user(email="bus.driver@example.com")
    driver = client.post(f"/api/v1/companies/{company_id}/drivers", headers=headers, json={
        "email": "bus.driver@example.com", "assigned_bus_id": bus.json()["id"]
    })
    assert driver.status_code == 201
    assert driver.json()["user_id"] == driver_user.id

    passenger = factory.user()
    assert _book(client, passenger, trip_id, 1).status_code == 201

    bookings = client.get(f"/api/v1/companies/{company_id}/bookings", headers=headers)
    assert [b["seat_number"] for b in bookings.json()] == [1]
    assert client.get(f"/api/v1/companies/{company_id}/bookings", headers=auth_headers(passenger)).status_code == 403

    progress = client.get(f"/api/v1/trips/{trip_id}/progress", headers=auth_headers(driver_user))
    assert progress.status_code == 200
    assert progress.json()["ticket_count"] == 1

    status = client.put(f"/api/v1/trips/{trip_id}/status", headers=headers, json={"status": "completed"})
    assert status.status_code == 409
    status = client.put(f"/api/v1/trips/{trip_id}/status", headers=headers, json={"status": "cancelled"})
    assert status.json()["tickets_cancelled"] == 1


def test_admin_endpoints(client, factory):
    admin = factory.user(roles=(Role.ADMIN,))
    user = factory.user()
    factory.company(approved=False)
    headers = auth_headers(admin)

    assert client.get("/api/v1/admin/dashboard", headers=auth_headers(user)).status_code == 403
    dashboard = client.get("/api/v1/admin/dashboard", headers=headers)
    assert dashboard.status_code == 200
    assert dashboard.json()["metrics"]["pending_companies"] == 1

    pending = client.get("/api/v1/admin/companies", headers=headers, params={"approved": False})
    assert len(pending.json()) == 1
    company_id = pending.json()[0]["id"]
    assert client.post(f"/api/v1/admin/companies/{company_id}/suspend", headers=headers).json()["is_active"] is False
    assert client.post(f"/api/v1/admin/companies/{company_id}/activate", headers=headers).json()["is_active"] is True
    assert client.post("/api/v1/admin/companies/999/approve", headers=headers).status_code == 404

    granted = client.post(f"/api/v1/admin/users/{user.id}/roles", headers=headers, json={"role": "driver"})
    assert granted.json()["roles"] == ["driver", "passenger"]
    revoked = client.delete(f"/api/v1/admin/users/{user.id}/roles/driver", headers=headers)
    assert revoked.json()["roles"] == ["passenger"]
    assert client.delete(f"/api/v1/admin/users/{admin.id}/roles/admin", headers=headers).status_code == 400

    users = client.get("/api/v1/admin/users", headers=headers).json()
    assert users["total"] == 2
