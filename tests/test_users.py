from common.models import RoleEnum

OWNER_PAYLOAD = {
    "email": "Owner@Example.com",
    "password": "Passw0rd!",
    "full_name": "Hotel Owner",
}


def login(client, email: str, password: str):
    return client.post(
        "/auth/login",
        data={"username": email, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )


def test_register_and_login(users_client):
    register_resp = users_client.post("/auth/register", json=OWNER_PAYLOAD)
    assert register_resp.status_code == 201
    profile = register_resp.json()["data"]
    assert profile["email"] == "owner@example.com"
    assert profile["role"] == RoleEnum.OWNER.value
    assert profile["is_premium"] is False

    login_resp = login(users_client, "owner@example.com", "Passw0rd!")
    assert login_resp.status_code == 200
    assert login_resp.json()["token_type"] == "bearer"


def test_register_duplicate_email_is_rejected(users_client):
    users_client.post("/auth/register", json=OWNER_PAYLOAD)
    duplicate = users_client.post("/auth/register", json={**OWNER_PAYLOAD, "email": "owner@example.com"})
    assert duplicate.status_code == 400
    assert duplicate.json() == {"error": "Email already registered"}


def test_register_cannot_self_assign_admin(users_client):
    response = users_client.post("/auth/register", json={**OWNER_PAYLOAD, "role": RoleEnum.SUPER_ADMIN.value})
    assert response.status_code == 403


def test_register_validation_error_shape(users_client):
    response = users_client.post("/auth/register", json={"email": "not-an-email", "password": "short"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request"
    assert body["details"]


def test_login_with_wrong_password(users_client):
    users_client.post("/auth/register", json=OWNER_PAYLOAD)
    response = login(users_client, "owner@example.com", "wrong-password")
    assert response.status_code == 401
    assert response.json()["error"] == "Incorrect email or password"


def test_profile_requires_token(users_client):
    assert users_client.get("/profile").status_code == 401
    bad = users_client.get("/profile", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


def test_profile_update(users_client, owner_headers):
    update_resp = users_client.put(
        "/profile",
        json={"full_name": "Updated Owner", "phone": "+966500000000"},
        headers=owner_headers,
    )
    assert update_resp.status_code == 200
    data = update_resp.json()["data"]
    assert data["full_name"] == "Updated Owner"
    assert data["phone"] == "+966500000000"

    fetched = users_client.get("/profile", headers=owner_headers).json()["data"]
    assert fetched["full_name"] == "Updated Owner"


def test_profile_password_change(users_client, owner_headers):
    users_client.put("/profile", json={"password": "N3wPassword!"}, headers=owner_headers)
    assert login(users_client, "owner@example.com", "Passw0rd!").status_code == 401
    assert login(users_client, "owner@example.com", "N3wPassword!").status_code == 200


def test_notifications_follow_bookings(users_client, bookings_client, owner_headers, hotel, unit):
    bookings_client.post(
        "/bookings",
        json={
            "hotel_id": hotel["id"],
            "unit_id": unit["id"],
            "check_in": "2030-01-10",
            "check_out": "2030-01-12",
        },
        headers=owner_headers,
    )
    notifications = users_client.get("/notifications?unread_only=true", headers=owner_headers).json()["data"]
    assert len(notifications) == 1
    assert notifications[0]["type"] == "booking"

    read_resp = users_client.post(f"/notifications/{notifications[0]['id']}/read", headers=owner_headers)
    assert read_resp.status_code == 200
    assert read_resp.json()["data"]["is_read"] is True
    assert users_client.get("/notifications?unread_only=true", headers=owner_headers).json()["data"] == []


def test_notifications_are_scoped_to_owner(users_client, bookings_client, register_and_login, owner_headers, hotel, unit):
    bookings_client.post(
        "/bookings",
        json={"hotel_id": hotel["id"], "unit_id": unit["id"], "check_in": "2030-01-10", "check_out": "2030-01-12"},
        headers=owner_headers,
    )
    notification_id = users_client.get("/notifications", headers=owner_headers).json()["data"][0]["id"]

    other_headers = register_and_login("other@example.com")
    assert users_client.get("/notifications", headers=other_headers).json()["data"] == []
    assert users_client.post(f"/notifications/{notification_id}/read", headers=other_headers).status_code == 404
