def test_guest_crud(guests_client, owner_headers, hotel):
    create_resp = guests_client.post(
        "/guests",
        json={"hotel_id": hotel["id"], "first_name": "Khalid", "last_name": "Saeed", "phone": "+966511111111"},
        headers=owner_headers,
    )
    assert create_resp.status_code == 201
    guest = create_resp.json()["data"]

    update_resp = guests_client.put(f"/guests/{guest['id']}", json={"nationality": "SA"}, headers=owner_headers)
    assert update_resp.status_code == 200
    assert update_resp.json()["data"]["nationality"] == "SA"
    assert update_resp.json()["data"]["first_name"] == "Khalid"

    assert guests_client.get(f"/guests/{guest['id']}", headers=owner_headers).status_code == 200
    assert guests_client.delete(f"/guests/{guest['id']}", headers=owner_headers).status_code == 204
    assert guests_client.get(f"/guests/{guest['id']}", headers=owner_headers).status_code == 404


def test_guest_email_deduplication_is_case_insensitive(guests_client, owner_headers, hotel, guest):
    response = guests_client.post(
        "/guests",
        json={"hotel_id": hotel["id"], "first_name": "Another", "last_name": "Name", "email": "SARA@example.com"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["id"] == guest["id"]
    assert response.json()["data"]["first_name"] == "Sara"
    assert len(guests_client.get(f"/guests?hotel_id={hotel['id']}", headers=owner_headers).json()["data"]) == 1


def test_same_email_in_another_hotel_creates_new_guest(guests_client, hotels_client, owner_headers, guest):
    annex = hotels_client.post("/hotels", json={"name": "Annex"}, headers=owner_headers).json()["data"]
    response = guests_client.post(
        "/guests",
        json={"hotel_id": annex["id"], "first_name": "Sara", "last_name": "Ali", "email": "sara@example.com"},
        headers=owner_headers,
    )
    assert response.status_code == 201
    assert response.json()["data"]["id"] != guest["id"]


def test_update_rejects_email_of_other_guest(guests_client, owner_headers, hotel, guest):
    other = guests_client.post(
        "/guests",
        json={"hotel_id": hotel["id"], "first_name": "Noura", "last_name": "H", "email": "noura@example.com"},
        headers=owner_headers,
    ).json()["data"]
    response = guests_client.put(f"/guests/{other['id']}", json={"email": "Sara@example.com"}, headers=owner_headers)
    assert response.status_code == 400


def test_guest_search(guests_client, owner_headers, hotel, guest):
    guests_client.post(
        "/guests", json={"hotel_id": hotel["id"], "first_name": "Faisal", "last_name": "Omar"}, headers=owner_headers
    )
    found = guests_client.get("/guests?search=fais", headers=owner_headers).json()["data"]
    assert [item["first_name"] for item in found] == ["Faisal"]


def test_guests_are_scoped_to_owner(guests_client, register_and_login, hotel, guest):
    other_headers = register_and_login("other@example.com")

    assert guests_client.get("/guests", headers=other_headers).json()["data"] == []
    assert guests_client.get(f"/guests?hotel_id={hotel['id']}", headers=other_headers).status_code == 403
    assert guests_client.get(f"/guests/{guest['id']}", headers=other_headers).status_code == 403
    create_resp = guests_client.post(
        "/guests", json={"hotel_id": hotel["id"], "first_name": "X", "last_name": "Y"}, headers=other_headers
    )
    assert create_resp.status_code == 403


def test_deleting_guest_keeps_bookings(guests_client, bookings_client, owner_headers, hotel, unit, guest):
    booking = bookings_client.post(
        "/bookings",
        json={
            "hotel_id": hotel["id"],
            "unit_id": unit["id"],
            "guest_id": guest["id"],
            "check_in": "2030-07-01",
            "check_out": "2030-07-03",
        },
        headers=owner_headers,
    ).json()["data"]

    assert guests_client.delete(f"/guests/{guest['id']}", headers=owner_headers).status_code == 204
    remaining = bookings_client.get(f"/bookings/{booking['id']}", headers=owner_headers).json()["data"]
    assert remaining["guest_id"] is None
