from tests.conftest import auth_headers


def test_me_requires_token(client):
    assert client.get("/api/v1/users/me").status_code == 401


def test_get_me(client, patient):
    response = client.get("/api/v1/users/me", headers=auth_headers(patient))

    assert response.status_code == 200
    assert response.json()["role"] == "Patient"
    assert response.json()["phone_number"] == "+23276123456"


def test_update_contact_details(client, patient):
    response = client.patch(
        "/api/v1/users/me",
        json={"phone_number": "077 000 222", "full_name": "  Aminata K. "},
        headers=auth_headers(patient),
    )

    assert response.status_code == 200
    assert response.json()["phone_number"] == "+23277000222"
    assert response.json()["full_name"] == "Aminata K."


def test_email_must_be_unique(client, patient, admin):
    response = client.patch(
        "/api/v1/users/me", json={"email": admin.email}, headers=auth_headers(patient)
    )

    assert response.status_code == 422
    assert response.json()["message"] == "Email is already in use"
