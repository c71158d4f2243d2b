"""Saved devices: per-principal CRUD and wake-by-device."""

import pytest


def _save(client, headers, mac="aa-bb-cc-dd-ee-01", name="NAS"):
    response = client.post("/api/devices", json={"name": name, "macAddress": mac}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["device"]


@pytest.mark.parametrize("method,path", (("get", "/api/devices"), ("post", "/api/devices/x/wake")))
def test_devices_require_a_user_principal(client, agent_headers, method, path):
    assert getattr(client, method)(path).status_code == 401
    response = getattr(client, method)(path, headers=agent_headers)
    assert response.status_code == 401
    assert response.json() == {"error": "User authentication required"}


def test_create_and_list_devices(client, alice_headers, bob_headers):
    device = _save(client, alice_headers)

    assert device["macAddress"] == "AA:BB:CC:DD:EE:01"
    assert device["ownerId"] == "alice"
    assert device["name"] == "NAS"

    listed = client.get("/api/devices", headers=alice_headers).json()["devices"]
    assert [d["id"] for d in listed] == [device["id"]]
    assert client.get("/api/devices", headers=bob_headers).json() == {"devices": []}


def test_create_device_without_name(client, alice_headers):
    response = client.post(
        "/api/devices", json={"macAddress": "AA:BB:CC:DD:EE:02"}, headers=alice_headers
    )
    assert response.status_code == 200
    assert "name" not in response.json()["device"]


def test_create_device_validation(client, alice_headers):
    missing = client.post("/api/devices", json={"name": "x"}, headers=alice_headers)
    assert missing.status_code == 400
    assert missing.json() == {"error": "macAddress is required"}

    malformed = client.post(
        "/api/devices", json={"macAddress": "AA:BB"}, headers=alice_headers
    )
    assert malformed.status_code == 400

    too_long = client.post(
        "/api/devices",
        json={"name": "x" * 121, "macAddress": "AA:BB:CC:DD:EE:FF"},
        headers=alice_headers,
    )
    assert too_long.status_code == 400


def test_delete_device_is_owner_scoped(client, alice_headers, bob_headers):
    device = _save(client, alice_headers)

    foreign = client.delete(f"/api/devices/{device['id']}", headers=bob_headers)
    assert foreign.status_code == 404
    assert foreign.json() == {"error": "Device not found"}

    response = client.delete(f"/api/devices/{device['id']}", headers=alice_headers)
    assert response.status_code == 200
    assert response.json() == {"ok": True}

    again = client.delete(f"/api/devices/{device['id']}", headers=alice_headers)
    assert again.status_code == 404


def test_wake_device_creates_attributed_task(client, alice_headers, agent_headers):
    device = _save(client, alice_headers)

    response = client.post(f"/api/devices/{device['id']}/wake", headers=alice_headers)

    assert response.status_code == 200
    task = response.json()["task"]
    assert task["macAddress"] == device["macAddress"]
    assert task["ownerId"] == "alice"
    assert task["deviceRef"] == device["id"]
    assert task["status"] == "pending"

    claimed = client.post("/api/wol/tasks/claim", json={}, headers=agent_headers).json()["tasks"]
    assert claimed == [{"id": task["id"], "macAddress": device["macAddress"]}]


def test_wake_foreign_device_is_not_found(client, alice_headers, bob_headers):
    device = _save(client, alice_headers)

    response = client.post(f"/api/devices/{device['id']}/wake", headers=bob_headers)

    assert response.status_code == 404
    assert client.get("/api/wol/tasks", headers=bob_headers).json() == {"tasks": []}
