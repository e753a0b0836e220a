from fastapi.testclient import TestClient

from sync_api.main import app

USER = "user-1"


def push_body(clock, device_id="device-a", book_id="book-1", timestamp=None, percentage=0.1, user_id=USER):
    return {
        "userId": user_id,
        "bookId": book_id,
        "cfi": f"compressed-{device_id}",
        "percentage": percentage,
        "timestamp": timestamp if timestamp is not None else clock.now - 1000,
        "deviceId": device_id,
    }


def test_health(api_client):
    response = api_client.get("/api/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_push_requires_authentication(progress_service, auth_service, clock):
    client = TestClient(app)
    response = client.post("/api/sync/progress", json=push_body(clock))
    assert response.status_code == 401

    client.headers["Authorization"] = "Bearer not-a-token"
    response = client.post("/api/sync/progress", json=push_body(clock))
    assert response.status_code == 401
    assert progress_service.get_progress(USER, "book-1") is None


def test_push_for_another_user_is_forbidden(api_client, progress_service, clock):
    response = api_client.post("/api/sync/progress", json=push_body(clock, user_id="user-2"))
    assert response.status_code == 403
    assert progress_service.get_progress("user-2", "book-1") is None


def test_push_accepted(api_client, progress_service, clock):
    response = api_client.post("/api/sync/progress", json=push_body(clock, percentage=0.42))

    assert response.status_code == 200
    assert response.json() == {"status": "updated", "reason": "new_record"}
    stored = progress_service.get_progress(USER, "book-1")
    assert stored.percentage == 0.42
    assert stored.cfi == "compressed-device-a"


def test_push_ignored_returns_server_state(api_client, clock):
    api_client.post("/api/sync/progress", json=push_body(clock, percentage=0.3))
    clock.advance(2_000)

    response = api_client.post("/api/sync/progress", json=push_body(clock, device_id="device-b", timestamp=clock.now))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ignored"
    assert body["reason"] == "hot_window"
    assert body["serverState"] == {
        "cfi": "compressed-device-a",
        "percentage": 0.3,
        "timestamp": clock.now - 3000,
        "deviceId": "device-a",
    }


def test_push_with_skewed_clock_is_unprocessable(api_client, clock):
    response = api_client.post("/api/sync/progress", json=push_body(clock, timestamp=clock.now + 10 * 60 * 1000))
    assert response.status_code == 422
    assert "future" in response.json()["detail"]


def test_push_with_missing_fields_is_unprocessable(api_client):
    response = api_client.post("/api/sync/progress", json={"userId": USER, "bookId": "book-1"})
    assert response.status_code == 422


def test_pull_returns_most_recent_first(api_client, clock):
    for book_id in ["book-1", "book-2", "book-3"]:
        api_client.post("/api/sync/progress", json=push_body(clock, book_id=book_id))
        clock.advance(1_000)

    response = api_client.get("/api/sync/all", params={"userId": USER, "limit": 2})

    assert response.status_code == 200
    records = response.json()
    assert [r["book_id"] for r in records] == ["book-3", "book-2"]
    assert records[0]["device_id"] == "device-a"
    assert records[0]["cfi"] == "compressed-device-a"
    assert records[0]["timestamp"] == clock.now - 2000


def test_pull_of_another_user_is_forbidden(api_client):
    response = api_client.get("/api/sync/all", params={"userId": "user-2"})
    assert response.status_code == 403


def test_get_single_progress(api_client, clock):
    assert api_client.get("/api/sync/progress/book-1").status_code == 404

    api_client.post("/api/sync/progress", json=push_body(clock, percentage=0.7))
    response = api_client.get("/api/sync/progress/book-1")
    assert response.status_code == 200
    assert response.json()["percentage"] == 0.7


def test_rpc_upsert(api_client, clock):
    body = {"bookId": "book-1", "cfi": "c1", "percentage": 0.5, "deviceId": "device-a", "updatedAt": clock.now}

    first = api_client.post("/api/rpc/upsert_reading_progress", json=body)
    second = api_client.post("/api/rpc/upsert_reading_progress", json=body)

    assert first.status_code == 200
    assert first.json()["updated"] is True
    assert first.json()["conflict"] is False
    assert first.json()["data"]["sync_version"] == 1
    assert first.json()["data"]["user_id"] == USER

    assert second.json()["updated"] is False
    assert second.json()["conflict"] is True
    assert second.json()["data"]["sync_version"] == 1


def test_rpc_rejects_stale_timestamp(api_client, clock):
    body = {"bookId": "book-1", "cfi": "c1", "percentage": 0.5, "deviceId": "device-a",
            "updatedAt": clock.now - 31 * 24 * 60 * 60 * 1000}
    response = api_client.post("/api/rpc/upsert_reading_progress", json=body)
    assert response.status_code == 422
