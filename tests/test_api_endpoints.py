"""
Tests for API Endpoints

This test suite verifies:
- Health check endpoint
- Enrollment, verification and identification
- Kiosk sessions: retries, exhaustion, manual fallback, idle expiry
- Rejection of student ids that are not plain file names
- Student management endpoints (list, get, delete)

Each test runs a real app against a temporary descriptor store.

Run with: pytest tests/test_api_endpoints.py -v
"""

import base64
import os
import sys

import cv2
import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from api.app import create_app


# ============================================================
# Test Fixtures
# ============================================================

def encode(image: np.ndarray) -> str:
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return base64.b64encode(buffer.tobytes()).decode("ascii")


def horizontal_stripes() -> np.ndarray:
    grid = np.zeros((64, 64), dtype=np.uint8)
    grid[0::4] = 255
    grid[1::4] = 255
    return cv2.cvtColor(grid, cv2.COLOR_GRAY2BGR)


def vertical_stripes() -> np.ndarray:
    return np.ascontiguousarray(horizontal_stripes().transpose(1, 0, 2))


def unrelated() -> np.ndarray:
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)


@pytest.fixture
def config(tmp_path):
    return {
        "preprocessing": {"grid_size": 64, "color_order": "bgr"},
        "descriptor": {"algorithm": "block_pattern", "grid_size": 64,
                       "block_pattern": {"block_grid": [4, 4]}},
        "matching": {"discard_fraction": 0.31, "verify_threshold": 0.20, "identify_threshold": 0.20},
        "attempts": {"max_attempts": 3},
        "detection": {"enabled": False},
        "storage": {
            "descriptors_dir": str(tmp_path / "descriptors"),
            "db_path": str(tmp_path / "faceid.sqlite"),
        },
    }


@pytest.fixture
def client(config):
    with TestClient(create_app(config)) as client:
        yield client


@pytest.fixture
def enrolled_client(client):
    for student_id, name, image in (
        ("S-001", "Alice", horizontal_stripes()),
        ("S-002", "Bob", vertical_stripes()),
    ):
        response = client.post("/enroll", json={
            "student_id": student_id,
            "student_name": name,
            "image": encode(image),
        })
        assert response.status_code == 200
    return client


# ============================================================
# System Endpoints
# ============================================================

class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_status(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["algorithm"] == "block_pattern/1"
        assert data["enrolled_students"] == 0
        assert data["detection_enabled"] is False

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert "docs" in data


# ============================================================
# Enrollment / Recognition
# ============================================================

class TestEnrollment:
    """Tests for POST /enroll."""

    def test_enroll(self, client):
        response = client.post("/enroll", json={
            "student_id": "S-001",
            "student_name": "Alice",
            "image": encode(horizontal_stripes()),
        })
        assert response.status_code == 200

        data = response.json()
        assert data["algorithm"] == "block_pattern"
        assert data["version"] == "1"
        assert data["length"] == 16 * 59
        assert data["replaced"] is False

    def test_reenroll_replaces(self, enrolled_client):
        response = enrolled_client.post("/enroll", json={
            "student_id": "S-001",
            "image": encode(vertical_stripes()),
        })
        assert response.json()["replaced"] is True
        assert enrolled_client.get("/health").json()["enrolled_students"] == 2

    def test_data_url_accepted(self, client):
        response = client.post("/enroll", json={
            "student_id": "S-001",
            "image": "data:image/png;base64," + encode(horizontal_stripes()),
        })
        assert response.status_code == 200

    def test_invalid_base64(self, client):
        response = client.post("/enroll", json={"student_id": "S-001", "image": "not-an-image!!"})

        assert response.status_code == 400
        assert response.json()["error"] == "ImageDecodeError"

    def test_not_an_image(self, client):
        payload = base64.b64encode(b"hello world").decode("ascii")
        response = client.post("/enroll", json={"student_id": "S-001", "image": payload})
        assert response.status_code == 400

    def test_student_id_cannot_leave_storage(self, client, tmp_path):
        response = client.post("/enroll", json={
            "student_id": "../../escaped",
            "image": encode(horizontal_stripes()),
        })
        assert response.status_code == 422

        assert not (tmp_path.parent / "escaped.npz").exists()
        assert not (tmp_path / "escaped.npz").exists()
        assert client.get("/health").json()["enrolled_students"] == 0

    def test_student_id_with_slash_rejected(self, client):
        response = client.post("/enroll", json={
            "student_id": "a/b",
            "image": encode(horizontal_stripes()),
        })
        assert response.status_code == 422

        assert client.get("/health").json()["enrolled_students"] == 0
        assert client.get("/students").json()["total"] == 0

    def test_failed_save_leaves_gallery_unchanged(self, client, monkeypatch):
        service = client.app.state.service

        def disk_full(*args, **kwargs):
            raise OSError("No space left on device")

        monkeypatch.setattr(service.store, "save_descriptor", disk_full)

        with pytest.raises(OSError):
            client.post("/enroll", json={
                "student_id": "S-001",
                "image": encode(horizontal_stripes()),
            })

        assert "S-001" not in service.pipeline.gallery
        assert service.store.list_students() == []


class TestRecognition:
    """Tests for POST /identify and POST /verify."""

    def test_identify(self, enrolled_client):
        response = enrolled_client.post("/identify", json={"image": encode(horizontal_stripes())})
        assert response.status_code == 200

        data = response.json()
        assert data["matched"] is True
        assert data["candidate_id"] == "S-001"
        assert data["candidate_name"] == "Alice"
        assert data["metric"] == "chi_square_block"
        assert data["higher_is_better"] is False

    def test_identify_unknown_face(self, enrolled_client):
        data = enrolled_client.post("/identify", json={"image": encode(unrelated())}).json()

        assert data["matched"] is False
        assert data["candidate_id"] is None
        assert data["score"] > data["threshold"]

    def test_identify_empty_gallery(self, client):
        data = client.post("/identify", json={"image": encode(horizontal_stripes())}).json()

        assert data["matched"] is False
        assert data["score"] is None

    def test_verify(self, enrolled_client):
        data = enrolled_client.post("/verify", json={
            "student_id": "S-002",
            "image": encode(vertical_stripes()),
        }).json()
        assert data["matched"] is True
        assert data["candidate_id"] == "S-002"

    def test_verify_wrong_student(self, enrolled_client):
        data = enrolled_client.post("/verify", json={
            "student_id": "S-002",
            "image": encode(horizontal_stripes()),
        }).json()
        assert data["matched"] is False
        assert data["score"] == pytest.approx(0.5)

    def test_verify_unknown_student(self, enrolled_client):
        response = enrolled_client.post("/verify", json={
            "student_id": "S-999",
            "image": encode(horizontal_stripes()),
        })
        assert response.status_code == 404

    def test_verify_malformed_student_id(self, enrolled_client):
        response = enrolled_client.post("/verify", json={
            "student_id": "../S-001",
            "image": encode(horizontal_stripes()),
        })
        assert response.status_code == 422

    def test_gallery_persists_across_restarts(self, config):
        with TestClient(create_app(config)) as client:
            client.post("/enroll", json={"student_id": "S-001", "image": encode(horizontal_stripes())})

        with TestClient(create_app(config)) as client:
            data = client.post("/identify", json={"image": encode(horizontal_stripes())}).json()
            assert data["candidate_id"] == "S-001"


# ============================================================
# Kiosk Sessions
# ============================================================

class TestKiosk:
    """Tests for the kiosk session endpoints."""

    @pytest.fixture
    def session_id(self, enrolled_client):
        response = enrolled_client.post("/kiosk/sessions", json={})
        assert response.status_code == 200

        data = response.json()
        assert data["state"] == "idle"
        assert data["outing_type"] == "Local"
        assert data["remaining"] == 3
        return data["session_id"]

    def scan(self, client, session_id, image):
        return client.post(f"/kiosk/sessions/{session_id}/scan", json={"image": encode(image)})

    def test_accepted_scan(self, enrolled_client, session_id):
        response = self.scan(enrolled_client, session_id, vertical_stripes())
        assert response.status_code == 200

        data = response.json()
        assert data["session"]["state"] == "accepted"
        assert data["match"]["candidate_id"] == "S-002"
        assert data["error"] is None

    def test_exhaustion_and_fallback(self, enrolled_client, session_id):
        for expected in ("retry_pending", "retry_pending", "exhausted"):
            data = self.scan(enrolled_client, session_id, unrelated()).json()
            assert data["session"]["state"] == expected

        assert data["session"]["fallback_required"] is True
        assert data["session"]["remaining"] == 0

        blocked = self.scan(enrolled_client, session_id, horizontal_stripes())
        assert blocked.status_code == 409
        assert blocked.json()["error"] == "InvalidTransition"

        response = enrolled_client.post(f"/kiosk/sessions/{session_id}/fallback",
                                        json={"student_id": "S-001"})
        assert response.status_code == 200
        assert response.json()["state"] == "idle"
        assert response.json()["attempts_made"] == 0

        data = self.scan(enrolled_client, session_id, horizontal_stripes()).json()
        assert data["session"]["state"] == "accepted"

    def test_fallback_unknown_student(self, enrolled_client, session_id):
        response = enrolled_client.post(f"/kiosk/sessions/{session_id}/fallback",
                                        json={"student_id": "S-999"})
        assert response.status_code == 404

    def test_fallback_malformed_student_id(self, enrolled_client, session_id):
        response = enrolled_client.post(f"/kiosk/sessions/{session_id}/fallback",
                                        json={"student_id": "S-001/../x"})
        assert response.status_code == 422

    def test_undecodable_capture_counts(self, enrolled_client, session_id):
        response = enrolled_client.post(f"/kiosk/sessions/{session_id}/scan",
                                        json={"image": "not-an-image!!"})
        assert response.status_code == 200

        data = response.json()
        assert data["match"] is None
        assert data["error"] is not None
        assert data["session"]["attempts_made"] == 1

    def test_outing_type_change_resets(self, enrolled_client, session_id):
        self.scan(enrolled_client, session_id, unrelated())

        response = enrolled_client.post(f"/kiosk/sessions/{session_id}/outing-type",
                                        json={"outing_type": "Non-Local"})
        data = response.json()
        assert data["outing_type"] == "Non-Local"
        assert data["attempts_made"] == 0
        assert data["state"] == "idle"

    def test_cancel_resets(self, enrolled_client, session_id):
        self.scan(enrolled_client, session_id, unrelated())
        self.scan(enrolled_client, session_id, unrelated())

        data = enrolled_client.post(f"/kiosk/sessions/{session_id}/cancel").json()
        assert data["attempts_made"] == 0
        assert data["remaining"] == 3

    def test_close_session(self, enrolled_client, session_id):
        assert enrolled_client.delete(f"/kiosk/sessions/{session_id}").status_code == 200
        assert enrolled_client.get(f"/kiosk/sessions/{session_id}").status_code == 404

    def test_unknown_session(self, enrolled_client):
        response = self.scan(enrolled_client, "ks_missing", horizontal_stripes())
        assert response.status_code == 404


class TestKioskSessionLifetime:
    """Idle expiry and the cap on open kiosk sessions."""

    @pytest.fixture
    def limited_client(self, config):
        config["kiosk"] = {"session_ttl_sec": 60, "max_sessions": 2}
        with TestClient(create_app(config)) as client:
            yield client

    def open_session(self, client):
        return client.post("/kiosk/sessions", json={}).json()["session_id"]

    def test_idle_session_expires(self, limited_client):
        session_id = self.open_session(limited_client)
        service = limited_client.app.state.service
        service.sessions[session_id].last_used -= 61

        assert limited_client.get(f"/kiosk/sessions/{session_id}").status_code == 404
        assert limited_client.get("/health").json()["active_sessions"] == 0

    def test_active_session_is_kept(self, limited_client):
        session_id = self.open_session(limited_client)
        service = limited_client.app.state.service
        service.sessions[session_id].last_used -= 30

        assert limited_client.get(f"/kiosk/sessions/{session_id}").status_code == 200
        service.sessions[session_id].last_used -= 40
        assert limited_client.get(f"/kiosk/sessions/{session_id}").status_code == 200

    def test_least_recently_used_session_dropped_at_cap(self, limited_client):
        first = self.open_session(limited_client)
        second = self.open_session(limited_client)
        service = limited_client.app.state.service
        service.sessions[first].last_used -= 10
        service.sessions[second].last_used -= 5

        third = self.open_session(limited_client)

        assert limited_client.get(f"/kiosk/sessions/{first}").status_code == 404
        assert limited_client.get(f"/kiosk/sessions/{second}").status_code == 200
        assert limited_client.get(f"/kiosk/sessions/{third}").status_code == 200
        assert limited_client.get("/health").json()["active_sessions"] == 2


# ============================================================
# Student Management
# ============================================================

class TestStudentManagementEndpoints:
    """Tests for student management endpoints."""

    def test_list_students(self, enrolled_client):
        response = enrolled_client.get("/students")
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 2
        assert [s["student_id"] for s in data["students"]] == ["S-001", "S-002"]

    def test_get_student(self, enrolled_client):
        data = enrolled_client.get("/students/S-001").json()

        assert data["student_name"] == "Alice"
        assert data["algorithm"] == "block_pattern"

    def test_get_nonexistent_student(self, enrolled_client):
        assert enrolled_client.get("/students/S-999").status_code == 404

    def test_delete_student(self, enrolled_client):
        response = enrolled_client.delete("/students/S-001")
        assert response.status_code == 200
        assert response.json()["success"] is True

        data = enrolled_client.post("/identify", json={"image": encode(horizontal_stripes())}).json()
        assert data["candidate_id"] != "S-001"
        assert enrolled_client.get("/students/S-001").status_code == 404

    def test_delete_nonexistent_student(self, enrolled_client):
        assert enrolled_client.delete("/students/S-999").status_code == 404
