"""API tests for signed flow callbacks."""

import json

import pytest

from relay.core.signing import sign_payload

API = "/api/v1"


def _signed(payload: dict, secret: str = "s3cret") -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    return body, {"Content-Type": "application/json", "X-Webhook-Signature": sign_payload(secret, body)}


class TestRunCallback:
    def test_signed_success(self, client, make_run):
        run_id = make_run(status="running")
        body, headers = _signed({"status": "success", "result": {"pages": 3}})
        response = client.post(f"{API}/callback/{run_id}", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["applied"] is True

        run = client.get(f"{API}/runs/{run_id}").json()["data"]
        assert run["status"] == "success"
        assert run["result"] == {"pages": 3}

    def test_secret_header_accepted(self, client, make_run):
        run_id = make_run(status="running")
        response = client.post(
            f"{API}/callback/{run_id}", json={"status": "failed"}, headers={"X-Webhook-Secret": "s3cret"}
        )
        assert response.status_code == 200

    def test_duplicate_acknowledged(self, client, make_run):
        run_id = make_run(status="running")
        body, headers = _signed({"status": "success"})
        client.post(f"{API}/callback/{run_id}", content=body, headers=headers)
        body, headers = _signed({"status": "failed", "error_message": "late"})
        response = client.post(f"{API}/callback/{run_id}", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["applied"] is False
        assert response.json()["data"]["status"] == "success"

    def test_bad_signature(self, client, make_run):
        run_id = make_run(status="running")
        body, headers = _signed({"status": "success"}, secret="wrong")
        response = client.post(f"{API}/callback/{run_id}", content=body, headers=headers)
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"
        assert client.get(f"{API}/runs/{run_id}").json()["data"]["status"] == "running"

    def test_missing_signature(self, client, make_run):
        run_id = make_run(status="running")
        response = client.post(f"{API}/callback/{run_id}", json={"status": "success"})
        assert response.status_code == 401

    def test_unconfigured_secret(self, client, settings, make_run):
        settings.callback_secret = None
        run_id = make_run(status="running")
        response = client.post(
            f"{API}/callback/{run_id}", json={"status": "success"}, headers={"X-Webhook-Secret": "x"}
        )
        assert response.status_code == 500
        assert response.json()["code"] == "INTERNAL"

    def test_invalid_status(self, client, make_run):
        run_id = make_run(status="running")
        body, headers = _signed({"status": "finished"})
        assert client.post(f"{API}/callback/{run_id}", content=body, headers=headers).status_code == 400


class TestSyncCallback:
    @pytest.fixture
    def event_id(self, client, content):
        content.add_document(42, metadata={"sync_target": 1})
        response = client.post(f"{API}/documents/42/sync")
        assert response.status_code == 202
        return response.json()["data"]["event_id"]

    def test_resolves_attempt(self, client, event_id):
        body, headers = _signed({"event_id": event_id, "document_id": 42, "status": "success"})
        response = client.post(f"{API}/sync/callback", content=body, headers=headers)
        assert response.json()["data"]["applied"] is True
        status = client.get(f"{API}/documents/42/sync-status").json()["data"]
        assert status["last_status"] == "success"
        assert status["last_synced_at"] is not None

    def test_other_event_ignored(self, client, event_id):
        body, headers = _signed({"event_id": "stale", "document_id": 42, "status": "failed"})
        response = client.post(f"{API}/sync/callback", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["applied"] is False


class TestProcessingCallback:
    def test_progress_report(self, client, content):
        content.add_document(7)
        job_id = client.post(
            f"{API}/processing/jobs", json={"document_id": 7, "pipeline": "polish_document"}
        ).json()["data"]["id"]
        body, headers = _signed({"status": "running", "progress": 50})
        response = client.post(f"{API}/processing/callback/{job_id}", content=body, headers=headers)
        assert response.json()["data"]["progress"] == 50
