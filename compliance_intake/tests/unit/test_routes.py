"""HTTP route tests using FastAPI TestClient with dependencies overridden."""

import base64
import json
import time
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from compliance_intake.config import settings
from compliance_intake.core.errors import ProviderFetchError
from compliance_intake.core.models import TaskStatus, TaskType
from compliance_intake.main import app
from compliance_intake.processors.lifecycle import TaskLifecycle
from compliance_intake.processors.reminders import TaskReminderJob
from compliance_intake.routers.deps import (
    get_database,
    get_lifecycle,
    get_orchestrator,
    get_reminder_job,
    get_resend_client,
)
from compliance_intake.services.mailer import SMTPMailer
from compliance_intake.services.resend import sign_payload

SECRET = "whsec_" + base64.b64encode(b"route-test-key").decode()


@pytest.fixture
def resend_client():
    client = MagicMock()
    client.get_email.return_value = {
        "subject": "Smoke alarm",
        "from": "Jane <agent@acme.com>",
        "to": ["inbox@intake.example.com"],
        "text": "Smoke alarm at 12 Smith Street, Richmond VIC 3121",
        "html": "",
    }
    return client


@pytest.fixture
def client(fake_db, orchestrator, resend_client):
    app.dependency_overrides[get_database] = lambda: fake_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_lifecycle] = lambda: TaskLifecycle(db=fake_db, window_days=60)
    app.dependency_overrides[get_resend_client] = lambda: resend_client
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealthAndStats:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_stats(self, client, fake_db):
        fake_db.add_task(1, TaskType.SMOKE_ALARM, TaskStatus.EXPIRED, date(2026, 1, 1))
        fake_db.add_task(1, TaskType.SMOKE_ALARM, TaskStatus.INCOMPLETE)
        data = client.get("/stats").json()
        assert data["total"] == 2
        assert data["by_status"]["EXPIRED"] == 1
        assert data["by_status"]["DUE_SOON"] == 0


class TestProcessEmail:
    def test_processed_returns_201(self, client, sample_body):
        response = client.post("/emails/process", json={
            "subject": "Compliance",
            "sender": "agent@acme.com",
            "text_body": sample_body,
            "message_id": "route-1",
        })
        assert response.status_code == 201
        assert response.json()["status"] == "processed"

    def test_accepts_provider_field_names(self, client, fake_db, sample_body):
        response = client.post("/emails/process", json={
            "subject": "Compliance",
            "from": "agent@acme.com",
            "textBody": sample_body,
            "htmlBody": "",
            "provider_message_id": "camel-1",
        })

        assert response.status_code == 201
        assert len(fake_db.emails) == 1
        assert fake_db.get_email_by_message_id("camel-1") is not None

    def test_missing_text_body_returns_400(self, client):
        response = client.post("/emails/process", json={"subject": "x", "sender": "agent@acme.com"})
        assert response.status_code == 400

    def test_skip_returns_200(self, client, sample_body):
        response = client.post("/emails/process", json={
            "sender": "stranger@example.com",
            "text_body": sample_body,
        })
        assert response.status_code == 200
        assert response.json()["status"] == "unauthorized"

    def test_duplicate_returns_200(self, client, sample_body):
        payload = {"sender": "agent@acme.com", "text_body": sample_body, "message_id": "dup-1"}
        client.post("/emails/process", json=payload)
        response = client.post("/emails/process", json=payload)
        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"


class TestSyncEmails:
    def test_sync_queues_backfill(self, client):
        with patch("compliance_intake.routers.emails.BackfillProcessor") as processor_cls:
            response = client.post("/emails/sync", json={"since": "2026-01-01", "until": "2026-01-08"})

        assert response.status_code == 200
        assert response.json()["status"] == "sync_started"
        processor_cls.return_value.backfill.assert_called_once()

    def test_invalid_date(self, client):
        response = client.post("/emails/sync", json={"since": "01/01/2026"})
        assert response.status_code == 400

    def test_until_before_since(self, client):
        response = client.post("/emails/sync", json={"since": "2026-01-08", "until": "2026-01-01"})
        assert response.status_code == 400


class TestTaskRoutes:
    def test_status_update(self, client, fake_db):
        fake_db.add_task(1, TaskType.SMOKE_ALARM, TaskStatus.DUE_SOON, date(2000, 1, 1))
        response = client.post("/tasks/status-update")
        assert response.status_code == 200
        assert response.json()["due_soon_to_expired"] == 1
        assert response.json()["updated"] == 1

    def test_patch_status_with_archive(self, client, fake_db):
        task = fake_db.add_task(1, TaskType.SMOKE_ALARM, TaskStatus.UNKNOWN)
        expired = fake_db.add_task(1, TaskType.SMOKE_ALARM, TaskStatus.EXPIRED, date(2026, 1, 1))

        response = client.patch(
            f"/tasks/{task.id}/status",
            json={"status": "INCOMPLETE", "archive_conflicts": True},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["task"]["status"] == "INCOMPLETE"
        assert data["previous_status"] == "UNKNOWN"
        assert data["archived"] == 1
        assert expired.status == TaskStatus.HISTORY

    def test_patch_unknown_task(self, client):
        response = client.patch("/tasks/999/status", json={"status": "COMPLETED"})
        assert response.status_code == 404

    def test_patch_invalid_status(self, client, fake_db):
        task = fake_db.add_task(1, TaskType.SMOKE_ALARM, TaskStatus.UNKNOWN)
        response = client.patch(f"/tasks/{task.id}/status", json={"status": "DONE"})
        assert response.status_code == 422


def _signed(body: dict) -> tuple[str, dict]:
    raw = json.dumps(body)
    ts = str(int(time.time()))
    signature = sign_payload(SECRET, "msg_1", ts, raw)
    headers = {
        "svix-id": "msg_1",
        "svix-timestamp": ts,
        "svix-signature": f"v1,{signature}",
        "content-type": "application/json",
    }
    return raw, headers


class TestResendWebhook:
    @pytest.fixture(autouse=True)
    def webhook_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "resend_webhook_secret", SECRET)
        monkeypatch.setattr(settings, "inbound_allowed_domain", "intake.example.com")

    def test_rejects_bad_signature(self, client):
        response = client.post(
            "/webhooks/resend/inbound",
            content=json.dumps({"type": "email.received"}),
            headers={"svix-id": "a", "svix-timestamp": "1", "svix-signature": "v1,abc"},
        )
        assert response.status_code == 401

    def test_ignores_other_events(self, client, resend_client):
        raw, headers = _signed({"type": "email.sent", "data": {"email_id": "em_1"}})
        response = client.post("/webhooks/resend/inbound", content=raw, headers=headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Event ignored"
        resend_client.get_email.assert_not_called()

    def test_ingests_received_email(self, client, fake_db):
        raw, headers = _signed({"type": "email.received", "data": {"email_id": "em_1"}})
        response = client.post("/webhooks/resend/inbound", content=raw, headers=headers)
        assert response.status_code == 201
        assert response.json()["data"]["status"] == "processed"
        assert fake_db.get_email_by_message_id("em_1") is not None

    def test_redelivery_is_duplicate(self, client):
        raw, headers = _signed({"type": "email.received", "data": {"email_id": "em_1"}})
        client.post("/webhooks/resend/inbound", content=raw, headers=headers)
        response = client.post("/webhooks/resend/inbound", content=raw, headers=headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Email already processed"

    def test_other_domain_not_handled(self, client, resend_client, fake_db):
        resend_client.get_email.return_value["to"] = ["someone@elsewhere.com"]
        raw, headers = _signed({"type": "email.received", "data": {"email_id": "em_2"}})
        response = client.post("/webhooks/resend/inbound", content=raw, headers=headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Domain not handled"
        assert fake_db.emails == {}

    def test_fetch_failure_returns_200(self, client, resend_client):
        resend_client.get_email.side_effect = ProviderFetchError("down")
        raw, headers = _signed({"type": "email.received", "data": {"email_id": "em_3"}})
        response = client.post("/webhooks/resend/inbound", content=raw, headers=headers)
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_internal_error_returns_200(self, client, orchestrator):
        raw, headers = _signed({"type": "email.received", "data": {"email_id": "em_4"}})
        with patch.object(orchestrator, "ingest", side_effect=RuntimeError("db down")):
            response = client.post("/webhooks/resend/inbound", content=raw, headers=headers)
        assert response.status_code == 200
        assert response.json()["success"] is False


class TestSendReminders:
    def test_runs_reminder_job(self, client, fake_db):
        job = TaskReminderJob(db=fake_db, mailer=SMTPMailer(host="", user="", password=""))
        app.dependency_overrides[get_reminder_job] = lambda: job

        response = client.post("/tasks/send-reminders")

        assert response.status_code == 200
        assert response.json() == {"found": 0, "sent": 0, "skipped": 0, "failed": 0}
