"""Unit tests for IngestionOrchestrator."""

from unittest.mock import patch

import pytest

from compliance_intake.core.errors import InputMissingError
from compliance_intake.core.models import (
    InboundMessage,
    IngestionStatus,
    SenderType,
    TaskStatus,
)
from compliance_intake.handlers.upsert import PropertyTaskUpserter
from compliance_intake.processors.ingestion import IngestionOrchestrator
from compliance_intake.routers.deps import get_orchestrator
from compliance_intake.services.geocoder import AddressNormalizer

TWO_ADDRESSES = """Smoke alarm service needed at:
12 Smith Street, Richmond VIC 3121
5 George Road, Parramatta NSW 2150
"""


class TestIngest:
    def test_processes_message(self, fake_db, orchestrator, sample_message):
        result = orchestrator.ingest(sample_message)

        assert result.status == IngestionStatus.PROCESSED
        assert result.created
        assert result.agency_name == "Acme Realty"
        assert result.sender_type == SenderType.USER
        assert len(result.per_address) == 1

        address_result = result.per_address[0]
        assert address_result.address == "12 Smith Street, Richmond VIC 3121"
        assert len(address_result.task_ids) == 2
        assert fake_db.contacts[address_result.contact_id].phone == "0434643145"
        assert all(t.status == TaskStatus.INCOMPLETE for t in fake_db.active_tasks())

    def test_missing_text_body(self, orchestrator):
        with pytest.raises(InputMissingError):
            orchestrator.ingest(InboundMessage(subject="x", sender="agent@acme.com"))

    def test_no_address(self, fake_db, orchestrator):
        result = orchestrator.ingest(InboundMessage(
            subject="Hello", sender="agent@acme.com", text_body="smoke alarm please"
        ))
        assert result.status == IngestionStatus.NO_ADDRESS
        assert not result.created
        assert fake_db.tasks == {}
        assert fake_db.emails == {}

    def test_unauthorized_sender(self, fake_db, orchestrator, sample_body):
        result = orchestrator.ingest(InboundMessage(
            subject="Hi", sender="stranger@example.com", text_body=sample_body
        ))
        assert result.status == IngestionStatus.UNAUTHORIZED
        assert result.sender_type == SenderType.UNAUTHORIZED
        assert fake_db.properties == {}

    def test_whitelisted_agency_without_admin(self, fake_db, orchestrator, sample_body):
        result = orchestrator.ingest(InboundMessage(
            subject="Hi", sender="ops@gamma.com", text_body=sample_body
        ))
        assert result.status == IngestionStatus.NO_ACTING_USER
        assert fake_db.properties == {}

    def test_same_message_id_twice(self, fake_db, orchestrator, sample_message):
        first = orchestrator.ingest(sample_message)
        second = orchestrator.ingest(sample_message)

        assert first.status == IngestionStatus.PROCESSED
        assert second.status == IngestionStatus.DUPLICATE
        assert len(fake_db.active_tasks()) == 2
        assert len(fake_db.emails) == 1

    def test_two_addresses_share_one_email(self, fake_db, orchestrator):
        result = orchestrator.ingest(InboundMessage(
            subject="Smoke alarms",
            sender="agent@acme.com",
            text_body=TWO_ADDRESSES,
            provider_message_id="multi-1",
        ))

        assert [r.address for r in result.per_address] == [
            "12 Smith Street, Richmond VIC 3121",
            "5 George Road, Parramatta NSW 2150",
        ]
        assert len(fake_db.properties) == 2
        assert len(fake_db.emails) == 1
        email_ids = {r.email_id for r in result.per_address}
        assert len(email_ids) == 1
        email_id = email_ids.pop()
        for r in result.per_address:
            assert (email_id, r.property_id) in fake_db.email_properties
            assert all(fake_db.tasks[t].email_id == email_id for t in r.task_ids)

    def test_failure_on_one_address_does_not_stop_others(self, fake_db, orchestrator):
        original = PropertyTaskUpserter.upsert_address
        calls = []

        def flaky(self, address, *args, **kwargs):
            calls.append(address)
            if address.startswith("12 Smith"):
                raise RuntimeError("database hiccup")
            return original(self, address, *args, **kwargs)

        with patch.object(PropertyTaskUpserter, "upsert_address", flaky):
            result = orchestrator.ingest(InboundMessage(
                subject="Smoke alarms",
                sender="agent@acme.com",
                text_body=TWO_ADDRESSES,
                provider_message_id="multi-2",
            ))

        assert len(calls) == 2
        assert result.per_address[0].error == "database hiccup"
        assert result.per_address[1].error is None
        assert result.per_address[1].property_id is not None
        assert "address_failed" in fake_db.log_actions()

    def test_no_task_keywords_still_records_email(self, fake_db, orchestrator):
        result = orchestrator.ingest(InboundMessage(
            subject="FYI",
            sender="agent@acme.com",
            text_body="New management at 12 Smith Street, Richmond VIC 3121",
            provider_message_id="fyi-1",
        ))
        assert result.status == IngestionStatus.PROCESSED
        assert result.per_address[0].task_ids == []
        assert len(fake_db.emails) == 1

    def test_concurrent_delivery_reports_duplicate(self, fake_db, orchestrator, sample_message):
        # Simulate another delivery winning between the duplicate check and the insert
        with patch.object(orchestrator.dedup, "is_duplicate_message", return_value=False):
            orchestrator.ingest(sample_message)
            result = orchestrator.ingest(sample_message)

        assert result.status == IngestionStatus.DUPLICATE
        assert len(fake_db.active_tasks()) == 2

    def test_result_to_dict(self, orchestrator, sample_message):
        data = orchestrator.ingest(sample_message).to_dict()
        assert data["status"] == "processed"
        assert data["agency"] == "Acme Realty"
        assert data["sender_type"] == "user"
        assert "warning" not in data["per_address"][0]


class TestClose:
    def test_request_dependency_closes_geocoding_client(self, fake_db):
        dependency = get_orchestrator(db=fake_db)
        orchestrator = next(dependency)
        http_client = orchestrator.upserter.normalizer._client
        assert not http_client.is_closed

        with pytest.raises(StopIteration):
            next(dependency)

        assert http_client.is_closed

    def test_injected_normalizer_is_left_open(self, fake_db):
        normalizer = AddressNormalizer(enabled=False)
        orchestrator = IngestionOrchestrator(db=fake_db, normalizer=normalizer)

        orchestrator.close()

        assert not normalizer._client.is_closed
        normalizer.close()
