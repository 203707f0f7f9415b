"""Tests for sensitive-data masking and structured log output."""
from __future__ import annotations

import json
import logging

from pesaflow_core.constants import LoggingConfig
from pesaflow_core.logging import mask_contact, mask_sensitive_data, mask_value
from pesaflow_core.logging_config import (
    CorrelationIDFilter,
    StructuredFormatter,
    order_context,
    request_id_var,
)


class TestMaskSensitiveData:
    """Gateway payloads are masked before being logged."""

    def test_masks_credentials(self):
        payload = {"consumer_key": "abc", "consumer_secret": "xyz", "amount": 100}
        masked = mask_sensitive_data(payload)
        assert masked["consumer_key"] == LoggingConfig.MASK_PATTERN
        assert masked["consumer_secret"] == LoggingConfig.MASK_PATTERN
        assert masked["amount"] == 100

    def test_masks_tokens_in_nested_structures(self):
        payload = {"data": [{"token": "bearer-value", "expiryDate": "2026-01-01"}]}
        masked = mask_sensitive_data(payload)
        assert masked["data"][0]["token"] == LoggingConfig.MASK_PATTERN
        assert masked["data"][0]["expiryDate"] == "2026-01-01"

    def test_partially_masks_contact_details(self):
        payload = {
            "billing_address": {
                "email_address": "amina@example.com",
                "phone_number": "+256701234567",
            }
        }
        masked = mask_sensitive_data(payload)["billing_address"]
        assert masked["email_address"] == "a***@example.com"
        assert masked["phone_number"].endswith("567")
        assert "70123" not in masked["phone_number"]

    def test_input_not_modified(self):
        payload = {"token": "value"}
        mask_sensitive_data(payload)
        assert payload == {"token": "value"}

    def test_additional_fields(self):
        masked = mask_sensitive_data({"notification_id": "ipn"}, additional_fields=["notification_id"])
        assert masked["notification_id"] == LoggingConfig.MASK_PATTERN


class TestMaskHelpers:
    def test_mask_value_short(self):
        assert mask_value("short") == LoggingConfig.MASK_PATTERN

    def test_mask_value_long(self):
        assert mask_value("abcdefghijklmnop") == "abcd...mnop"

    def test_mask_contact_short(self):
        assert mask_contact("123") == LoggingConfig.MASK_PATTERN


class TestStructuredLogging:
    """JSON formatter with correlation context."""

    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            name="pesaflow.test",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Order submitted",
            args=(),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_context_ids_included(self):
        token = request_id_var.set("req_123")
        try:
            with order_context(order_id="ORDER-1", tracking_id="trk-1"):
                record = self._record()
                CorrelationIDFilter().filter(record)
        finally:
            request_id_var.reset(token)

        data = json.loads(StructuredFormatter().format(record))
        assert data["message"] == "Order submitted"
        assert data["request_id"] == "req_123"
        assert data["order_id"] == "ORDER-1"
        assert data["tracking_id"] == "trk-1"

    def test_explicit_extra_wins_over_context(self):
        with order_context(order_id="ORDER-CONTEXT"):
            record = self._record(order_id="ORDER-EXPLICIT")
            CorrelationIDFilter().filter(record)
        assert record.order_id == "ORDER-EXPLICIT"

    def test_extra_fields_passed_through(self):
        record = self._record(reported_status="COMPLETED")
        CorrelationIDFilter().filter(record)
        data = json.loads(StructuredFormatter().format(record))
        assert data["reported_status"] == "COMPLETED"

    def test_order_context_resets(self):
        with order_context(order_id="ORDER-1"):
            pass
        record = self._record()
        CorrelationIDFilter().filter(record)
        assert record.order_id is None
