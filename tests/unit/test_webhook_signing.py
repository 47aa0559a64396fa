import hashlib
import hmac

import orjson

from services.webhook_service import build_envelope, sign_payload
from services.whatsapp_gateway import format_phone
from services import message_templates
from logger_config import mask_email, mask_phone, redact_contact_details
from datetime import datetime


def test_signature_is_hmac_sha256_of_raw_body():
    body = build_envelope("booking.created", "ws-1", {"bookingId": "b-1"})

    expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert sign_payload(body, "s3cret") == expected
    assert sign_payload(body, "other") != expected


def test_envelope_shape():
    envelope = orjson.loads(build_envelope("inventory.low", "ws-1", {"itemId": "i-1"}))

    assert envelope["event"] == "inventory.low"
    assert envelope["workspaceId"] == "ws-1"
    assert envelope["data"] == {"itemId": "i-1"}
    assert envelope["timestamp"].endswith("Z")


def test_phone_formatting_and_masking():
    assert format_phone("+91 98765-43210") == "919876543210"
    assert format_phone("n/a") is None
    assert mask_phone("+919876543210") == "***3210"


def test_confirmation_copy_mentions_location_only_when_set():
    when = datetime(2026, 10, 19, 9, 0)

    with_location = message_templates.booking_confirmation("Consultation", "Sunrise Clinic", when, "Room 4")
    without = message_templates.booking_confirmation("Consultation", "Sunrise Clinic", when)

    assert "is confirmed for Monday, October 19, 2026 at 09:00 AM" in with_location
    assert "Location: Room 4" in with_location
    assert "Location" not in without


def test_log_processor_masks_contact_details():
    event = redact_contact_details(None, "info", {
        "event": "Email sent",
        "to": "ada@example.com",
        "phone": "+15550001111",
        "booking_id": "b-1",
    })

    assert event["to"] == "a***@example.com"
    assert event["phone"] == "***1111"
    assert event["booking_id"] == "b-1"
    assert mask_email("not-an-address") == ""
