"""
Log processor tests.
"""
from mvl_leads.logging_config import mask_contact_fields, mask_email


def test_mask_email():
    assert mask_email("jordan@example.com") == "j***@example.com"
    assert mask_email("not-an-address") == "***"


def test_contact_fields_are_masked_in_events():
    event = {"event": "email_sent", "reply_to": "sam@example.com", "submission_id": "sub_1"}

    masked = mask_contact_fields(None, "info", event)

    assert masked["reply_to"] == "s***@example.com"
    assert masked["submission_id"] == "sub_1"


def test_missing_contact_fields_are_left_alone():
    event = {"event": "email_sent", "reply_to": None}

    assert mask_contact_fields(None, "info", event) == {"event": "email_sent", "reply_to": None}
