"""
Payload builder tests.
"""
from mvl_leads.services.lead_payload import (
    build_document_contact,
    build_lead_metadata,
    calculate_conversion_value,
    default_device_info,
    document_message,
)

IPHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148"
ANDROID_TABLET = "Mozilla/5.0 (Linux; Android 13; SM-X700) AppleWebKit/537.36"


def test_conversion_value_scales_with_lead_score():
    assert calculate_conversion_value(50) == 5000
    assert calculate_conversion_value(85) == 8500


def test_device_info_from_headers():
    phone = default_device_info({"user-agent": IPHONE, "accept-language": "es-MX,es;q=0.9"})
    tablet = default_device_info({"user-agent": ANDROID_TABLET}, timezone="America/Chicago")

    assert phone["isMobile"] is True
    assert phone["isTablet"] is False
    assert phone["language"] == "es-MX"
    assert tablet["isMobile"] is True
    assert tablet["isTablet"] is True
    assert tablet["language"] == "en-US"
    assert tablet["timezone"] == "America/Chicago"


def test_metadata_defaults_fill_missing_fields():
    metadata = build_lead_metadata(
        None,
        "submission_1",
        {"origin": "https://mtvernonlofts.com", "referer": "https://mtvernonlofts.com/floor-plans"},
        {"anonymizedIp": "8.8.8.XXX", "timezone": "UTC"},
        focus_order=["name", "email"],
    )

    assert metadata["modalId"] == "contact_modal_default"
    assert metadata["modalTriggerSource"] == "unknown"
    assert metadata["siteUrl"] == "https://mtvernonlofts.com"
    assert metadata["sessionData"]["pageUrl"] == "https://mtvernonlofts.com/floor-plans"
    assert metadata["interactionMetrics"]["fieldFocusOrder"] == ["name", "email"]
    assert metadata["leadScore"] == 50
    assert metadata["conversionValue"] == 5000


def test_metadata_keeps_client_values():
    client = {"modalId": "hero", "leadScore": 90, "deviceInfo": {"timezone": "America/Chicago"}}

    metadata = build_lead_metadata(client, "s", {}, {}, focus_order=[], conversion_value=10000)

    assert metadata["modalId"] == "hero"
    assert metadata["deviceInfo"] == {"timezone": "America/Chicago"}
    assert metadata["siteUrl"] == "unknown"
    assert metadata["conversionValue"] == 10000


def test_document_message_summarizes_request():
    form = {"brochureInterest": "pricing", "timeframe": "3_months"}

    assert document_message("brochure", form) == "Brochure Request: pricing (Timeline: 3_months)"
    assert document_message("brochure", {**form, "message": "Call me"}) == "Call me"


def test_floor_plans_interest_becomes_preferred_floor():
    contact = build_document_contact("floor_plans", {"name": "Sam", "floorPlansInterest": "all_plans"})

    assert contact["preferredFloor"] == "all_plans"
    assert contact["isBroker"] == ""
    assert contact["message"] == "Floor Plans Request: all_plans"


def test_explicit_zero_lead_score_is_kept():
    metadata = build_lead_metadata({"leadScore": 0}, "s", {}, {}, focus_order=[])

    assert metadata["leadScore"] == 0
    assert metadata["conversionValue"] == 0
