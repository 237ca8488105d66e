"""
Open house sign-in and feedback route tests.
"""
import json

import pytest

from conftest import EMAIL_SETTINGS, OPEN_HOUSE_WEBHOOK_URL

SIGN_IN = {
    "name": "Casey Morgan",
    "email": "casey@brokerage.example",
    "phone": "713-555-0110",
    "brokerage": "Montrose Realty",
    "visitedBefore": "no",
    "hasActiveBuyer": "maybe",
}

BROKER_EVENT = {"eventId": "2026-11-07", "eventType": "broker", "sourceUrl": "https://mtvernonlofts.com/open-house"}
PUBLIC_EVENT = {"eventId": "2026-11-08", "eventType": "public"}

FEEDBACK = {
    "email": "casey@brokerage.example",
    "pricingComparison": "about_right",
    "likelihoodToBring": 4,
    "standoutUnits": ["2A", "3C"],
}


async def test_sign_in_delivers_to_open_house_webhook(make_client, webhook):
    client, services = await make_client(OPEN_HOUSE_WEBHOOK_URL=OPEN_HOUSE_WEBHOOK_URL)

    response = await client.post(
        "/api/open-house/sign-in", json={"formData": SIGN_IN, "eventMeta": BROKER_EVENT}
    )

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["webhookDelivered"] is True
    assert body["submissionId"].startswith("signin_")

    request = webhook.requests[0]
    assert str(request.url) == OPEN_HOUSE_WEBHOOK_URL
    assert request.headers["X-MVL-Webhook"] == "open-house-signin"
    payload = json.loads(request.content)
    assert payload["formType"] == "broker_open_house_signin"
    assert payload["openHouseData"] == SIGN_IN
    assert payload["eventMeta"] == BROKER_EVENT
    assert payload["source"] == "Mount Vernon Lofts Open House Sign-In"
    assert payload["contact"]["message"] == (
        "[Open House Sign-In] Brokerage: Montrose Realty, Visited Before: no, Active Buyer: maybe"
    )

    row = await services.backup_store.get_submission(body["submissionId"])
    assert row.webhook_status == "delivered"
    assert row.submission_metadata["eventId"] == "2026-11-07"


async def test_sign_in_falls_back_to_contact_webhook(make_client, webhook):
    client, _ = await make_client()

    await client.post("/api/open-house/sign-in", json={"formData": SIGN_IN, "eventMeta": PUBLIC_EVENT})

    assert str(webhook.requests[0].url) == "https://hooks.example.test/contact"
    assert json.loads(webhook.requests[0].content)["formType"] == "public_open_house_signin"


@pytest.mark.parametrize("changes,error", [
    ({"phone": ""}, "Name, email, and phone are required"),
    ({"email": "not-an-email"}, "Invalid email format"),
    ({"brokerage": ""}, "Brokerage is required for broker events"),
    ({"visitedBefore": "sometimes"}, "visitedBefore must be yes or no"),
    ({"hasActiveBuyer": "perhaps"}, "hasActiveBuyer must be yes, no, or maybe"),
])
async def test_sign_in_validation(client, changes, error):
    response = await client.post(
        "/api/open-house/sign-in", json={"formData": {**SIGN_IN, **changes}, "eventMeta": BROKER_EVENT}
    )

    assert response.status_code == 400
    assert response.json() == {"error": error}


async def test_public_sign_in_does_not_need_brokerage(client):
    response = await client.post(
        "/api/open-house/sign-in",
        json={"formData": {**SIGN_IN, "brokerage": ""}, "eventMeta": PUBLIC_EVENT},
    )

    assert response.status_code == 200


async def test_unknown_event_type_is_rejected(client):
    response = await client.post(
        "/api/open-house/sign-in", json={"formData": SIGN_IN, "eventMeta": {"eventType": "vip"}}
    )

    assert response.status_code == 400


async def test_sign_in_failure_uses_three_attempts_and_emails_lead(make_client, webhook, mailer):
    webhook.fail_with(502)
    client, services = await make_client(**EMAIL_SETTINGS)

    response = await client.post(
        "/api/open-house/sign-in", json={"formData": SIGN_IN, "eventMeta": BROKER_EVENT}
    )

    body = response.json()
    assert body["webhookDelivered"] is False
    assert len(webhook.requests) == 3

    row = await services.backup_store.get_submission(body["submissionId"])
    assert row.webhook_status == "failed"
    assert row.error == "HTTP 502: Bad Gateway"

    assert mailer.subjects() == ["✨ New MVL Inquiry - Casey Morgan"]


async def test_feedback_records_summary_message(make_client, webhook):
    client, services = await make_client()

    response = await client.post(
        "/api/open-house/feedback",
        json={"formData": FEEDBACK, "eventMeta": {**BROKER_EVENT, "formType": "broker_open_house_feedback"}},
    )

    body = response.json()
    assert response.status_code == 200
    assert body["submissionId"].startswith("feedback_")

    payload = json.loads(webhook.requests[0].content)
    assert webhook.requests[0].headers["X-MVL-Webhook"] == "open-house-feedback"
    assert payload["formType"] == "broker_open_house_feedback"
    assert payload["openHouseFeedback"] == FEEDBACK
    assert payload["contact"] == {
        "name": "casey@brokerage.example",
        "email": "casey@brokerage.example",
        "phone": "",
        "message": "[Broker Open House Feedback] Pricing: about_right, Likelihood: 4/5, Units: 2A, 3C",
    }


async def test_feedback_without_units_says_none(make_client, webhook):
    client, _ = await make_client()
    form = {key: value for key, value in FEEDBACK.items() if key != "standoutUnits"}

    await client.post("/api/open-house/feedback", json={"formData": form, "eventMeta": PUBLIC_EVENT})

    payload = json.loads(webhook.requests[0].content)
    assert payload["formType"] == "public_open_house_feedback"
    assert payload["contact"]["message"].startswith("[Public Open House Feedback]")
    assert payload["contact"]["message"].endswith("Units: None")


@pytest.mark.parametrize("changes,error", [
    ({"email": ""}, "Email is required"),
    ({"email": "casey"}, "Invalid email format"),
    ({"pricingComparison": "cheap"}, "pricingComparison must be below_market, about_right, or above_market"),
    ({"likelihoodToBring": 6}, "likelihoodToBring must be between 1 and 5"),
    ({"likelihoodToBring": "4"}, "likelihoodToBring must be between 1 and 5"),
])
async def test_feedback_validation(client, changes, error):
    response = await client.post(
        "/api/open-house/feedback", json={"formData": {**FEEDBACK, **changes}, "eventMeta": PUBLIC_EVENT}
    )

    assert response.status_code == 400
    assert response.json() == {"error": error}


async def test_feedback_spam_is_discarded(make_client, webhook):
    client, _ = await make_client()

    response = await client.post(
        "/api/open-house/feedback",
        json={"formData": FEEDBACK, "eventMeta": PUBLIC_EVENT, "_spamCheck": {"website": "x"}},
    )

    assert response.status_code == 200
    assert response.json()["webhookDelivered"] is False
    assert webhook.requests == []
