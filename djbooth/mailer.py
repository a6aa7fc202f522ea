import os
import logging
import requests
from flask import render_template
from .errors import ApiError, BadRequest, UpstreamError
from .utils import clean_text


logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT = 15
DEFAULT_LEADS_FROM = "DJ Booth Leads <leads@example.com>"
DEFAULT_LEADS_TO = "bookings@example.com"
REQUIRED_FIELDS = ["firstName", "lastName", "email", "message"]
OPTIONAL_FIELDS = ["venue", "phone", "date", "subject", "eventType", "package", "startTime", "endTime"]
# wedding packages already say what the event is
PACKAGES_WITHOUT_EVENT_TYPE = {"Wedding Full", "Wedding Reception Only"}


def mask_key(key):
    if not key:
        return "NOT SET"
    if len(key) <= 14:
        return "***"
    return f"{key[:10]}...{key[-4:]}"


def parse_lead(body):
    """Contact form fields; ``event-type`` is accepted as an alias of ``eventType``."""
    lead = {}
    for field in REQUIRED_FIELDS + OPTIONAL_FIELDS:
        lead[field] = clean_text(body.get(field))
    if not lead["eventType"]:
        lead["eventType"] = clean_text(body.get("event-type"))

    missing = [field for field in REQUIRED_FIELDS if not lead[field]]
    if missing:
        raise BadRequest(f"{', '.join(missing)} required")
    return lead


def render_lead_email(lead):
    show_event_type = bool(lead["eventType"]) and lead["package"] not in PACKAGES_WITHOUT_EVENT_TYPE
    return render_template("lead_email.html", lead=lead, show_event_type=show_event_type)


def send_lead_email(lead):
    """
    Email a contact-form lead to the business owner through Resend.

    ``RESEND=false`` skips the send and reports a simulated success.

    Raises:
        ApiError: the email key is not configured (500)
        UpstreamError: Resend rejected the message
    """
    api_key = os.getenv("RESEND_API_KEY")
    logger.info(f"Resend API key: {mask_key(api_key)}")
    logger.info(f"Lead from {lead['firstName']} {lead['lastName']} <{lead['email']}>, "
                f"event type {lead['eventType']}, message length {len(lead['message'])}")

    if os.getenv("RESEND") == "false":
        logger.warning("RESEND is false, simulating email send")
        return {"success": True, "message": "Email sending simulated."}

    if not api_key:
        logger.error("RESEND_API_KEY is not set")
        raise ApiError("Email service is not configured. Please check server logs.", 500)

    payload = {
        "from": os.getenv("LEADS_FROM", DEFAULT_LEADS_FROM),
        "to": [os.getenv("LEADS_TO", DEFAULT_LEADS_TO)],
        "subject": f"New Lead: {lead['firstName']} {lead['lastName']}",
        "html": render_lead_email(lead),
        "reply_to": lead["email"],
    }
    logger.info(f"Sending lead email to {payload['to']} with subject '{payload['subject']}'")

    response = requests.post(RESEND_API_URL,
                             json=payload,
                             headers={"Authorization": f"Bearer {api_key}"},
                             timeout=REQUEST_TIMEOUT)
    data = response.json() if response.content else {}

    if not response.ok:
        logger.error(f"Resend rejected the email ({response.status_code}): {data}")
        raise UpstreamError(data.get("message") or "Failed to send the message", errorDetails=data)

    logger.info(f"Lead email sent: {data.get('id')}")
    return {"success": True, "data": data}
