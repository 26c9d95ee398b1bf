"""
Simulate a GoHighLevel contact webhook delivery.

Usage:
    python scripts/simulate_webhook.py
    python scripts/simulate_webhook.py --phone "+15125559999" --name "Jane Doe" --referral Google
    python scripts/simulate_webhook.py --contact-id abc123 --nested
    python scripts/simulate_webhook.py --signing-key secret   # adds X-Webhook-Signature
"""
import argparse
import asyncio
import hashlib
import hmac
import json
import logging

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


def build_payload(args) -> dict:
    """Flat workflow-webhook shape, or the nested customData/contact shape."""
    first, _, last = args.name.partition(" ")
    if args.nested:
        return {
            "customData": {"locationId": args.location_id},
            "contact": {
                "id": args.contact_id,
                "firstName": first,
                "lastName": last,
                "phone": args.phone,
                "email": args.email,
                "postalCode": args.zip,
            },
            "contact.jf_referral_source": args.referral,
        }
    return {
        "locationId": args.location_id,
        "contact_id": args.contact_id,
        "full_name": args.name,
        "phone": args.phone,
        "email": args.email,
        "postal_code": args.zip,
        "contact.jf_referral_source": args.referral,
        "contact.est_project_type": args.project_type,
    }


async def send(payload: dict, signing_key: str):
    body = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    if signing_key:
        digest = hmac.new(signing_key.encode(), body, hashlib.sha256).hexdigest()
        headers["X-Webhook-Signature"] = f"sha256={digest}"

    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{BASE_URL}/api/webhooks/ghl/contact", content=body, headers=headers)
        logger.info("Webhook response: %s %s", resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate a GHL contact webhook")
    parser.add_argument("--location-id", default="loc_test_lonestar")
    parser.add_argument("--contact-id", default="ghl_contact_test_001")
    parser.add_argument("--name", default="Jane Doe")
    parser.add_argument("--phone", default="+15551234567")
    parser.add_argument("--email", default="jane@example.com")
    parser.add_argument("--zip", default="78701")
    parser.add_argument("--referral", default="Google")
    parser.add_argument("--project-type", default="Garage Floor")
    parser.add_argument("--nested", action="store_true", help="Send the nested payload shape")
    parser.add_argument("--signing-key", default="")
    args = parser.parse_args()

    logger.info("Simulating GHL contact %s for location %s...", args.contact_id, args.location_id)
    await send(build_payload(args), args.signing_key)


if __name__ == "__main__":
    asyncio.run(main())
