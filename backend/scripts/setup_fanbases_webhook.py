from dotenv import load_dotenv
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

load_dotenv(".env")

import argparse
import json

from app.core.settings import Settings
from app.services.fanbases import WEBHOOK_EVENT_TYPES, FanbasesClient, FanbasesError


def main() -> int:
    parser = argparse.ArgumentParser(description="Register the Fanbases webhook subscription for this deployment.")
    parser.add_argument("webhook_url", help="Public URL of POST /api/fanbases/webhook")
    parser.add_argument("--list", action="store_true", help="Only print existing subscriptions")
    args = parser.parse_args()

    settings = Settings()
    if not settings.fanbases_api_key:
        print("FANBASES_API_KEY is not configured", file=sys.stderr)
        return 2

    client = FanbasesClient(
        api_key=settings.fanbases_api_key,
        base_url=settings.fanbases_api_url,
        timeout_s=settings.fanbases_timeout_s,
    )
    try:
        existing = client.list_webhook_subscriptions()
        if args.list:
            print(json.dumps(existing, indent=2))
            return 0
        for sub in existing:
            if str(sub.get("webhook_url") or "").rstrip("/") == args.webhook_url.rstrip("/"):
                print(f"Webhook already registered: {sub.get('id')}")
                return 0
        created = client.create_webhook_subscription(args.webhook_url, WEBHOOK_EVENT_TYPES)
    except FanbasesError as exc:
        print(f"Fanbases error: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(created, indent=2))
    print("Store the returned secret as FANBASES_WEBHOOK_SECRET.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
