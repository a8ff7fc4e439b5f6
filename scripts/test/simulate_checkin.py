# scripts/test/simulate_checkin.py
"""
Drive a full check-in / check-out against a running backend.
Issues an ARRIVAL credential, checks in, uploads departure photos, checks out,
then replays the arrival to show it is refused.

Usage: python scripts/test/simulate_checkin.py --reservation R1 --photos 2
"""

import argparse
import json
import uuid
import requests

BACKEND_URL = "http://localhost:8080/api/v1"


def show(label, resp):
    print(f"\n▶ {label} → HTTP {resp.status_code}")
    try:
        print(json.dumps(resp.json(), indent=2, default=str))
    except ValueError:
        print(resp.text)
    return resp


def main():
    parser = argparse.ArgumentParser(description="Simulate a guest check-in / check-out")
    parser.add_argument("--url", default=BACKEND_URL)
    parser.add_argument("--reservation", default=f"R-{uuid.uuid4().hex[:8]}")
    parser.add_argument("--subject", default="guest-1")
    parser.add_argument("--photos", type=int, default=2, help="departure photos to upload")
    parser.add_argument("--api-key", default=None)
    args = parser.parse_args()

    s = requests.Session()
    if args.api_key:
        s.headers["X-API-Key"] = args.api_key

    issued = show("Issue ARRIVAL credential", s.post(f"{args.url}/credentials", json={
        "reservation_id": args.reservation, "subject_id": args.subject, "phase": "ARRIVAL",
    }, timeout=10))
    if issued.status_code != 201:
        return
    wire = issued.json()["wire"]

    show("Validate (no redemption)", s.post(f"{args.url}/credentials/validate", json={"wire": wire}, timeout=10))
    show("Check in", s.post(f"{args.url}/occupancy/arrive",
                            json={"reservation_id": args.reservation, "credential": wire}, timeout=10))
    show("Check in again (same QR)", s.post(f"{args.url}/occupancy/arrive",
                                            json={"reservation_id": args.reservation, "credential": wire},
                                            timeout=10))

    items = [
        {"reference": f"uploads/{args.reservation}/checkout_{i}.jpg", "content_type": "image/jpeg",
         "size_bytes": 250_000, "captured_by": args.subject}
        for i in range(args.photos)
    ]
    if items:
        show("Upload departure photos", s.post(f"{args.url}/evidence", json={
            "reservation_id": args.reservation, "phase": "DEPARTURE", "items": items,
        }, timeout=10))

    show("Check out", s.post(f"{args.url}/occupancy/depart",
                             json={"reservation_id": args.reservation}, timeout=10))
    show("Status", s.get(f"{args.url}/occupancy/{args.reservation}/status", timeout=10))


if __name__ == "__main__":
    main()
