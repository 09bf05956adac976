#!/usr/bin/env python3
"""Deployment smoke test for the Salesforce mirror connector.

Checks liveness, readiness, the connector config route and, when a webhook
secret is given, that a signed empty batch is accepted by the CDC webhook.

Usage:
    python scripts/verify_deployment.py \
        --backend-url https://connector.example.com \
        --webhook-secret "$SALESFORCE_WEBHOOK_SECRET"

Exit code 0 if all checks pass, 1 if any fail.
"""

import argparse
import json
import os
import sys
import time
from typing import Tuple

import httpx

# Ensure project root is on sys.path so we can import src.sfmirror
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.sfmirror.core.security import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_signature,
)

TIMEOUT = 15.0


def _get(url: str) -> httpx.Response:
    return httpx.get(url, timeout=TIMEOUT, follow_redirects=True)


def check_liveness(url: str) -> Tuple[bool, str]:
    """Verify /health returns status ok."""
    try:
        response = _get(url.rstrip("/") + "/health")
        if response.status_code != 200:
            return False, f"HTTP {response.status_code}"
        data = response.json()
        if data.get("status") == "ok":
            return True, f"service={data.get('service')}"
        return False, f"Status: {data.get('status')}"
    except ValueError:
        return False, "Response is not valid JSON"
    except httpx.HTTPError as exc:
        return False, f"HTTP error: {exc}"


def check_readiness(url: str) -> Tuple[bool, str]:
    """Verify /health/ready reports database and Redis healthy."""
    try:
        response = _get(url.rstrip("/") + "/health/ready")
        data = response.json()
    except ValueError:
        return False, "Response is not valid JSON"
    except httpx.HTTPError as exc:
        return False, f"HTTP error: {exc}"

    if response.status_code == 200 and data.get("status") == "ready":
        return True, "All checks healthy"
    checks = data.get("checks", {})
    failed = [name for name, value in checks.items() if value == "error"]
    if failed:
        return False, f"Degraded: {', '.join(failed)}"
    return False, f"HTTP {response.status_code}"


def check_config(url: str) -> Tuple[bool, str]:
    """Verify the config route lists at least one enabled object."""
    try:
        response = _get(url.rstrip("/") + "/webhooks/salesforce/config")
        if response.status_code != 200:
            return False, f"HTTP {response.status_code}"
        objects = response.json()
    except ValueError:
        return False, "Response is not valid JSON"
    except httpx.HTTPError as exc:
        return False, f"HTTP error: {exc}"

    if not objects:
        return False, "No enabled objects"
    return True, ", ".join(obj["apiName"] for obj in objects)


def check_signed_webhook(url: str, secret: str) -> Tuple[bool, str]:
    """POST a signed empty batch; the webhook should answer processed=0."""
    body = json.dumps({"events": []})
    timestamp = str(int(time.time() * 1000))
    headers = {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: compute_signature(body, timestamp, secret),
        TIMESTAMP_HEADER: timestamp,
    }
    try:
        response = httpx.post(
            url.rstrip("/") + "/webhooks/salesforce/cdc",
            content=body,
            headers=headers,
            timeout=TIMEOUT,
        )
    except httpx.HTTPError as exc:
        return False, f"HTTP error: {exc}"

    if response.status_code == 200 and response.json().get("processed") == 0:
        return True, "Signature accepted"
    return False, f"HTTP {response.status_code}: {response.text[:120]}"


def print_results(results: list) -> None:
    """Print a formatted table of check results."""
    header = f"{'CHECK':<25} {'STATUS':<10} {'DETAIL'}"
    separator = "-" * 70
    print()
    print(separator)
    print(header)
    print(separator)
    for name, passed, detail in results:
        status = "PASS" if passed else "FAIL"
        print(f"{name:<25} {status:<10} {detail}")
    print(separator)
    print()


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify a connector deployment")
    parser.add_argument("--backend-url", required=True, help="Base URL of the connector")
    parser.add_argument(
        "--webhook-secret",
        default="",
        help="Shared webhook secret; enables the signed webhook check",
    )
    args = parser.parse_args()

    results = []
    results.append(("Liveness", *check_liveness(args.backend_url)))
    results.append(("Readiness", *check_readiness(args.backend_url)))
    results.append(("Connector config", *check_config(args.backend_url)))
    if args.webhook_secret:
        results.append(("Signed webhook", *check_signed_webhook(args.backend_url, args.webhook_secret)))

    print_results(results)

    all_passed = all(passed for _, passed, _ in results)
    print("All checks passed." if all_passed else "Some checks FAILED.")
    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
