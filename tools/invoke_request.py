#!/usr/bin/env python3
"""Send a JSON request file to POST /v1/invoke (prints SSE frames as they arrive when stream=true)."""

from __future__ import annotations

import argparse
import json
import os
import sys

import httpx


def main() -> int:
    parser = argparse.ArgumentParser(description="POST a CanonicalRequest JSON file to capgate /v1/invoke")
    parser.add_argument("json_file", help="Path to JSON request body")
    parser.add_argument(
        "--url",
        default=os.getenv("CAPGATE_URL", "http://localhost:8000"),
        help="Base URL (default: CAPGATE_URL or http://localhost:8000)",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Invoke deadline in seconds (timeout_seconds)")
    args = parser.parse_args()

    with open(args.json_file, "rb") as f:
        raw = f.read()
    try:
        body = json.loads(raw)
    except json.JSONDecodeError as e:
        print(f"Invalid JSON in {args.json_file}: {e}", file=sys.stderr)
        return 1

    url = f"{args.url.rstrip('/')}/v1/invoke"
    params = {"timeout_seconds": args.timeout} if args.timeout else None
    client_timeout = (args.timeout or 300) + 30

    print(f"POST {url}", file=sys.stderr)
    try:
        with httpx.stream("POST", url, json=body, params=params, timeout=client_timeout) as resp:
            print(f"HTTP {resp.status_code}", file=sys.stderr)
            if resp.headers.get("content-type", "").startswith("text/event-stream"):
                for line in resp.iter_lines():
                    if line:
                        print(line, flush=True)
            else:
                resp.read()
                print(resp.text)
            return 0 if resp.is_success else 1
    except httpx.HTTPError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
