#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
from datetime import UTC, datetime, timedelta

import jwt


def main() -> int:
    parser = argparse.ArgumentParser(description="Mint an HS256 bearer token for local development.")
    parser.add_argument("--sub", required=True, help="Subject id of the caller.")
    parser.add_argument("--role", choices=["reporter", "rescuer", "admin"], default=None)
    parser.add_argument("--email", default=None)
    parser.add_argument("--ttl-minutes", type=int, default=60)
    args = parser.parse_args()

    secret = os.environ.get("JWT_SHARED_SECRET", "").strip()
    if not secret:
        parser.error("JWT_SHARED_SECRET must be set")

    now = datetime.now(UTC)
    claims: dict[str, object] = {
        "sub": args.sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=args.ttl_minutes)).timestamp()),
    }
    issuer = os.environ.get("JWT_ISSUER", "").strip()
    audience = os.environ.get("JWT_AUDIENCE", "").strip()
    if issuer:
        claims["iss"] = issuer
    if audience:
        claims["aud"] = audience
    if args.role:
        claims[os.environ.get("JWT_ROLE_CLAIM", "role").strip() or "role"] = args.role
    if args.email:
        claims[os.environ.get("JWT_EMAIL_CLAIM", "email").strip() or "email"] = args.email

    token = jwt.encode(claims, secret, algorithm="HS256")
    print(json.dumps({"success": True, "token": token, "claims": claims}, ensure_ascii=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
