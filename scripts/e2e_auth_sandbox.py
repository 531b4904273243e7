#!/usr/bin/env python3
"""IssueLinks auth E2E sandbox runner.

This is a fast, hermetic integration test that validates:
- /health and the webhook receiver stay reachable when auth is enabled
- the admin API returns 401 without (or with wrong) Authorization
- valid Authorization succeeds

It is executed in a separate process so the app reads auth configuration
from environment variables before import-time initialization.

Run:
  python3 scripts/e2e_auth_sandbox.py
"""

from __future__ import annotations

import base64
import os
import sys
import tempfile
from pathlib import Path

# Ensure repository root is importable
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def _basic(user: str, password: str) -> str:
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def main() -> int:
    tmpdir = tempfile.mkdtemp(prefix="issuelinks-e2e-auth-")

    # Force auth on, keep the database out of the working tree
    os.environ["AUTH_ENABLED"] = "true"
    os.environ["AUTH_USERNAME"] = "e2e"
    os.environ["AUTH_PASSWORD"] = "secret"
    os.environ["DATABASE_URL"] = f"sqlite:///{tmpdir}/e2e.db"

    from fastapi.testclient import TestClient

    from app.main import app

    with TestClient(app) as client:
        # /health is allowlisted
        r = client.get("/health")
        if r.status_code != 200:
            print(f"[e2e-auth] /health expected 200, got {r.status_code}: {r.text}")
            return 2

        # Trackers cannot send Basic auth; an unknown delivery is rejected by the router instead
        rw = client.post("/webhook", content=b"{}")
        if rw.status_code != 400:
            print(f"[e2e-auth] /webhook expected 400, got {rw.status_code}: {rw.text}")
            return 2

        # API should be protected
        r1 = client.get("/api/imports/logs")
        if r1.status_code != 401:
            print(f"[e2e-auth] /api/imports/logs expected 401, got {r1.status_code}: {r1.text}")
            return 2

        # With valid auth, should succeed (200 + JSON)
        r2 = client.get("/api/imports/logs", headers={"Authorization": _basic("e2e", "secret")})
        if r2.status_code != 200 or r2.json() != []:
            print(f"[e2e-auth] authed /api/imports/logs expected 200, got {r2.status_code}: {r2.text}")
            return 2

        # Wrong password should still be 401
        r3 = client.get("/api/imports/logs", headers={"Authorization": _basic("e2e", "wrong")})
        if r3.status_code != 401:
            print(f"[e2e-auth] wrong password expected 401, got {r3.status_code}: {r3.text}")
            return 2

    print("[e2e-auth] OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
