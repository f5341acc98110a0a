import argparse
import os
import sys
import time
from pathlib import Path
from typing import Optional

"""
Generate the client secret "Sign in with Apple" expects from the auth provider.

Apple wants an ES256 JWT signed with the .p8 key from the developer portal,
valid for at most six months, so this has to be rerun before it expires.

Environment:
  APPLE_TEAM_ID, APPLE_CLIENT_ID (services id), APPLE_KEY_ID,
  APPLE_PRIVATE_KEY (path to the .p8 file, or the key itself with \\n escapes)

Run:
  uv run python scripts/generate_apple_secret.py
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import jwt  # noqa: E402
from dotenv import load_dotenv  # noqa: E402

APPLE_AUDIENCE = "https://appleid.apple.com"
SECRET_LIFETIME_SECONDS = 180 * 24 * 60 * 60


def load_private_key(value: str) -> str:
    """Accept either a path to the .p8 file or the PEM text itself"""
    if "BEGIN PRIVATE KEY" in value:
        return value.replace("\\n", "\n")
    return Path(value).expanduser().read_text()


def generate_client_secret(
    team_id: str,
    client_id: str,
    key_id: str,
    private_key: str,
    now: Optional[int] = None,
    lifetime_seconds: int = SECRET_LIFETIME_SECONDS,
) -> str:
    issued_at = int(now if now is not None else time.time())
    claims = {
        "iss": team_id,
        "iat": issued_at,
        "exp": issued_at + lifetime_seconds,
        "aud": APPLE_AUDIENCE,
        "sub": client_id,
    }
    return jwt.encode(claims, private_key, algorithm="ES256", headers={"kid": key_id})


def main() -> int:
    load_dotenv()
    p = argparse.ArgumentParser()
    p.add_argument("--team-id", default=os.getenv("APPLE_TEAM_ID", ""))
    p.add_argument("--client-id", default=os.getenv("APPLE_CLIENT_ID", ""))
    p.add_argument("--key-id", default=os.getenv("APPLE_KEY_ID", ""))
    p.add_argument("--private-key", default=os.getenv("APPLE_PRIVATE_KEY", ""), help="Path to .p8 or PEM text")
    args = p.parse_args()

    missing = [
        name for name, value in (
            ("APPLE_TEAM_ID", args.team_id),
            ("APPLE_CLIENT_ID", args.client_id),
            ("APPLE_KEY_ID", args.key_id),
            ("APPLE_PRIVATE_KEY", args.private_key),
        ) if not value
    ]
    if missing:
        print(f"Missing: {', '.join(missing)}")
        return 1

    secret = generate_client_secret(
        args.team_id, args.client_id, args.key_id, load_private_key(args.private_key)
    )
    days = SECRET_LIFETIME_SECONDS // 86400
    print(secret)
    print(f"\nValid for {days} days. Paste it into the auth provider's Apple settings.", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
