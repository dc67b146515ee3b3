"""
Print a signed session token for local testing against a JWT-configured server.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from checkin.auth import JwtSessionProvider, SessionUser
from checkin.config import get_settings

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Issue a check-in session token")
    parser.add_argument("--email", required=True, help="Session user email")
    parser.add_argument("--user-id", default=None, help="Defaults to the email")
    parser.add_argument("--name", default=None, help="Display name")
    parser.add_argument(
        "--hours",
        type=float,
        default=12,
        help="Token lifetime in hours",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    if not settings.session_secret:
        logger.error("SESSION_SECRET is not set; nothing to sign with")
        return 1

    provider = JwtSessionProvider(
        secret=settings.session_secret, algorithm=settings.session_algorithm
    )
    user = SessionUser(
        user_id=args.user_id or args.email, email=args.email, name=args.name
    )
    print(provider.issue(user, expires_in=timedelta(hours=args.hours)))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
