"""CLI script to mint an access token for a local user.

Usage: python scripts/issue_token.py EMAIL [--hours HOURS]

Handy when poking at the private endpoints with curl during local
development; the token carries the credentials of the user's role.
"""
import argparse
import pathlib
import sys
from datetime import timedelta
from typing import Optional

# Ensure `backend/` is on sys.path so `content_api` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session

from content_api.auth import create_access_token
from content_api.config import get_settings
from content_api.credentials import credentials_for_role
from content_api.database import create_db_and_tables, engine
from content_api.repositories import UserRepository


def main(email: str, hours: Optional[int] = None) -> int:
    create_db_and_tables()
    settings = get_settings()
    with Session(engine) as session:
        user = UserRepository(session).get_by_email(email)
        if user is None:
            print(f'No user registered with email {email}')
            return 1
        delta = timedelta(hours=hours) if hours else None
        token, expires = create_access_token(user.id, credentials_for_role(user.user_role), settings, delta)
    print(f'user_id: {user.id}')
    print(f'expires: {expires.isoformat()}')
    print(token)
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('email', help='Email of an existing user')
    parser.add_argument('--hours', type=int, help='Token lifetime in hours (defaults to JWT_EXPIRE_HOURS)')
    args = parser.parse_args()
    sys.exit(main(args.email, hours=args.hours))
