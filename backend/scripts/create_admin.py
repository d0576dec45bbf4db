"""CLI script to create an admin account or promote an existing user.
Usage: python scripts/create_admin.py EMAIL [--name NAME] [--password PASSWORD]
"""
import sys
import argparse
import getpass
import pathlib
from typing import Optional
# Ensure `backend/` is on sys.path so `app` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from app.database import engine, create_db_and_tables
from app import models, repositories, services
from app.errors import ApiError, NotFoundError


def main(email: str, name: Optional[str] = None, password: Optional[str] = None) -> int:
    """Promote `email` to admin, creating the account first if needed.

    A password is only required when the account does not exist yet.
    Returns a process exit code.
    """
    create_db_and_tables()
    with Session(engine) as session:
        repo = repositories.UserRepository(session)
        try:
            user = services.UserService(session).get_user_by_email(email)
        except NotFoundError:
            user = None
        if user is None:
            if not password:
                password = getpass.getpass('Password for new admin: ')
            try:
                user = services.AuthService(session).create_user(name or email.split('@')[0], email, password)
            except ApiError as e:
                print(f'Could not create {email}: {e.message}')
                return 1
            print(f'Created user {user.email}')
        if user.role == models.UserRole.ADMIN:
            print(f'{user.email} is already an admin')
            return 0
        repo.update(user, {'role': models.UserRole.ADMIN})
        print(f'Promoted {user.email} to admin')
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('email', help='Email of the account to create or promote')
    parser.add_argument('--name', help='Display name when the account is created')
    parser.add_argument('--password', help='Password when the account is created (prompted if omitted)')
    args = parser.parse_args()
    sys.exit(main(args.email, name=args.name, password=args.password))
