"""CLI script to create (or promote) an admin account.
Usage: python scripts/create_admin.py EMAIL PASSWORD [--name NAME]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `thrive` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from thrive.database import engine, create_db_and_tables
from thrive import models, repositories
from thrive.services.auth import hash_password
from thrive.utils.passwords import password_problems


def main(email: str, password: str, name: str = "Admin") -> int:
    """Create a verified ADMIN user with a profile, or promote an existing user.

    Returns a process exit code so the script can be used from shell automation.
    """
    problems = password_problems(password)
    if problems:
        print("Password must contain " + ", ".join(problems))
        return 1
    create_db_and_tables()
    with Session(engine) as session:
        users = repositories.UserRepository(session)
        profiles = repositories.ProfileRepository(session)
        user = users.get_by_email(email)
        if user:
            user.role = models.UserRole.ADMIN
            user.is_active = True
            user.is_verified = True
            user.password_hash = hash_password(password)
            users.save(user)
            print(f"Promoted existing user {user.email} to ADMIN")
        else:
            user = users.create(models.User(
                email=email.strip().lower(),
                password_hash=hash_password(password),
                role=models.UserRole.ADMIN,
                is_verified=True,
            ))
            print(f"Created admin {user.email} ({user.id})")
        if profiles.get_by_user(user.id) is None:
            profiles.create(models.Profile(user_id=user.id, name=name))
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('email')
    parser.add_argument('password')
    parser.add_argument('--name', default='Admin', help='Display name for the admin profile')
    args = parser.parse_args()
    sys.exit(main(args.email, args.password, name=args.name))
