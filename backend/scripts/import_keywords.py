"""CLI script to import lesson keywords from a CSV file into the backend DB.
Usage: python scripts/import_keywords.py LESSON_ID path/to/keywords.csv [--replace]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `thrive` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session, select
from thrive.database import engine
from thrive import models
from thrive.errors import ThriveError
from thrive.services.admin import AdminService


def main(lesson_id: str, csv_path: pathlib.Path, replace: bool = False) -> int:
    """Import `csv_path` into the KEYWORDS lesson `lesson_id`.

    The import runs as the first admin account found, so the action shows
    up in the admin audit log like an upload from the dashboard would.
    """
    if not csv_path.exists():
        print(f'CSV file not found at {csv_path}')
        return 1
    with Session(engine) as session:
        admin = session.exec(
            select(models.User).where(models.User.role == models.UserRole.ADMIN)
        ).first()
        if admin is None:
            print('No admin account exists; run scripts/create_admin.py first')
            return 1
        try:
            result = AdminService(session, admin).import_keywords(lesson_id, csv_path.read_bytes(), replace=replace)
        except ThriveError as e:
            print(f'Import failed: {e.message}')
            return 1
        print(f"Imported {result['created']} keywords into lesson {lesson_id}")
        for err in result['errors']:
            print(f"  row {err['row']}: {err['error']}")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('lesson_id')
    parser.add_argument('csv_path', type=pathlib.Path)
    parser.add_argument('--replace', action='store_true', help='Replace existing keywords instead of appending')
    args = parser.parse_args()
    sys.exit(main(args.lesson_id, args.csv_path, replace=args.replace))
