# make_admin.py
import sys

from bakery.database import SessionLocal
from bakery.models import Role, User


def main(argv) -> int:
    email = (argv[1] if len(argv) > 1 else "").strip().lower()
    if not email:
        print("Usage: python make_admin.py user@example.com")
        return 1
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            print("No user with that email.")
            return 2
        user.role = Role.ADMIN.value
        db.commit()
    finally:
        db.close()
    print("Promoted to admin:", email)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
