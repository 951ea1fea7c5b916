import argparse

from cast_office.auth import ADMIN_ROLES, ROLE_STORE_ADMIN, hash_password
from cast_office.config import MIN_PASSWORD_LENGTH
from cast_office.database import open_db


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or update an admin account.")
    parser.add_argument("--username", required=True, help="Login name")
    parser.add_argument("--password", required=True, help=f"Password ({MIN_PASSWORD_LENGTH}+ characters)")
    parser.add_argument("--role", choices=ADMIN_ROLES, default=ROLE_STORE_ADMIN)
    parser.add_argument("--store-id", type=int, default=None, help="Store of a store_admin")
    parser.add_argument(
        "--update-existing",
        action="store_true",
        help="Update existing account when same username already exists",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    username = args.username.strip()
    if not username:
        raise SystemExit("Username is required.")
    if len(args.password) < MIN_PASSWORD_LENGTH:
        raise SystemExit(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if args.role == ROLE_STORE_ADMIN and args.store_id is None:
        raise SystemExit("--store-id is required for store_admin.")

    db = open_db()
    try:
        row = db.query("admin_users").filter(("username", "=", username)).first()
        if row is None:
            db.insert("admin_users", {
                "username": username,
                "password_hash": hash_password(args.password),
                "role": args.role,
                "store_id": args.store_id,
                "is_active": True,
            })
            print(f"[CREATED] username={username} role={args.role} store_id={args.store_id}")
            return

        if not args.update_existing:
            raise SystemExit("Account already exists. Use --update-existing to modify it.")

        row.password_hash = hash_password(args.password)
        row.role = args.role
        row.store_id = args.store_id
        row.is_active = True
        db.update(row)
        print(f"[UPDATED] username={username} role={args.role} store_id={args.store_id}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
