"""Reset an admin password from the command line (RESET_USERNAME / RESET_PASSWORD)."""

import os

from dotenv import load_dotenv
from werkzeug.security import generate_password_hash

import records

MIN_PASSWORD_LENGTH = 12


def main():
    load_dotenv()
    username = (os.getenv("RESET_USERNAME") or "").strip()
    raw_password = os.getenv("RESET_PASSWORD") or ""

    if not (os.getenv("DATABASE_URL") or "").strip():
        raise RuntimeError("DATABASE_URL not found. Set it in .env")
    if not username:
        raise RuntimeError("RESET_USERNAME is required.")
    if len(raw_password) < MIN_PASSWORD_LENGTH:
        raise RuntimeError(f"RESET_PASSWORD must be at least {MIN_PASSWORD_LENGTH} characters.")

    updated = records.set_user_password(username, generate_password_hash(raw_password))
    if updated:
        print(f"Password reset successfully for {username}.")
    else:
        print(f"No user found for {username}.")
    return updated


if __name__ == "__main__":
    main()
