import argparse

from core.api_keys import API_KEY_HEADER, generate_api_key, hash_api_key
from core.db import SessionLocal
from models.api_key import ApiKey


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a new API key for a user."
    )
    parser.add_argument("--user-id", required=True, help="User the key authenticates as.")
    parser.add_argument(
        "--label",
        default="local-dev-key",
        help="API key label (default: local-dev-key).",
    )
    parser.add_argument(
        "--admin",
        action="store_true",
        help="Grant admin rights (may record and sync on behalf of any user).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    db = SessionLocal()
    try:
        plaintext_key = generate_api_key()
        api_key = ApiKey(
            user_id=args.user_id,
            is_admin=args.admin,
            key_hash=hash_api_key(plaintext_key),
            label=args.label,
        )
        db.add(api_key)
        db.commit()

        print("User ID:", api_key.user_id)
        print("Admin:", api_key.is_admin)
        print("API Key Label:", api_key.label)
        print("API Key (shown once):", plaintext_key)
        print("Header format:", API_KEY_HEADER)
    finally:
        db.close()


if __name__ == "__main__":
    main()
