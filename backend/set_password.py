"""
Maintenance script: reset one user's password.
Run from the backend folder: python set_password.py user@example.com NewPassword1
"""
import sys

from pymongo import MongoClient

from school_api import config
from school_api.security import get_password_hash

MIN_LENGTH = 6


def main(argv):
    if len(argv) != 3:
        print("Usage: python set_password.py <email> <new-password>")
        return 1
    email, new_password = argv[1].strip().lower(), argv[2]
    if len(new_password) < MIN_LENGTH:
        print(f"ERROR: password must be at least {MIN_LENGTH} characters")
        return 1

    client = MongoClient(config.normalize_mongo_url(config.MONGO_URL), serverSelectionTimeoutMS=5000)
    try:
        db = client[config.DB_NAME]
        result = db.users.update_one({"email": email}, {"$set": {"password_hash": get_password_hash(new_password)}})
        if not result.matched_count:
            print(f"ERROR: no user with email {email}")
            return 1
        print(f"Updated password for {email}")
        return 0
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main(sys.argv))
