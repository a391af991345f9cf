# security.py
import bcrypt

BCRYPT_MAX_BYTES = 72

def _pw_bytes(plain: str) -> bytes:
    # bcrypt only looks at the first 72 bytes; newer releases raise instead
    return plain.encode("utf-8")[:BCRYPT_MAX_BYTES]

def hash_password(plain: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_pw_bytes(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")

def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_pw_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # corrupt hash in the users table
        return False
