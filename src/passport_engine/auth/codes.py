"""One-time code generation and keyed hashing."""

import hashlib
import hmac
import secrets


def generate_code(length: int = 6) -> str:
    """Uniform random numeric code, zero-padded."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def generate_salt() -> str:
    return secrets.token_hex(16)


def hash_code(secret_key: str, salt: str, code: str) -> str:
    """HMAC-SHA256 over salt || code. Only this value is ever stored."""
    return hmac.new(
        secret_key.encode(), f"{salt}{code}".encode(), hashlib.sha256
    ).hexdigest()


def verify_code_hash(secret_key: str, salt: str, code: str, expected: str) -> bool:
    return hmac.compare_digest(hash_code(secret_key, salt, code), expected)
