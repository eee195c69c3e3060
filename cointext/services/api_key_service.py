"""Client API key generation and hashing."""

import secrets
import bcrypt

KEY_PREFIX_LENGTH = 8


def generate_api_key() -> str:
    """
    Generate a secure random API key.
    
    Returns:
        A URL-safe random string (64 characters)
    """
    return secrets.token_urlsafe(48)


def hash_api_key(api_key: str) -> str:
    """Hash an API key using bcrypt."""
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(api_key.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_api_key(api_key: str, key_hash: str) -> bool:
    """Verify an API key against its hash."""
    try:
        return bcrypt.checkpw(
            api_key.encode('utf-8'),
            key_hash.encode('utf-8')
        )
    except ValueError:
        # Malformed hash
        return False


def get_key_prefix(api_key: str) -> str:
    """
    Prefix stored in clear for lookup and display.
    """
    return api_key[:KEY_PREFIX_LENGTH]
