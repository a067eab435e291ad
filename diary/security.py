"""
Security utilities: passcode hashing, unlock tokens, field encryption,
input sanitization.
"""
import re
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from diary import config

UNLOCK_COOKIE = "diary_unlock"

# ── Passcode ──

PASSCODE_LENGTH = 6


def is_valid_passcode(passcode: str) -> bool:
    """Six ASCII digits."""
    return bool(passcode) and bool(re.fullmatch(r"[0-9]{%d}" % PASSCODE_LENGTH, passcode))


def hash_passcode(passcode: str) -> str:
    return generate_password_hash(passcode)


def verify_passcode(passcode: str, hashed: str) -> bool:
    if not passcode or not hashed:
        return False
    return check_password_hash(hashed, passcode)


# ── Unlock token (JWT) ──

def issue_unlock_token(now: datetime = None) -> str:
    """Signed token proving the passcode was entered on this browser."""
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": "diary",
        "iat": now,
        "exp": now + timedelta(minutes=config.UNLOCK_TTL_MINUTES),
    }
    return jwt.encode(payload, config.SECRET_KEY, algorithm="HS256")


def verify_unlock_token(token: str) -> dict | None:
    """Return the token payload, or None if missing, expired or forged."""
    if not token:
        return None
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


# ── Rate limiting (simple in-memory) ──

_rate_limits = defaultdict(list)


def check_rate_limit(key: str) -> bool:
    now = time.time()
    _rate_limits[key] = [t for t in _rate_limits[key] if now - t < config.RATE_LIMIT_WINDOW]
    if len(_rate_limits[key]) >= config.RATE_LIMIT_MAX:
        return False
    _rate_limits[key].append(now)
    return True


def reset_rate_limits():
    _rate_limits.clear()


# ── Field encryption ──

_fernets = {}


def _get_fernet():
    key = config.ENCRYPTION_KEY
    if not key:
        return None
    if key not in _fernets:
        from cryptography.fernet import Fernet
        _fernets[key] = Fernet(key.encode())
    return _fernets[key]


def encrypt(text: str) -> str:
    """Encrypt a string. Returns the original if no key is configured."""
    if not text:
        return text
    f = _get_fernet()
    if not f:
        return text
    return f.encrypt(text.encode("utf-8")).decode("utf-8")


def decrypt(text: str) -> str:
    """Decrypt a string. Returns the original if it's not encrypted or no key."""
    if not text:
        return text
    f = _get_fernet()
    if not f:
        return text
    from cryptography.fernet import InvalidToken
    try:
        return f.decrypt(text.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        return text


# ── Input sanitization ──

def sanitize_text(text: str, max_length: int = 5000) -> str:
    """Strip control characters and enforce length limit."""
    if not text:
        return ""
    text = text[:max_length]
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)
    return text.strip()


def clamp_int(value, low: int, high: int, default: int = None) -> int:
    """Safely parse and clamp an integer."""
    try:
        v = int(round(float(value)))
        return max(low, min(high, v))
    except (TypeError, ValueError, OverflowError):
        return default if default is not None else low


def validate_date(date_str: str) -> str | None:
    """Validate YYYY-MM-DD format. Returns cleaned string or None."""
    if not date_str or not isinstance(date_str, str):
        return None
    if re.match(r"^\d{4}-\d{2}-\d{2}$", date_str.strip()):
        return date_str.strip()
    return None
