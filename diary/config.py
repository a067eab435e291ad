"""
Runtime configuration, read from the environment (and .env via server.py).
Modules import this module and read attributes at call time so tests can
monkeypatch them.
"""
import os

SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_KEY = (
    os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
    or os.environ.get("SUPABASE_ANON_KEY", "")
)

OPENAI_KEY = (os.environ.get("OPENAI_API_KEY") or "").strip()
OPENAI_BASE_URL = (os.environ.get("OPENAI_BASE_URL") or "").strip() or None
CHAT_MODEL = os.environ.get("CHAT_MODEL", "gpt-4o-mini")
TRANSCRIBE_MODEL = os.environ.get("TRANSCRIBE_MODEL", "gpt-4o-audio-preview")
WHISPER_MODEL = os.environ.get("WHISPER_MODEL", "whisper-1")

ENCRYPTION_KEY = os.environ.get("ENCRYPTION_KEY", "")
DEFAULT_SECRET_KEY = "dev-secret-change-me"
SECRET_KEY = os.environ.get("SECRET_KEY") or DEFAULT_SECRET_KEY
UNLOCK_TTL_MINUTES = int(os.environ.get("UNLOCK_TTL_MINUTES", "720"))

RATE_LIMIT_WINDOW = int(os.environ.get("RATE_LIMIT_WINDOW", "60"))
RATE_LIMIT_MAX = int(os.environ.get("RATE_LIMIT_MAX", "10"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
MAX_AUDIO_SIZE = 25 * 1024 * 1024  # 25MB limit
