"""
Server-rendered diary UI. Each view is a Flask blueprint; the unlock flag
lives in a signed cookie, the active tab comes from the route.
"""
import uuid
from datetime import date, datetime, timezone
from functools import wraps

from flask import jsonify, redirect, request, url_for

from diary.security import UNLOCK_COOKIE, verify_unlock_token

TABS = (
    ("chat", "对话", "chat.chat_page"),
    ("review", "回顾", "review.review_page"),
    ("settings", "设置", "settings.settings_page"),
)

WEEKDAYS = ("周一", "周二", "周三", "周四", "周五", "周六", "周日")


def is_unlocked() -> bool:
    return verify_unlock_token(request.cookies.get(UNLOCK_COOKIE, "")) is not None


def require_unlock(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not is_unlocked():
            return redirect(url_for("lock.lock_page"))
        return f(*args, **kwargs)
    return decorated


def require_unlock_json(f):
    """API variant of require_unlock: 401 JSON instead of a redirect."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if not is_unlocked():
            return jsonify({"error": "Unlock required"}), 401
        return f(*args, **kwargs)
    return decorated


def today_str() -> str:
    return date.today().isoformat()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_message(role: str, content: str) -> dict:
    return {
        "id": f"msg_{uuid.uuid4().hex[:12]}",
        "role": role,
        "content": content,
        "timestamp": now_iso(),
    }


def emotion_color(score) -> str:
    """Colour band for an emotion score (green / blue / yellow / red)."""
    score = score or 0
    if score >= 8:
        return "green"
    if score >= 6:
        return "blue"
    if score >= 4:
        return "yellow"
    return "red"
