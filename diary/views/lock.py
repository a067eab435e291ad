"""
Passcode lock screen: setup → confirm → unlock.
"""
import logging

from flask import Blueprint, flash, make_response, redirect, render_template, request, session, url_for

from diary import config, storage
from diary.security import (
    UNLOCK_COOKIE,
    check_rate_limit,
    hash_passcode,
    is_valid_passcode,
    issue_unlock_token,
    verify_passcode,
)

logger = logging.getLogger(__name__)

bp = Blueprint("lock", __name__)

SETUP_KEY = "passcode_setup"

TITLES = {
    "setup": ("设置密码", "请输入6位数字密码"),
    "confirm": ("确认密码", "请再次输入密码确认"),
    "unlock": ("输入密码", ""),
}


def current_mode(settings: dict | None) -> str:
    if settings and settings.get("password"):
        return "unlock"
    if session.get(SETUP_KEY):
        return "confirm"
    return "setup"


def _unlocked_response():
    session.pop(SETUP_KEY, None)
    resp = make_response(redirect(url_for("chat.chat_page")))
    resp.set_cookie(
        UNLOCK_COOKIE,
        issue_unlock_token(),
        max_age=config.UNLOCK_TTL_MINUTES * 60,
        httponly=True,
        samesite="Lax",
    )
    return resp


def _render(mode: str, settings: dict | None, error: str = "", status: int = 200):
    title, subtitle = TITLES[mode]
    return render_template(
        "lock.html",
        mode=mode,
        title=title,
        subtitle=subtitle,
        error=error,
        biometric_enabled=bool(settings and settings.get("biometricEnabled")),
    ), status


@bp.route("/lock", methods=["GET"])
def lock_page():
    try:
        settings = storage.settings.load()
    except storage.StorageError as e:
        logger.error("[lock] failed to load settings: %s", e)
        settings = None
    return _render(current_mode(settings), settings)


@bp.route("/lock", methods=["POST"])
def submit_passcode():
    passcode = (request.form.get("passcode") or "").strip()
    settings = storage.settings.load()
    mode = current_mode(settings)

    if not is_valid_passcode(passcode):
        return _render(mode, settings, "请输入6位数字密码", 400)

    if mode == "unlock":
        if not check_rate_limit(f"unlock:{request.remote_addr}"):
            return _render(mode, settings, "尝试次数过多，请稍后再试", 429)
        if verify_passcode(passcode, settings["password"]):
            return _unlocked_response()
        return _render(mode, settings, "密码错误，请重试", 401)

    if mode == "setup":
        session[SETUP_KEY] = hash_passcode(passcode)
        return redirect(url_for("lock.lock_page"))

    first = session.pop(SETUP_KEY, None)
    if not verify_passcode(passcode, first):
        return _render("setup", settings, "两次密码不一致，请重新设置", 400)
    storage.settings.save(hash_passcode(passcode), biometric_enabled=False)
    logger.info("[lock] passcode created")
    return _unlocked_response()


@bp.route("/lock/biometric", methods=["POST"])
def biometric():
    flash("生物识别功能需要原生App支持，当前为Web演示版本")
    return redirect(url_for("lock.lock_page"))


@bp.route("/lock/now", methods=["POST"])
def lock_now():
    resp = make_response(redirect(url_for("lock.lock_page")))
    resp.delete_cookie(UNLOCK_COOKIE)
    return resp
