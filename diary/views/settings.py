"""
Settings view: change passcode, biometric toggle, lock now.
"""
import logging

from flask import Blueprint, flash, redirect, render_template, request, url_for

from diary import storage
from diary.security import hash_passcode, is_valid_passcode, verify_passcode
from diary.views import require_unlock

logger = logging.getLogger(__name__)

bp = Blueprint("settings", __name__)


def change_passcode(current: str, new: str, confirm: str) -> str | None:
    """Validate and store a new passcode. Returns an error message, or None on success."""
    if not current or not new or not confirm:
        return "请填写所有字段"
    if not is_valid_passcode(new):
        return "新密码必须是6位数字"
    if new != confirm:
        return "两次输入的新密码不一致"
    settings = storage.settings.load()
    if not settings or not settings.get("password"):
        return "尚未设置密码"
    if not verify_passcode(current, settings["password"]):
        return "当前密码错误"
    storage.settings.save(hash_passcode(new), settings.get("biometricEnabled", False))
    logger.info("[settings] passcode changed")
    return None


@bp.route("/settings", methods=["GET"])
@require_unlock
def settings_page():
    settings = storage.settings.load() or {}
    return render_template(
        "settings.html",
        tab="settings",
        biometric_enabled=settings.get("biometricEnabled", False),
        show_password_form=request.args.get("password") == "1",
    )


@bp.route("/settings/password", methods=["POST"])
@require_unlock
def password():
    error = change_passcode(
        request.form.get("current", ""),
        request.form.get("new", ""),
        request.form.get("confirm", ""),
    )
    if error:
        flash(error)
        return redirect(url_for("settings.settings_page", password="1"))
    flash("密码修改成功！")
    return redirect(url_for("settings.settings_page"))


@bp.route("/settings/biometric", methods=["POST"])
@require_unlock
def biometric():
    enabled = request.form.get("enabled") in ("1", "on", "true")
    settings = storage.settings.load()
    if settings and settings.get("password"):
        storage.settings.save(settings["password"], enabled)
    return redirect(url_for("settings.settings_page"))
