"""
Chat view: today's conversation, save-to-diary card, voice input.
"""
import logging
from datetime import date, datetime

from flask import Blueprint, flash, redirect, render_template, request, session, url_for

from diary import ai, chat, classify, config, storage, transcribe
from diary.security import sanitize_text
from diary.views import WEEKDAYS, emotion_color, new_message, now_iso, require_unlock, today_str

logger = logging.getLogger(__name__)

bp = Blueprint("chat", __name__)

PENDING_KEY = "pending_classification"
DRAFT_KEY = "chat_draft"

SAVED_MESSAGE = '✅ 日记已保存！\n\n你可以在"回顾"页面查看今天的记录。明天见~ 🌙'

QUICK_PROMPTS = ("今天发生了什么开心的事？", "最近有什么困扰你的吗？", "今天就这些了")


def greeting(hour: int) -> str:
    if hour < 6:
        return "夜深了，还没休息吗？"
    if hour < 12:
        return "早上好！"
    if hour < 14:
        return "中午好！"
    if hour < 18:
        return "下午好！"
    return "晚上好！"


def welcome_message(now: datetime = None) -> dict:
    now = now or datetime.now()
    return new_message(
        "assistant",
        f"{greeting(now.hour)} 🌟\n\n想记录点什么吗？可以直接和我说，也可以点麦克风语音输入~",
    )


def date_heading(day: date) -> str:
    return f"{day.month}月{day.day}日 {WEEKDAYS[day.weekday()]}"


def load_conversation(day: str) -> list:
    return storage.chat_messages.load(day) or [welcome_message()]


def user_text(messages: list) -> str:
    return "\n".join(m["content"] for m in messages if m.get("role") == "user")


def send_message(day: str, text: str) -> tuple[list, bool, bool]:
    """Append the user's message and the assistant's reply, persist the log.

    Returns (messages, ready_to_save, failed). Model failures become an apology
    message in the transcript rather than an exception.
    """
    messages = load_conversation(day) + [new_message("user", text)]
    try:
        content = chat.reply([{"role": m["role"], "content": m["content"]} for m in messages])
    except ai.AIServiceError as e:
        logger.error("[chat] reply failed: %s", e)
        messages.append(new_message("assistant", f"抱歉，遇到了一些问题：{e}~"))
        return messages, False, True
    messages.append(new_message("assistant", content))
    storage.chat_messages.save(day, messages)
    return messages, chat.is_closing_reply(content), False


def classify_conversation(messages: list) -> dict:
    """Classification for the save card; any failure yields the default."""
    text = user_text(messages)
    if not text:
        return classify.default_classification()
    try:
        result, _ = classify.classify_text(text)
    except ai.AIServiceError as e:
        logger.warning("[chat] classify failed, using default: %s", e)
        result = classify.default_classification()
        result["summary"] = "今天的日记"
    return result


def save_diary(day: str, messages: list, classification: dict | None) -> dict:
    """Create or update the day's entry, keeping its id and createdAt."""
    existing = storage.diary_entries.by_date(day)
    entry = {
        "id": existing["id"] if existing else f"diary_{day}",
        "date": day,
        "content": user_text(messages),
        "summary": (classification or {}).get("summary") or "今天的日记",
        "classification": classification,
        "conversation": messages,
        "createdAt": existing["createdAt"] if existing else now_iso(),
        "updatedAt": now_iso(),
    }
    return storage.diary_entries.save(entry)


@bp.route("/chat", methods=["GET"])
@require_unlock
def chat_page():
    day = today_str()
    messages = load_conversation(day)
    return render_template(
        "chat.html",
        tab="chat",
        heading=date_heading(date.fromisoformat(day)),
        messages=messages,
        today_entry=storage.diary_entries.by_date(day),
        pending=session.get(PENDING_KEY),
        draft=session.pop(DRAFT_KEY, ""),
        quick_prompts=QUICK_PROMPTS,
        emotion_color=emotion_color,
    )


@bp.route("/chat/send", methods=["POST"])
@require_unlock
def send():
    text = sanitize_text(request.form.get("message") or "", max_length=5000)
    if not text:
        return redirect(url_for("chat.chat_page"))
    day = today_str()
    messages, ready, failed = send_message(day, text)
    if ready:
        session[PENDING_KEY] = classify_conversation(messages)
    elif failed:
        session[DRAFT_KEY] = text
        flash(messages[-1]["content"])
    return redirect(url_for("chat.chat_page"))


@bp.route("/chat/save", methods=["POST"])
@require_unlock
def save():
    day = today_str()
    messages = load_conversation(day)
    classification = session.pop(PENDING_KEY, None)
    try:
        save_diary(day, messages, classification)
    except storage.StorageError as e:
        logger.error("[chat] save diary failed: %s", e)
        session[PENDING_KEY] = classification
        flash("保存失败，请重试")
        return redirect(url_for("chat.chat_page"))
    storage.chat_messages.save(day, messages + [new_message("assistant", SAVED_MESSAGE)])
    return redirect(url_for("chat.chat_page"))


@bp.route("/chat/organize", methods=["POST"])
@require_unlock
def organize():
    messages = load_conversation(today_str())
    session[PENDING_KEY] = classify_conversation(messages)
    return redirect(url_for("chat.chat_page"))


@bp.route("/chat/dismiss", methods=["POST"])
@require_unlock
def dismiss():
    session.pop(PENDING_KEY, None)
    return redirect(url_for("chat.chat_page"))


@bp.route("/chat/voice", methods=["POST"])
@require_unlock
def voice():
    file = request.files.get("audio")
    audio = file.read() if file else b""
    if not audio:
        flash("没有收到录音")
    elif len(audio) > config.MAX_AUDIO_SIZE:
        flash("录音文件过大（最大25MB）")
    else:
        try:
            text = transcribe.transcribe_audio(audio, file.filename or "recording.wav")
            draft = request.form.get("message") or ""
            session[DRAFT_KEY] = f"{draft} {text}".strip() if draft else text
        except transcribe.UnsupportedAudioFormat as e:
            flash(f"不支持的录音格式：{e.format}")
        except ai.AIServiceError as e:
            logger.error("[chat] transcription failed: %s", e)
            flash("语音识别失败，请重试")
    return redirect(url_for("chat.chat_page"))


@bp.route("/chat/clear", methods=["POST"])
@require_unlock
def clear():
    storage.chat_messages.clear(today_str())
    session.pop(PENDING_KEY, None)
    return redirect(url_for("chat.chat_page"))
