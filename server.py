"""
Diary server: JSON API routes + the server-rendered diary UI.
Set env: OPENAI_API_KEY, SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY),
SECRET_KEY, ENCRYPTION_KEY (optional).
Run: python server.py  →  http://127.0.0.1:5001/
"""
import logging
import os
import pathlib

from dotenv import load_dotenv

load_dotenv(dotenv_path=pathlib.Path(__file__).resolve().parent / ".env")

from flask import Flask, jsonify, redirect, render_template, request, url_for

import diary
from diary import ai, chat, classify, config, report, storage, transcribe
from diary.security import sanitize_text
from diary.views import TABS, require_unlock_json
from diary.views import chat as chat_view
from diary.views import lock as lock_view
from diary.views import review as review_view
from diary.views import settings as settings_view

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("diary.server")

app = Flask(
    __name__,
    template_folder=os.path.join(os.path.dirname(diary.__file__), "templates"),
)
app.secret_key = config.SECRET_KEY
app.config["MAX_CONTENT_LENGTH"] = config.MAX_AUDIO_SIZE + 1024 * 1024

app.register_blueprint(lock_view.bp)
app.register_blueprint(chat_view.bp)
app.register_blueprint(review_view.bp)
app.register_blueprint(settings_view.bp)


# ── Security headers ──

@app.after_request
def add_security_headers(response):
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), geolocation=(), payment=()"
    return response


@app.context_processor
def inject_tabs():
    return {"nav_tabs": TABS}


@app.errorhandler(storage.StorageError)
def storage_failed(e):
    """Pages only; the JSON API handles storage errors itself."""
    logger.error("[pages] storage error on %s: %s", request.path, e)
    status = 503 if isinstance(e, storage.StorageNotConfigured) else 500
    return render_template("error.html", message=str(e)), status


def _ai_error(e: ai.AIServiceError):
    body = {"error": str(e)}
    if e.details:
        body["details"] = e.details
    return jsonify(body), 500


# --- Page routes ---

@app.route("/")
def index():
    return redirect(url_for("chat.chat_page"))


# --- API routes ---

@app.route("/api/health")
def health():
    return jsonify({
        "ok": True,
        "storage": bool(config.SUPABASE_URL and config.SUPABASE_KEY),
        "ai": bool(config.OPENAI_KEY),
    })


@app.route("/api/chat", methods=["POST"])
@require_unlock_json
def api_chat():
    data = request.get_json(force=True, silent=True) or {}
    messages = data.get("messages")
    if not isinstance(messages, list):
        return jsonify({"error": "Messages array is required"}), 400
    try:
        content = chat.reply(messages)
    except ai.AIServiceError as e:
        logger.error("[chat] %s (%s)", e, e.details)
        return _ai_error(e)
    return jsonify({"content": content})


@app.route("/api/classify", methods=["POST"])
@require_unlock_json
def api_classify():
    data = request.get_json(force=True, silent=True) or {}
    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        return jsonify({"error": "Content string is required"}), 400
    try:
        result, used_fallback = classify.classify_text(sanitize_text(content, max_length=10000))
    except ai.AIServiceError as e:
        logger.error("[classify] %s (%s)", e, e.details)
        return jsonify({"error": "Failed to classify content", "details": str(e)}), 500
    if used_fallback:
        logger.info("[classify] model output unparseable, returned default classification")
    return jsonify(result)


@app.route("/api/report", methods=["POST"])
@require_unlock_json
def api_report():
    data = request.get_json(force=True, silent=True) or {}
    report_type = data.get("type")
    entries = data.get("entries")
    if not report_type or not isinstance(entries, list):
        return jsonify({"error": "Missing required parameters"}), 400
    try:
        result = report.generate_report(
            report_type,
            entries,
            year=data.get("year"),
            week_number=data.get("weekNumber"),
            month=data.get("month"),
        )
    except report.ReportInputError as e:
        return jsonify({"error": str(e)}), 400
    except ai.AIServiceError as e:
        logger.error("[report] %s (%s)", e, e.details)
        return jsonify({"error": "Failed to generate report", "details": str(e)}), 500
    except Exception as e:
        logger.exception("[report] unexpected failure")
        return jsonify({"error": "Failed to generate report", "details": str(e)}), 500
    return jsonify(result)


@app.route("/api/storage", methods=["GET", "POST", "DELETE"])
@require_unlock_json
def api_storage():
    try:
        store = storage.get_store(request.args.get("type"))
        if request.method == "GET":
            result = store.get(request.args)
        elif request.method == "POST":
            body = request.get_json(force=True, silent=True)
            if not isinstance(body, dict):
                return jsonify({"error": "JSON object body required"}), 400
            result = store.upsert(body)
        else:
            result = store.delete(request.args)
        return jsonify(result)
    except storage.InvalidRequest as e:
        return jsonify({"error": str(e)}), 400
    except storage.StorageNotConfigured as e:
        return jsonify({"error": str(e)}), 503
    except storage.StorageError as e:
        logger.error("[storage] %s %s failed: %s", request.method, request.args.get("type"), e)
        return jsonify({"error": str(e)}), 500


@app.route("/api/transcribe", methods=["POST"])
@require_unlock_json
def api_transcribe():
    file = request.files.get("audio") or request.files.get("file")
    if not file:
        return jsonify({"error": "Audio blob is required"}), 400
    audio = file.read()
    if not audio:
        return jsonify({"error": "Audio blob is required"}), 400
    if len(audio) > config.MAX_AUDIO_SIZE:
        return jsonify({"error": "Audio file too large (max 25MB)"}), 400
    try:
        text = transcribe.transcribe_audio(audio, file.filename or "recording.wav")
    except transcribe.UnsupportedAudioFormat as e:
        return jsonify({"error": str(e)}), 400
    except ai.AIServiceError as e:
        logger.error("[transcribe] %s (%s)", e, e.details)
        return jsonify({"error": "Failed to transcribe audio", "details": str(e)}), 500
    return jsonify({"text": text})


def startup_warnings() -> list:
    out = []
    if not config.OPENAI_KEY:
        out.append("OPENAI_API_KEY not set in .env — chat, classification, reports and voice input will fail.")
    if not (config.SUPABASE_URL and config.SUPABASE_KEY):
        out.append("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not set — storage is unavailable.")
    if config.SECRET_KEY == config.DEFAULT_SECRET_KEY:
        out.append("SECRET_KEY not set — sessions and unlock cookies are signed with a public default.")
    return out


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    print(f"Diary running at http://127.0.0.1:{port}/")
    for warning in startup_warnings():
        print(f"WARNING: {warning}")
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "false").lower() == "true")
