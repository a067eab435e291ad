"""
Record storage on Supabase tables.

One store per record kind; each implements the subset of get / upsert /
delete that makes sense for it. JSON sub-fields are stored as text.
Tables are defined in supabase/schema.sql.
"""
import json
import logging
from datetime import date, datetime, timedelta, timezone

from diary import config
from diary.report import REPORT_TYPES, report_id
from diary.security import decrypt, encrypt, validate_date

logger = logging.getLogger(__name__)

SETTINGS_ID = "app_settings"


class StorageError(Exception):
    """The datastore rejected or failed an operation."""


class StorageNotConfigured(StorageError):
    pass


class InvalidRequest(ValueError):
    """Missing or malformed key parameters / body."""


def get_supabase():
    if not config.SUPABASE_URL or not config.SUPABASE_KEY:
        return None
    from supabase import create_client
    return create_client(config.SUPABASE_URL, config.SUPABASE_KEY)


def _db():
    db = get_supabase()
    if db is None:
        raise StorageNotConfigured("Server not configured")
    return db


def _run(query) -> list:
    try:
        result = query.execute()
    except Exception as e:
        logger.error("[storage] %s: %s", type(e).__name__, e)
        raise StorageError(str(e) or type(e).__name__) from e
    return result.data or []


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dumps(value) -> str:
    return json.dumps(value, ensure_ascii=False)


def _loads(text, default):
    if not text:
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise StorageError(f"Corrupt JSON field: {e}") from e


def _int_param(params, name: str) -> int | None:
    value = params.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f"{name} must be an integer")


class UnsupportedOperation(InvalidRequest):
    pass


class RecordStore:
    """Common capability set used by the storage endpoint."""

    table = ""

    def get(self, params):
        raise UnsupportedOperation("Invalid type")

    def upsert(self, body: dict):
        raise UnsupportedOperation("Invalid type")

    def delete(self, params):
        raise UnsupportedOperation("Invalid type")


# ── Settings ──

class SettingsStore(RecordStore):
    table = "settings"

    def load(self) -> dict | None:
        rows = _run(_db().table(self.table).select("*").eq("id", SETTINGS_ID).limit(1))
        return self._from_row(rows[0]) if rows else None

    def save(self, password: str, biometric_enabled: bool = False) -> dict:
        if not password or not isinstance(password, str):
            raise InvalidRequest("password is required")
        existing = self.load()
        row = {
            "id": SETTINGS_ID,
            "password": password,
            "biometric_enabled": bool(biometric_enabled),
            "created_at": (existing or {}).get("createdAt") or _now(),
            "updated_at": _now(),
        }
        rows = _run(_db().table(self.table).upsert(row, on_conflict="id"))
        return self._from_row(rows[0] if rows else row)

    def has_password(self) -> bool:
        settings = self.load()
        return bool(settings and settings.get("password"))

    @staticmethod
    def _from_row(row: dict) -> dict:
        return {
            "id": row.get("id"),
            "password": row.get("password") or "",
            "biometricEnabled": bool(row.get("biometric_enabled")),
            "createdAt": row.get("created_at"),
            "updatedAt": row.get("updated_at"),
        }

    def get(self, params):
        return self.load()

    def upsert(self, body: dict):
        return self.save(body.get("password"), body.get("biometricEnabled") or False)


# ── Diary entries ──

class DiaryEntryStore(RecordStore):
    table = "diary_entries"

    @staticmethod
    def _from_row(row: dict) -> dict:
        return {
            "id": row.get("id"),
            "date": row.get("date"),
            "content": decrypt(row.get("content") or ""),
            "summary": row.get("summary"),
            "classification": _loads(row.get("classification"), None),
            "conversation": _loads(decrypt(row.get("conversation") or ""), []),
            "createdAt": row.get("created_at"),
            "updatedAt": row.get("updated_at"),
        }

    def _first(self, column: str, value) -> dict | None:
        rows = _run(_db().table(self.table).select("*").eq(column, value).limit(1))
        return rows[0] if rows else None

    def by_date(self, day: str) -> dict | None:
        row = self._first("date", day)
        return self._from_row(row) if row else None

    def by_id(self, entry_id: str) -> dict | None:
        row = self._first("id", entry_id)
        return self._from_row(row) if row else None

    def all(self) -> list:
        rows = _run(_db().table(self.table).select("*").order("date", desc=True))
        return [self._from_row(r) for r in rows]

    def since(self, start: str) -> list:
        rows = _run(_db().table(self.table).select("*").gte("date", start).order("date"))
        return [self._from_row(r) for r in rows]

    def save(self, entry: dict) -> dict:
        """Upsert by id. A different id for an already-stored date overwrites that date's row."""
        day = validate_date(entry.get("date"))
        if not day:
            raise InvalidRequest("date is required (YYYY-MM-DD)")
        entry_id = entry.get("id") or f"diary_{day}"

        existing = self._first("date", day)
        if existing is None:
            existing = self._first("id", entry_id)
        elif existing["id"] != entry_id:
            logger.info("[storage] diary %s already stored as %s, overwriting", day, existing["id"])
            entry_id = existing["id"]

        classification = entry.get("classification")
        conversation = entry.get("conversation") or []
        if not isinstance(conversation, list):
            raise InvalidRequest("conversation must be a list")

        row = {
            "id": entry_id,
            "date": day,
            "content": encrypt(entry.get("content") or ""),
            "summary": entry.get("summary"),
            "classification": _dumps(classification) if classification else None,
            "conversation": encrypt(_dumps(conversation)),
            "created_at": (existing or {}).get("created_at") or entry.get("createdAt") or _now(),
            "updated_at": _now(),
        }
        rows = _run(_db().table(self.table).upsert(row, on_conflict="id"))
        return self._from_row(rows[0] if rows else row)

    def remove(self, entry_id: str):
        _run(_db().table(self.table).delete().eq("id", entry_id))

    def get(self, params):
        if params.get("date"):
            return self.by_date(params.get("date"))
        if params.get("id"):
            return self.by_id(params.get("id"))
        return self.all()

    def upsert(self, body: dict):
        return self.save(body)

    def delete(self, params):
        if not params.get("id"):
            raise InvalidRequest("id is required")
        self.remove(params.get("id"))
        return {"success": True}


# ── Chat logs ──

class ChatLogStore(RecordStore):
    table = "chat_messages"

    def load(self, day: str) -> list | None:
        rows = _run(_db().table(self.table).select("*").eq("date", day).limit(1))
        if not rows:
            return None
        return _loads(decrypt(rows[0].get("messages") or ""), [])

    def save(self, day: str, messages: list) -> list:
        if not validate_date(day):
            raise InvalidRequest("date is required")
        if not isinstance(messages, list):
            raise InvalidRequest("messages must be a list")
        row = {
            "id": f"chat_{day}",
            "date": day,
            "messages": encrypt(_dumps(messages)),
            "updated_at": _now(),
        }
        rows = _run(_db().table(self.table).upsert(row, on_conflict="date"))
        return _loads(decrypt((rows[0] if rows else row).get("messages") or ""), [])

    def clear(self, day: str):
        _run(_db().table(self.table).delete().eq("date", day))

    def get(self, params):
        if not params.get("date"):
            raise InvalidRequest("date is required")
        return self.load(params.get("date"))

    def upsert(self, body: dict):
        return self.save(body.get("date"), body.get("messages"))

    def delete(self, params):
        if not params.get("date"):
            raise InvalidRequest("date is required")
        self.clear(params.get("date"))
        return {"success": True}


# ── Emotion stats (read-only view over diary entries) ──

class EmotionStatsStore(RecordStore):

    def __init__(self, entries: DiaryEntryStore):
        self.entries = entries

    def scores(self, days: int = 7, today: date = None) -> list:
        today = today or date.today()
        start = (today - timedelta(days=days)).isoformat()
        out = []
        for e in self.entries.since(start):
            c = e.get("classification")
            if not c:
                continue
            out.append({"date": e["date"], "score": c.get("emotionScore") or 0})
        return out

    def get(self, params):
        days = _int_param(params, "days")
        return self.scores(days if days is not None else 7)


# ── Reports ──

class ReportStore(RecordStore):
    table = "reports"

    @staticmethod
    def _from_row(row: dict) -> dict:
        return {
            "id": row.get("id"),
            "type": row.get("type"),
            "year": row.get("year"),
            "weekNumber": row.get("week_number"),
            "month": row.get("month"),
            "data": _loads(row.get("data"), {}),
            "createdAt": row.get("created_at"),
            "updatedAt": row.get("updated_at"),
        }

    def all(self) -> list:
        rows = _run(_db().table(self.table).select("*"))
        rows.sort(
            key=lambda r: (r.get("year") or 0, r.get("month") or 0, r.get("week_number") or 0),
            reverse=True,
        )
        return [self._from_row(r) for r in rows]

    def find(self, report_type: str, year: int, week_number: int = None, month: int = None) -> dict | None:
        q = _db().table(self.table).select("*").eq("type", report_type).eq("year", year)
        if report_type == "weekly" and week_number:
            q = q.eq("week_number", week_number)
        elif report_type == "monthly" and month:
            q = q.eq("month", month)
        rows = _run(q.limit(1))
        return self._from_row(rows[0]) if rows else None

    def save(self, report_type: str, year: int, data: dict, week_number: int = None, month: int = None) -> dict:
        if report_type not in REPORT_TYPES:
            raise InvalidRequest("reportType must be weekly, monthly or yearly")
        if not year:
            raise InvalidRequest("year is required")
        if report_type == "weekly" and not week_number:
            raise InvalidRequest("weekNumber is required for weekly reports")
        if report_type == "monthly" and not month:
            raise InvalidRequest("month is required for monthly reports")
        key = report_id(report_type, year, week_number, month)
        existing = _run(_db().table(self.table).select("created_at").eq("id", key).limit(1))
        row = {
            "id": key,
            "type": report_type,
            "year": year,
            "week_number": week_number if report_type == "weekly" else None,
            "month": month if report_type == "monthly" else None,
            "data": _dumps(data or {}),
            "created_at": (existing[0].get("created_at") if existing else None) or _now(),
            "updated_at": _now(),
        }
        rows = _run(_db().table(self.table).upsert(row, on_conflict="id"))
        return self._from_row(rows[0] if rows else row)

    def remove(self, key: str):
        _run(_db().table(self.table).delete().eq("id", key))

    def get(self, params):
        report_type = params.get("reportType")
        year = _int_param(params, "year")
        if not report_type or not year:
            raise InvalidRequest("reportType and year are required")
        return self.find(report_type, year, _int_param(params, "weekNumber"), _int_param(params, "month"))

    def upsert(self, body: dict):
        def as_int(name):
            value = body.get(name)
            if value in (None, ""):
                return None
            try:
                return int(value)
            except (TypeError, ValueError):
                raise InvalidRequest(f"{name} must be an integer")

        return self.save(
            body.get("reportType"),
            as_int("year"),
            body.get("data"),
            week_number=as_int("weekNumber"),
            month=as_int("month"),
        )

    def delete(self, params):
        if not params.get("id"):
            raise InvalidRequest("id is required")
        self.remove(params.get("id"))
        return {"success": True}


class ReportHistory(RecordStore):
    """Read-only listing of every saved report."""

    def __init__(self, reports: ReportStore):
        self.reports = reports

    def get(self, params):
        return self.reports.all()


settings = SettingsStore()
diary_entries = DiaryEntryStore()
chat_messages = ChatLogStore()
emotion_stats = EmotionStatsStore(diary_entries)
reports = ReportStore()

STORES = {
    "settings": settings,
    "diary_entries": diary_entries,
    "chat_messages": chat_messages,
    "emotion_stats": emotion_stats,
    "reports": ReportHistory(reports),
    "report": reports,
}


def get_store(record_type: str) -> RecordStore:
    store = STORES.get(record_type or "")
    if store is None:
        raise UnsupportedOperation("Invalid type")
    return store
