"""
Review view: calendar / timeline of saved entries, search and filters,
and the weekly / monthly / yearly report overlay.
"""
import calendar
import json
import logging
from collections import Counter
from datetime import date, timedelta

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from diary import ai, report, storage
from diary.classify import DOMAIN_TAGS, EMOTION_TAGS
from diary.security import clamp_int, validate_date
from diary.views import WEEKDAYS, emotion_color, require_unlock

logger = logging.getLogger(__name__)

bp = Blueprint("review", __name__)

REPORT_TITLES = {"weekly": "周报", "monthly": "月报", "yearly": "年度报告"}


def _classification(entry: dict) -> dict:
    return entry.get("classification") or {}


def _score(entry: dict):
    return _classification(entry).get("emotionScore")


def filter_entries(entries, query="", emotions=(), domains=(), min_score=None, max_score=None) -> list:
    query = (query or "").lower()
    out = []
    for e in entries:
        c = _classification(e)
        tags = c.get("emotionTags") or []
        doms = c.get("domains") or []
        if query:
            haystacks = [e.get("content") or "", e.get("summary") or ""] + tags + doms
            if not any(query in h.lower() for h in haystacks):
                continue
        if emotions and not any(t in emotions for t in tags):
            continue
        if domains and not any(d in domains for d in doms):
            continue
        if min_score is not None and (_score(e) or 0) < min_score:
            continue
        if max_score is not None and (_score(e) if _score(e) is not None else 10) > max_score:
            continue
        out.append(e)
    return out


def group_by_month(entries: list) -> list:
    """[(label, entries)] in input order, label like 2026年3月."""
    groups = {}
    for e in entries:
        d = date.fromisoformat(e["date"])
        groups.setdefault(f"{d.year}年{d.month}月", []).append(e)
    return list(groups.items())


def date_label(day: str, today: date) -> str:
    d = date.fromisoformat(day)
    if d == today:
        return "今天"
    if d == today - timedelta(days=1):
        return "昨天"
    return f"{d.month}月{d.day}日 {WEEKDAYS[d.weekday()]}"


def week_data(by_date: dict, today: date) -> list:
    """Monday..Sunday of the current week with each day's score (x10 for bar height)."""
    start = today - timedelta(days=today.weekday())
    days = []
    for i in range(7):
        d = start + timedelta(days=i)
        entry = by_date.get(d.isoformat())
        score = _score(entry) if entry else None
        days.append({
            "date": d.isoformat(),
            "day": WEEKDAYS[i],
            "dayNum": d.day,
            "value": score * 10 if score else 0,
            "hasEntry": entry is not None,
            "entry": entry,
        })
    return days


def overview_stats(entries: list, week: list) -> dict:
    scores = [_score(e) for e in entries if _score(e)]
    emotions = Counter()
    domains = Counter()
    for e in entries:
        emotions.update(_classification(e).get("emotionTags") or [])
        domains.update(_classification(e).get("domains") or [])
    return {
        "totalEntries": len(entries),
        "avgScore": report.average(scores),
        "thisWeekCount": sum(1 for d in week if d["hasEntry"]),
        "topEmotions": emotions.most_common(5),
        "topDomains": domains.most_common(5),
    }


def month_grid(year: int, month: int, by_date: dict) -> list:
    """Weeks (Monday first) of day cells for the calendar."""
    weeks = []
    for week in calendar.Calendar(firstweekday=0).monthdatescalendar(year, month):
        row = []
        for d in week:
            entry = by_date.get(d.isoformat())
            row.append({
                "date": d.isoformat(),
                "day": d.day,
                "inMonth": d.month == month,
                "entry": entry,
                "color": emotion_color(_score(entry)) if entry and _score(entry) else "",
            })
        weeks.append(row)
    return weeks


def shift_month(year: int, month: int, delta: int) -> str:
    index = year * 12 + (month - 1) + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def current_period(today: date) -> dict:
    iso = today.isocalendar()
    return {"year": today.year, "weekYear": iso[0], "weekNumber": iso[1], "month": today.month}


def period_year(report_type: str, period: dict) -> int:
    """Weekly reports are keyed by ISO week-year, which differs from the calendar year around New Year."""
    return period["weekYear"] if report_type == "weekly" else period["year"]


def entries_in_period(entries: list, report_type: str, year: int, week_number=None, month=None) -> list:
    out = []
    for e in entries:
        d = date.fromisoformat(e["date"])
        if report_type == "weekly":
            iso = d.isocalendar()
            if (iso[0], iso[1]) != (year, week_number):
                continue
        elif report_type == "monthly":
            if (d.year, d.month) != (year, month):
                continue
        elif d.year != year:
            continue
        out.append(e)
    return out


def report_title(report_type: str, period: dict) -> str:
    if report_type == "weekly":
        return f"第{period['weekNumber']}周周报"
    if report_type == "monthly":
        return f"{period['month']}月月报"
    return f"{period['year']}年度报告"


def _score_arg(name: str):
    value = request.args.get(name)
    if value in (None, ""):
        return None
    return clamp_int(value, 1, 10, default=None)


@bp.route("/review", methods=["GET"])
@require_unlock
def review_page():
    today = date.today()
    entries = sorted(storage.diary_entries.all(), key=lambda e: e["date"], reverse=True)
    by_date = {e["date"]: e for e in entries}

    view_mode = request.args.get("view") if request.args.get("view") in ("calendar", "timeline") else "calendar"
    selected = validate_date(request.args.get("date") or "")
    try:
        selected = date.fromisoformat(selected).isoformat()
    except (TypeError, ValueError):
        selected = today.isoformat()
    month_arg = request.args.get("month") or selected[:7]
    try:
        year, month = (int(x) for x in month_arg.split("-"))
        calendar.monthrange(year, month)
    except (ValueError, calendar.IllegalMonthError):
        year, month = today.year, today.month

    query = request.args.get("q", "")
    emotions = request.args.getlist("emotion")
    domains = request.args.getlist("domain")
    min_score = _score_arg("min")
    max_score = _score_arg("max")
    filtered = filter_entries(entries, query, emotions, domains, min_score, max_score)
    week = week_data(by_date, today)

    return render_template(
        "review.html",
        tab="review",
        view_mode=view_mode,
        stats=overview_stats(entries, week),
        week=week,
        grid=month_grid(year, month, by_date),
        month_label=f"{year}年{month}月",
        prev_month=shift_month(year, month, -1),
        next_month=shift_month(year, month, 1),
        selected=selected,
        selected_label=date_label(selected, today),
        selected_entry=by_date.get(selected),
        groups=group_by_month(filtered),
        filtered_count=len(filtered),
        query=query,
        emotions=emotions,
        domains=domains,
        min_score=min_score,
        max_score=max_score,
        emotion_tags=EMOTION_TAGS,
        domain_tags=DOMAIN_TAGS,
        reports=storage.reports.all(),
        report_titles=REPORT_TITLES,
        date_label=lambda d: date_label(d, today),
        emotion_color=emotion_color,
    )


@bp.route("/review/entries/<entry_id>/delete", methods=["POST"])
@require_unlock
def delete_entry(entry_id):
    storage.diary_entries.remove(entry_id)
    flash("日记已删除")
    return redirect(url_for("review.review_page", view=request.form.get("view") or "calendar"))


def _render_report(report_type: str, data: dict | None, saved: bool, error: str = "", status: int = 200):
    period = data or current_period(date.today())
    return render_template(
        "report.html",
        tab="review",
        report_type=report_type,
        title=report_title(report_type, period),
        report=data,
        report_json=json.dumps(data, ensure_ascii=False) if data else "",
        saved=saved,
        error=error,
        emotion_color=emotion_color,
    ), status


@bp.route("/review/report/<report_type>", methods=["GET"])
@require_unlock
def report_page(report_type):
    if report_type not in report.REPORT_TYPES:
        abort(404)
    period = current_period(date.today())
    existing = storage.reports.find(
        report_type, period_year(report_type, period), period["weekNumber"], period["month"]
    )
    return _render_report(report_type, existing["data"] if existing else None, saved=existing is not None)


@bp.route("/review/report/<report_type>/generate", methods=["POST"])
@require_unlock
def generate_report(report_type):
    if report_type not in report.REPORT_TYPES:
        abort(404)
    period = current_period(date.today())
    year = period_year(report_type, period)
    entries = entries_in_period(
        storage.diary_entries.all(), report_type, year, period["weekNumber"], period["month"]
    )
    try:
        data = report.generate_report(report_type, entries, year, period["weekNumber"], period["month"])
    except report.ReportInputError as e:
        return _render_report(report_type, None, False, str(e), 400)
    except ai.AIServiceError as e:
        logger.error("[review] report generation failed: %s", e)
        return _render_report(report_type, None, False, "生成报告失败", 500)
    return _render_report(report_type, data, saved=False)


@bp.route("/review/report/<report_type>/save", methods=["POST"])
@require_unlock
def save_report(report_type):
    if report_type not in report.REPORT_TYPES:
        abort(404)
    try:
        data = json.loads(request.form.get("report") or "")
    except json.JSONDecodeError:
        abort(400)
    if not isinstance(data, dict) or data.get("type") != report_type:
        abort(400)
    try:
        storage.reports.save(
            report_type,
            data.get("year"),
            data,
            week_number=data.get("weekNumber"),
            month=data.get("month"),
        )
    except storage.InvalidRequest:
        abort(400)
    flash("报告已保存")
    return redirect(url_for("review.report_page", report_type=report_type))


@bp.route("/review/reports/<report_id>", methods=["GET"])
@require_unlock
def saved_report(report_id):
    match = next((r for r in storage.reports.all() if r["id"] == report_id), None)
    if match is None:
        abort(404)
    return _render_report(match["type"], match["data"], saved=True)
