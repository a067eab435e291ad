"""
Weekly / monthly / yearly reports: local statistics plus model-written narrative.
"""
import logging
import math
import re
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone

from diary import ai

logger = logging.getLogger(__name__)

REPORT_TYPES = ("weekly", "monthly", "yearly")

# Entries sent to the model, per period.
DIGEST_LIMITS = {"weekly": 7, "monthly": 15, "yearly": 30}
MAX_TOKENS = {"weekly": 800, "monthly": 1000, "yearly": 1200}

MOOD_BANDS = (
    ("低落(1-3)", 1, 3),
    ("平静(4-6)", 4, 6),
    ("良好(7-8)", 7, 8),
    ("愉快(9-10)", 9, 10),
)

KEYWORD_SPLIT = re.compile(r"\s+|，|。|！|？|、")

FALLBACK_NARRATIVE = {
    "weekly": {
        "highlights": ["本周完成了日记记录"],
        "challenges": ["继续保持记录习惯"],
        "aiInsight": "本周的记录展现了你对生活的关注，继续保持！",
        "nextWeekPlan": ["继续记录每天的心情"],
    },
    "monthly": {
        "highlights": ["本月完成了日记记录"],
        "challenges": [],
        "growth": ["保持记录习惯"],
        "aiInsight": "本月的记录展现了你对生活的关注，继续保持！",
        "nextMonthFocus": ["继续记录每天的心情"],
    },
    "yearly": {
        "yearlyHighlights": ["完成了本年度的日记记录"],
        "yearlyChallenges": [],
        "personalGrowth": "这一年你坚持记录，见证了生活的点滴。",
        "gratitudeList": ["感谢自己的坚持"],
        "aiInsight": "感谢这一年的陪伴，愿你继续记录美好。",
        "nextYearWishes": ["继续保持记录习惯"],
    },
}

NARRATIVE_FORMAT = {
    "weekly": """{
  "highlights": ["本周亮点1", "本周亮点2", "本周亮点3"],
  "challenges": ["挑战1", "挑战2"],
  "aiInsight": "AI洞察与建议（一段话，100字左右）",
  "nextWeekPlan": ["建议1", "建议2", "建议3"]
}""",
    "monthly": """{
  "highlights": ["本月亮点1", "本月亮点2"],
  "challenges": ["挑战1", "挑战2"],
  "growth": ["成长进步1", "成长进步2"],
  "aiInsight": "AI洞察与建议（一段话，150字左右）",
  "nextMonthFocus": ["下月重点1", "下月重点2"]
}""",
    "yearly": """{
  "yearlyHighlights": ["年度高光时刻1", "年度高光时刻2", "年度高光时刻3"],
  "yearlyChallenges": ["年度挑战1", "年度挑战2"],
  "personalGrowth": "个人成长总结（一段话，200字左右）",
  "gratitudeList": ["感恩的人或事1", "感恩的人或事2", "感恩的人或事3"],
  "aiInsight": "AI年度洞察（一段话，150字左右）",
  "nextYearWishes": ["新年愿望1", "新年愿望2", "新年愿望3"]
}""",
}

PERIOD_LABELS = {"weekly": "本周", "monthly": "本月", "yearly": "本年度"}


class ReportInputError(ValueError):
    """Request can't produce a report (bad type, no classified entries)."""


def report_id(report_type: str, year, week_number=None, month=None) -> str:
    """Identity key shared by the generator and the report store."""
    if report_type == "weekly":
        return f"weekly_{year}_{week_number}"
    if report_type == "monthly":
        return f"monthly_{year}_{month}"
    return f"yearly_{year}"


def _score(entry: dict):
    c = entry.get("classification") or {}
    s = c.get("emotionScore")
    if isinstance(s, bool) or not isinstance(s, (int, float)) or not s:
        return None
    return s


def average(scores: list) -> float:
    if not scores:
        return 0
    return math.floor(sum(scores) / len(scores) * 10 + 0.5) / 10


def _parse_date(value: str) -> date | None:
    try:
        return date.fromisoformat(str(value)[:10])
    except (TypeError, ValueError):
        return None


def classified(entries: list) -> list:
    return [e for e in entries if isinstance(e, dict) and isinstance(e.get("classification"), dict) and e["classification"]]


def calculate_stats(entries: list) -> dict:
    """Counts and averages over classified entries. Ties keep first-seen order."""
    emotions = Counter()
    domains = Counter()
    keywords = Counter()
    scores = []

    for e in entries:
        c = e.get("classification") or {}
        emotions.update(c.get("emotionTags") or [])
        domains.update(c.get("domains") or [])
        s = _score(e)
        if s is not None:
            scores.append(s)
        summary = e.get("summary")
        if summary:
            keywords.update(w for w in KEYWORD_SPLIT.split(summary) if 2 <= len(w) <= 4)

    return {
        "totalEntries": len(entries),
        "avgEmotionScore": average(scores),
        "topEmotions": [{"tag": t, "count": n} for t, n in emotions.most_common(5)],
        "topDomains": [{"tag": t, "count": n} for t, n in domains.most_common(5)],
        "topKeywords": [{"word": w, "count": n} for w, n in keywords.most_common(10)],
    }


def _bucket_scores(entries: list, key) -> dict:
    groups = defaultdict(list)
    for e in entries:
        s = _score(e)
        d = _parse_date(e.get("date"))
        if s is not None and d is not None:
            groups[key(d)].append(s)
    return groups


def weekly_trend(entries: list) -> list:
    """Average score per week-of-month (days 1-7 → week 1, ...)."""
    groups = _bucket_scores(entries, lambda d: math.ceil(d.day / 7))
    return [{"week": w, "avgScore": average(groups[w])} for w in sorted(groups)]


def monthly_trend(entries: list) -> list:
    groups = _bucket_scores(entries, lambda d: d.month)
    return [{"month": m, "avgScore": average(groups[m])} for m in sorted(groups)]


def mood_distribution(entries: list) -> list:
    counts = [0] * len(MOOD_BANDS)
    for e in entries:
        s = _score(e) or 5
        for i, (_, low, high) in enumerate(MOOD_BANDS):
            if s <= high or i == len(MOOD_BANDS) - 1:
                counts[i] += 1
                break
    return [{"range": label, "count": counts[i]} for i, (label, _, _) in enumerate(MOOD_BANDS)]


def milestones(entries: list) -> list:
    out = []
    for e in entries:
        if ((e.get("classification") or {}).get("importance") or 0) >= 4:
            out.append(e.get("summary") or (e.get("content") or "")[:50])
        if len(out) == 5:
            break
    return out


def iso_week_range(year: int, week_number: int) -> dict:
    """Monday..Sunday of an ISO week."""
    try:
        start = date.fromisocalendar(int(year), int(week_number), 1)
    except (TypeError, ValueError):
        today = date.today()
        start = today - timedelta(days=today.weekday())
    end = start + timedelta(days=6)
    return {"start": start.isoformat(), "end": end.isoformat()}


def build_digest(entries: list, limit: int) -> str:
    lines = []
    for e in entries[:limit]:
        text = e.get("summary") or (e.get("content") or "")[:100]
        lines.append(f"- {e.get('date')}: {text}")
    return "\n".join(lines)


def build_prompt(report_type: str, entries: list, stats: dict, total_days: int = None) -> str:
    label = PERIOD_LABELS[report_type]
    period_title = {"weekly": "周报", "monthly": "月报", "yearly": "年报"}[report_type]
    digest_title = f"{label}日记概要（部分）" if report_type == "yearly" else f"{label}日记概要"
    lines = [
        f"你是一个日记助手。请根据用户{label}的日记数据生成{period_title}。",
        "",
        f"{digest_title}：",
        build_digest(entries, DIGEST_LIMITS[report_type]),
        "",
        "统计数据：",
        f"- 日记数量：{stats['totalEntries']}篇",
    ]
    if total_days is not None:
        lines.append(f"- 记录天数：{total_days}天")
    top_emotions = "、".join("%s(%d次)" % (e["tag"], e["count"]) for e in stats["topEmotions"])
    top_domains = "、".join("%s(%d次)" % (d["tag"], d["count"]) for d in stats["topDomains"])
    lines += [
        f"- 平均情绪：{stats['avgEmotionScore']}/10",
        f"- 主要情绪：{top_emotions}",
        f"- 关注领域：{top_domains}",
        "",
        "请以JSON格式返回：",
        NARRATIVE_FORMAT[report_type],
        "",
        "只返回JSON，不要其他文字。",
    ]
    return "\n".join(lines)


def _narrative(report_type: str, prompt: str) -> dict:
    raw = ai.complete(
        [{"role": "user", "content": prompt}],
        temperature=0.7,
        max_tokens=MAX_TOKENS[report_type],
    )
    result = ai.parse_json_object(raw, FALLBACK_NARRATIVE[report_type])
    if isinstance(result, ai.Fallback):
        logger.warning("[report] %s narrative fallback: %s", report_type, result.reason)
    return result.value


def _list(value) -> list:
    if isinstance(value, list):
        return [v if isinstance(v, str) else str(v) for v in value]
    if isinstance(value, str) and value:
        return [value]
    return []


def _text(value) -> str:
    return value if isinstance(value, str) else ""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def generate_report(report_type: str, entries, year=None, week_number=None, month=None) -> dict:
    """Build a period report. Raises ReportInputError or ai.AIServiceError."""
    if report_type not in REPORT_TYPES:
        raise ReportInputError("Invalid report type")
    valid = classified(entries)
    if not valid:
        raise ReportInputError("没有足够的数据生成报告")

    now = datetime.now()
    year = year or now.year
    stats = calculate_stats(valid)

    if report_type == "weekly":
        week_number = week_number or now.isocalendar()[1]
        n = _narrative(report_type, build_prompt(report_type, valid, stats))
        return {
            "id": report_id("weekly", year, week_number),
            "type": "weekly",
            "year": year,
            "weekNumber": week_number,
            "dateRange": iso_week_range(year, week_number),
            "stats": stats,
            "highlights": _list(n.get("highlights")),
            "challenges": _list(n.get("challenges")),
            "aiInsight": _text(n.get("aiInsight")),
            "nextWeekPlan": _list(n.get("nextWeekPlan")),
            "createdAt": _now_iso(),
        }

    if report_type == "monthly":
        month = month or now.month
        n = _narrative(report_type, build_prompt(report_type, valid, stats))
        return {
            "id": report_id("monthly", year, month=month),
            "type": "monthly",
            "year": year,
            "month": month,
            "stats": {
                **stats,
                "emotionTrend": weekly_trend(valid),
                "moodDistribution": mood_distribution(valid),
            },
            "highlights": _list(n.get("highlights")),
            "challenges": _list(n.get("challenges")),
            "growth": _list(n.get("growth")),
            "aiInsight": _text(n.get("aiInsight")),
            "nextMonthFocus": _list(n.get("nextMonthFocus")),
            "createdAt": _now_iso(),
        }

    total_days = len({e.get("date") for e in valid})
    n = _narrative(report_type, build_prompt(report_type, valid, stats, total_days=total_days))
    return {
        "id": report_id("yearly", year),
        "type": "yearly",
        "year": year,
        "stats": {
            "totalEntries": stats["totalEntries"],
            "totalDays": total_days,
            "avgEmotionScore": stats["avgEmotionScore"],
            "monthlyTrend": monthly_trend(valid),
            "topEmotions": stats["topEmotions"],
            "topDomains": stats["topDomains"],
            "milestones": milestones(valid),
        },
        "yearlyHighlights": _list(n.get("yearlyHighlights")),
        "yearlyChallenges": _list(n.get("yearlyChallenges")),
        "personalGrowth": _text(n.get("personalGrowth")),
        "gratitudeList": _list(n.get("gratitudeList")),
        "aiInsight": _text(n.get("aiInsight")),
        "nextYearWishes": _list(n.get("nextYearWishes")),
        "createdAt": _now_iso(),
    }
