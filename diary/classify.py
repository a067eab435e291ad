"""
Diary classification: emotion tags, life domains, event types and scores.
"""
import logging

from diary import ai
from diary.security import clamp_int

logger = logging.getLogger(__name__)

EMOTION_TAGS = (
    "开心", "平静", "焦虑", "低落", "愤怒", "感恩", "释然", "兴奋", "疲惫", "满足",
    "紧张", "放松", "感动", "失落", "期待", "安心", "迷茫", "自信",
)
DOMAIN_TAGS = ("工作", "家庭", "健康", "学习", "社交", "娱乐", "财务", "旅行", "爱好", "日常")
EVENT_TYPES = ("成就", "困难", "感悟", "计划", "回忆", "决策", "日常", "突破", "挑战")

DEFAULT_CLASSIFICATION = {
    "emotionTags": ["平静"],
    "domains": ["日常"],
    "eventTypes": ["日常"],
    "emotionScore": 5,
    "importance": 2,
    "summary": "今天的一天",
}

SYSTEM_PROMPT = f"""你是一个情感分析专家。请分析用户日记内容，返回JSON格式的分类结果。

返回格式（必须是有效的JSON）：
{{
  "emotionTags": ["情绪标签数组，从以下选项中选择1-3个"],
  "domains": ["生活领域数组，从以下选项中选择1-3个"],
  "eventTypes": ["事件类型数组，从以下选项中选择1-2个"],
  "emotionScore": 数字1-10表示整体情绪（1最差，10最好）,
  "importance": 数字1-5表示事件重要程度（1日常琐事，5人生大事）,
  "summary": "一句话总结今天日记的核心内容"
}}

情绪标签选项：{"、".join(EMOTION_TAGS)}
生活领域选项：{"、".join(DOMAIN_TAGS)}
事件类型选项：{"、".join(EVENT_TYPES)}

只返回JSON，不要任何其他文字或markdown格式。"""


def default_classification() -> dict:
    return {k: (list(v) if isinstance(v, list) else v) for k, v in DEFAULT_CLASSIFICATION.items()}


def _tags(value, limit: int, default: list) -> list:
    if not isinstance(value, list):
        return list(default)
    tags = [str(t).strip() for t in value if isinstance(t, (str, int, float)) and str(t).strip()]
    return tags[:limit] or list(default)


def normalize(raw: dict) -> dict:
    """Fill missing fields and clamp scores so the result always fits the Classification shape."""
    d = DEFAULT_CLASSIFICATION
    summary = raw.get("summary")
    return {
        "emotionTags": _tags(raw.get("emotionTags"), 3, d["emotionTags"]),
        "domains": _tags(raw.get("domains"), 3, d["domains"]),
        "eventTypes": _tags(raw.get("eventTypes"), 2, d["eventTypes"]),
        "emotionScore": clamp_int(raw.get("emotionScore") or d["emotionScore"], 1, 10, default=d["emotionScore"]),
        "importance": clamp_int(raw.get("importance") or d["importance"], 1, 5, default=d["importance"]),
        "summary": summary.strip() if isinstance(summary, str) and summary.strip() else d["summary"],
    }


def classify_text(content: str) -> tuple[dict, bool]:
    """Classify diary text. Returns (classification, used_fallback).

    Raises AIServiceError if the model can't be reached; a reply that isn't
    valid JSON is not an error and yields the default classification.
    """
    raw = ai.complete(
        [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"请分析以下日记内容：\n\n{content}"},
        ],
        temperature=0.3,
        max_tokens=500,
    )
    result = ai.parse_json_object(raw, DEFAULT_CLASSIFICATION)
    if isinstance(result, ai.Fallback):
        logger.warning("[classify] using default classification: %s", result.reason)
    return normalize(result.value), result.fallback
