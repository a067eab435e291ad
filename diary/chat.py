"""
Conversational journaling: persona prompt + transcript → model reply.
"""
import logging

from diary import ai

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """你是一个温暖、专业的日记助手。用户会和你分享他们的日常、感受、想法。

你的任务：
1. 友善地与用户对话，了解他们的一天
2. 帮助用户整理思绪，表达内心感受
3. 适时追问，帮助用户深化思考
4. 当用户表示想说的话说完了，主动提议整理成日记

对话风格：
- 温暖、支持、理解
- 不要过于冗长，回复简洁有温度
- 适时使用emoji增加亲和力
- 如果用户分享困难，给予安慰和支持
- 如果用户分享成就，给予肯定和祝贺

当用户说类似"今天就这些了"、"说完了"、"可以整理了"等表示结束的话时，回复：
"好的，让我帮你整理今天的日记..." 然后总结用户今天分享的内容。"""

TEMPERATURE = 0.8
MAX_TOKENS = 1000

# Phrases in an assistant reply that mean "ready to turn this into a diary".
CLOSING_PHRASES = ("整理今天的日记", "帮你整理")


def is_closing_reply(content: str) -> bool:
    return any(p in (content or "") for p in CLOSING_PHRASES)


def build_messages(messages: list) -> list:
    """Persona prompt followed by the user/assistant transcript."""
    out = [{"role": "system", "content": SYSTEM_PROMPT}]
    for m in messages:
        role = m.get("role") if isinstance(m, dict) else None
        if role not in ("user", "assistant"):
            role = "user"
        content = m.get("content") if isinstance(m, dict) else m
        out.append({"role": role, "content": str(content or "")})
    return out


def reply(messages: list) -> str:
    """Return the assistant's reply. Raises AIServiceError on failure or empty output."""
    content = ai.complete(build_messages(messages), temperature=TEMPERATURE, max_tokens=MAX_TOKENS)
    if not content:
        raise ai.AIServiceError("AI 返回内容为空")
    return content
