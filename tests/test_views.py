"""
Server-rendered UI: lock screen, chat, review / reports, settings.
"""
import io
import json
from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from conftest import make_entry
from diary import ai, config, report, storage
from diary.security import UNLOCK_COOKIE, hash_passcode, verify_passcode
from diary.views import chat as chat_view
from diary.views import review as review_view

CLASSIFIED = json.dumps({
    "emotionTags": ["满足"], "domains": ["社交"], "eventTypes": ["日常"],
    "emotionScore": 8, "importance": 3, "summary": "和老朋友吃了顿火锅",
}, ensure_ascii=False)


def today():
    return date.today().isoformat()


def set_passcode(code="123456", biometric=False):
    storage.settings.save(hash_passcode(code), biometric_enabled=biometric)


# ═══════════════════════════════════════════════
# 1. LOCK SCREEN
# ═══════════════════════════════════════════════

class TestLock:
    def test_pages_redirect_when_locked(self, client):
        for path in ("/chat", "/review", "/settings"):
            r = client.get(path)
            assert r.status_code == 302
            assert r.headers["Location"].endswith("/lock")

    def test_first_run_shows_setup(self, client):
        r = client.get("/lock")
        assert r.status_code == 200
        assert "设置密码" in r.get_data(as_text=True)

    def test_setup_then_confirm(self, client):
        r = client.post("/lock", data={"passcode": "123456"})
        assert r.status_code == 302
        assert "确认密码" in client.get("/lock").get_data(as_text=True)

        r = client.post("/lock", data={"passcode": "123456"})
        assert r.status_code == 302
        assert r.headers["Location"].endswith("/chat")
        assert UNLOCK_COOKIE in r.headers.get("Set-Cookie", "")

        stored = storage.settings.load()
        assert stored["password"] != "123456"
        assert verify_passcode("123456", stored["password"])
        assert client.get("/chat").status_code == 200

    def test_confirm_mismatch_restarts_setup(self, client):
        client.post("/lock", data={"passcode": "123456"})
        r = client.post("/lock", data={"passcode": "654321"})
        assert r.status_code == 400
        assert "两次密码不一致，请重新设置" in r.get_data(as_text=True)
        assert storage.settings.load() is None
        assert "设置密码" in client.get("/lock").get_data(as_text=True)

    @pytest.mark.parametrize("code", ["", "12345", "abcdef", "1234567"])
    def test_rejects_malformed_passcode(self, client, code):
        r = client.post("/lock", data={"passcode": code})
        assert r.status_code == 400
        assert "请输入6位数字密码" in r.get_data(as_text=True)

    def test_unlock(self, client):
        set_passcode()
        assert "输入密码" in client.get("/lock").get_data(as_text=True)
        r = client.post("/lock", data={"passcode": "000000"})
        assert r.status_code == 401
        assert "密码错误，请重试" in r.get_data(as_text=True)

        r = client.post("/lock", data={"passcode": "123456"})
        assert r.status_code == 302
        assert client.get("/chat").status_code == 200

    def test_unlock_rate_limited(self, client, monkeypatch):
        monkeypatch.setattr(config, "RATE_LIMIT_MAX", 2)
        set_passcode()
        assert client.post("/lock", data={"passcode": "000000"}).status_code == 401
        assert client.post("/lock", data={"passcode": "000000"}).status_code == 401
        r = client.post("/lock", data={"passcode": "123456"})
        assert r.status_code == 429

    def test_biometric_is_a_notice(self, client):
        set_passcode(biometric=True)
        assert "使用生物识别解锁" in client.get("/lock").get_data(as_text=True)
        r = client.post("/lock/biometric", follow_redirects=True)
        assert "生物识别功能需要原生App支持" in r.get_data(as_text=True)

    def test_lock_now(self, unlocked):
        set_passcode()
        assert unlocked.get("/chat").status_code == 200
        unlocked.post("/lock/now")
        assert unlocked.get("/chat").status_code == 302

    def test_root_goes_to_chat(self, unlocked):
        r = unlocked.get("/")
        assert r.headers["Location"].endswith("/chat")


# ═══════════════════════════════════════════════
# 2. CHAT
# ═══════════════════════════════════════════════

class TestChatView:
    def test_welcome(self, unlocked):
        r = unlocked.get("/chat")
        text = r.get_data(as_text=True)
        assert r.status_code == 200
        assert "想记录点什么吗" in text
        assert "今天发生了什么开心的事？" in text

    def test_greeting_by_hour(self):
        assert chat_view.greeting(3) == "夜深了，还没休息吗？"
        assert chat_view.greeting(9) == "早上好！"
        assert chat_view.greeting(13) == "中午好！"
        assert chat_view.greeting(16) == "下午好！"
        assert chat_view.greeting(21) == "晚上好！"

    def test_conversation_persists(self, unlocked, model):
        model.queue("听起来很棒！还有呢？")
        unlocked.post("/chat/send", data={"message": "今天跑了5公里"})
        log = storage.chat_messages.load(today())
        assert [m["role"] for m in log] == ["assistant", "user", "assistant"]
        assert log[1]["content"] == "今天跑了5公里"
        assert all(m["id"].startswith("msg_") for m in log)
        assert "听起来很棒！还有呢？" in unlocked.get("/chat").get_data(as_text=True)

    def test_empty_message_ignored(self, unlocked, model):
        unlocked.post("/chat/send", data={"message": "   "})
        assert model.calls == []
        assert storage.chat_messages.load(today()) is None

    def test_closing_reply_offers_save(self, unlocked, model):
        model.queue("好的，让我帮你整理今天的日记...", CLASSIFIED)
        unlocked.post("/chat/send", data={"message": "今天就这些了"})
        page = unlocked.get("/chat").get_data(as_text=True)
        assert "保存今天的日记？" in page
        assert "和老朋友吃了顿火锅" in page

        unlocked.post("/chat/save")
        entry = storage.diary_entries.by_date(today())
        assert entry["summary"] == "和老朋友吃了顿火锅"
        assert entry["content"] == "今天就这些了"
        assert entry["classification"]["emotionScore"] == 8
        assert len(entry["conversation"]) == 3
        assert storage.chat_messages.load(today())[-1]["content"] == chat_view.SAVED_MESSAGE
        assert "保存今天的日记？" not in unlocked.get("/chat").get_data(as_text=True)

    def test_resave_keeps_entry_identity(self, unlocked, model):
        model.queue("好的，让我帮你整理今天的日记...", CLASSIFIED)
        unlocked.post("/chat/send", data={"message": "第一次"})
        unlocked.post("/chat/save")
        first = storage.diary_entries.by_date(today())

        model.queue("好的，让我帮你整理今天的日记...", CLASSIFIED)
        unlocked.post("/chat/send", data={"message": "补充一点"})
        unlocked.post("/chat/save")
        second = storage.diary_entries.by_date(today())
        assert second["id"] == first["id"]
        assert second["createdAt"] == first["createdAt"]
        assert "补充一点" in second["content"]

    def test_classification_failure_uses_default(self, unlocked, model):
        model.queue("好的，让我帮你整理今天的日记...", ai.AIServiceError("timeout"))
        unlocked.post("/chat/send", data={"message": "今天就这些了"})
        unlocked.post("/chat/save")
        entry = storage.diary_entries.by_date(today())
        assert entry["summary"] == "今天的日记"
        assert entry["classification"]["emotionTags"] == ["平静"]

    def test_organize_button_offers_save(self, unlocked, model):
        assert "整理日记" not in unlocked.get("/chat").get_data(as_text=True)
        model.queue("听起来很棒！还有呢？")
        unlocked.post("/chat/send", data={"message": "今天和老朋友吃了火锅"})
        page = unlocked.get("/chat").get_data(as_text=True)
        assert "整理日记" in page
        assert "保存今天的日记？" not in page

        model.queue(CLASSIFIED)
        unlocked.post("/chat/organize")
        page = unlocked.get("/chat").get_data(as_text=True)
        assert "保存今天的日记？" in page
        assert "和老朋友吃了顿火锅" in page
        assert "整理日记" not in page
        assert "今天和老朋友吃了火锅" in model.calls[-1]["messages"][-1]["content"]

    def test_dismiss(self, unlocked, model):
        model.queue("好的，让我帮你整理今天的日记...", CLASSIFIED)
        unlocked.post("/chat/send", data={"message": "今天就这些了"})
        unlocked.post("/chat/dismiss")
        assert "保存今天的日记？" not in unlocked.get("/chat").get_data(as_text=True)
        assert storage.diary_entries.by_date(today()) is None

    def test_model_failure_keeps_draft(self, unlocked, model):
        model.queue(ai.AIServiceError("网络错误"))
        r = unlocked.post("/chat/send", data={"message": "今天好累"}, follow_redirects=True)
        text = r.get_data(as_text=True)
        assert "抱歉，遇到了一些问题：网络错误~" in text
        assert ">今天好累</textarea>" in text
        assert storage.chat_messages.load(today()) is None

    def test_voice_fills_draft(self, unlocked, monkeypatch):
        reply = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="下班路上看到了晚霞"))])
        fake = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=lambda **kw: reply)))
        monkeypatch.setattr(ai, "get_client", lambda: fake)
        r = unlocked.post("/chat/voice", data={"audio": (io.BytesIO(b"RIFF...."), "voice.wav")},
                          content_type="multipart/form-data", follow_redirects=True)
        assert ">下班路上看到了晚霞</textarea>" in r.get_data(as_text=True)

    def test_voice_unsupported_format(self, unlocked, monkeypatch):
        monkeypatch.setattr(ai, "get_client", lambda: pytest.fail("should not call out"))
        r = unlocked.post("/chat/voice", data={"audio": (io.BytesIO(b"FORM"), "voice.aiff")},
                          content_type="multipart/form-data", follow_redirects=True)
        assert "不支持的录音格式：aiff" in r.get_data(as_text=True)

    def test_voice_without_audio(self, unlocked):
        r = unlocked.post("/chat/voice", data={}, content_type="multipart/form-data", follow_redirects=True)
        assert "没有收到录音" in r.get_data(as_text=True)

    def test_clear(self, unlocked, model):
        model.queue("嗯嗯")
        unlocked.post("/chat/send", data={"message": "你好"})
        unlocked.post("/chat/clear")
        assert storage.chat_messages.load(today()) is None


# ═══════════════════════════════════════════════
# 3. REVIEW
# ═══════════════════════════════════════════════

class TestReviewHelpers:
    ENTRIES = [
        make_entry("2026-03-10", score=9, emotions=("开心",), domains=("社交",), summary="吃火锅"),
        make_entry("2026-03-09", score=3, emotions=("疲惫", "焦虑"), domains=("工作",), summary="加班到很晚"),
        make_entry("2026-02-20", score=6, emotions=("平静",), domains=("家庭",), summary="回家看爸妈"),
    ]

    def _summaries(self, **kwargs):
        return [e["summary"] for e in review_view.filter_entries(self.ENTRIES, **kwargs)]

    def test_search_matches_text_and_tags(self):
        assert self._summaries(query="火锅") == ["吃火锅"]
        assert self._summaries(query="焦虑") == ["加班到很晚"]

    def test_tag_filters(self):
        assert self._summaries(emotions=["开心", "平静"]) == ["吃火锅", "回家看爸妈"]
        assert self._summaries(domains=["工作"]) == ["加班到很晚"]

    def test_score_range(self):
        assert self._summaries(min_score=5, max_score=8) == ["回家看爸妈"]

    def test_overview_average_rounds_half_up(self):
        entries = [make_entry("2026-03-09", score=2), make_entry("2026-03-10", score=2.5)]
        assert review_view.overview_stats(entries, [])["avgScore"] == 2.3

    def test_group_by_month(self):
        groups = review_view.group_by_month(self.ENTRIES)
        assert [label for label, _ in groups] == ["2026年3月", "2026年2月"]
        assert len(groups[0][1]) == 2

    def test_date_label(self):
        now = date(2026, 3, 10)
        assert review_view.date_label("2026-03-10", now) == "今天"
        assert review_view.date_label("2026-03-09", now) == "昨天"
        assert review_view.date_label("2026-03-01", now) == "3月1日 周日"

    def test_month_grid_starts_monday(self):
        grid = review_view.month_grid(2026, 3, {e["date"]: e for e in self.ENTRIES})
        assert grid[0][0]["date"] == "2026-02-23"
        cell = next(c for row in grid for c in row if c["date"] == "2026-03-09")
        assert cell["color"] == "red"

    def test_shift_month(self):
        assert review_view.shift_month(2026, 1, -1) == "2025-12"
        assert review_view.shift_month(2026, 12, 1) == "2027-01"

    def test_entries_in_period(self):
        weekly = review_view.entries_in_period(self.ENTRIES, "weekly", 2026, week_number=11)
        assert [e["date"] for e in weekly] == ["2026-03-10", "2026-03-09"]
        monthly = review_view.entries_in_period(self.ENTRIES, "monthly", 2026, month=2)
        assert [e["date"] for e in monthly] == ["2026-02-20"]

    def test_weekly_period_uses_iso_year(self):
        period = review_view.current_period(date(2025, 12, 30))
        assert review_view.period_year("weekly", period) == 2026
        assert review_view.period_year("monthly", period) == 2025


class TestReviewView:
    def test_calendar(self, unlocked):
        storage.diary_entries.save(make_entry(today(), summary="吃火锅"))
        r = unlocked.get("/review")
        text = r.get_data(as_text=True)
        assert r.status_code == 200
        assert "吃火锅" in text
        assert "今天" in text

    def test_timeline_search(self, unlocked):
        storage.diary_entries.save(make_entry(today(), summary="吃火锅"))
        yesterday = (date.today() - timedelta(days=1)).isoformat()
        storage.diary_entries.save(make_entry(yesterday, summary="加班到很晚"))
        text = unlocked.get("/review?view=timeline&q=火锅").get_data(as_text=True)
        assert "吃火锅" in text
        assert "加班到很晚" not in text

    def test_bad_params_fall_back(self, unlocked):
        assert unlocked.get("/review?date=2026-13-01&month=abc&min=x").status_code == 200

    def test_delete(self, unlocked):
        storage.diary_entries.save(make_entry(today()))
        r = unlocked.post(f"/review/entries/diary_{today()}/delete")
        assert r.status_code == 302
        assert storage.diary_entries.all() == []


class TestReportView:
    NARRATIVE = '{"highlights": ["坚持记录"], "challenges": [], "aiInsight": "继续加油", "nextWeekPlan": ["早睡"]}'

    def test_unknown_type(self, unlocked):
        assert unlocked.get("/review/report/daily").status_code == 404

    def test_empty_state(self, unlocked):
        r = unlocked.get("/review/report/weekly")
        assert r.status_code == 200
        assert "还没有生成" in r.get_data(as_text=True)

    def test_generate_without_entries(self, unlocked, model):
        r = unlocked.post("/review/report/weekly/generate")
        assert r.status_code == 400
        assert "没有足够的数据生成报告" in r.get_data(as_text=True)

    def test_generate_only_uses_current_period(self, unlocked, model):
        storage.diary_entries.save(make_entry(today(), score=8))
        storage.diary_entries.save(make_entry("2000-01-03", score=2))
        model.queue(self.NARRATIVE)
        r = unlocked.post("/review/report/weekly/generate")
        text = r.get_data(as_text=True)
        assert r.status_code == 200
        assert "坚持记录" in text
        assert "保存报告" in text
        assert "2000-01-03" not in model.calls[0]["messages"][0]["content"]

    def test_generate_failure(self, unlocked, model):
        storage.diary_entries.save(make_entry(today()))
        model.queue(ai.AIServiceError("down"))
        r = unlocked.post("/review/report/monthly/generate")
        assert r.status_code == 500
        assert "生成报告失败" in r.get_data(as_text=True)

    def test_save_and_reopen(self, unlocked, model):
        model.queue('{"highlights": ["h"], "challenges": [], "growth": ["g"], "aiInsight": "i", "nextMonthFocus": ["f"]}')
        data = report.generate_report("monthly", [make_entry("2026-03-09")], year=2026, month=3)
        r = unlocked.post("/review/report/monthly/save", data={"report": json.dumps(data, ensure_ascii=False)})
        assert r.status_code == 302
        assert [x["id"] for x in storage.reports.all()] == ["monthly_2026_3"]

        r = unlocked.get("/review/reports/monthly_2026_3")
        assert r.status_code == 200
        assert "3月月报" in r.get_data(as_text=True)
        assert "月报" in unlocked.get("/review").get_data(as_text=True)

    def test_save_rejects_bad_payload(self, unlocked):
        assert unlocked.post("/review/report/weekly/save", data={"report": "{oops"}).status_code == 400
        mismatched = json.dumps({"type": "monthly", "year": 2026, "month": 3})
        assert unlocked.post("/review/report/weekly/save", data={"report": mismatched}).status_code == 400

    def test_missing_saved_report(self, unlocked):
        assert unlocked.get("/review/reports/weekly_1999_1").status_code == 404


# ═══════════════════════════════════════════════
# 4. SETTINGS
# ═══════════════════════════════════════════════

class TestSettingsView:
    def test_page(self, unlocked):
        set_passcode()
        r = unlocked.get("/settings")
        assert r.status_code == 200
        assert "修改密码" in r.get_data(as_text=True)

    def test_change_passcode(self, unlocked):
        set_passcode()
        r = unlocked.post("/settings/password", data={"current": "123456", "new": "111111", "confirm": "111111"},
                          follow_redirects=True)
        assert "密码修改成功！" in r.get_data(as_text=True)
        assert verify_passcode("111111", storage.settings.load()["password"])

    @pytest.mark.parametrize("form, message", [
        ({"current": "", "new": "111111", "confirm": "111111"}, "请填写所有字段"),
        ({"current": "123456", "new": "1111", "confirm": "1111"}, "新密码必须是6位数字"),
        ({"current": "123456", "new": "111111", "confirm": "222222"}, "两次输入的新密码不一致"),
        ({"current": "999999", "new": "111111", "confirm": "111111"}, "当前密码错误"),
    ])
    def test_change_passcode_errors(self, unlocked, form, message):
        set_passcode()
        r = unlocked.post("/settings/password", data=form, follow_redirects=True)
        assert message in r.get_data(as_text=True)
        assert verify_passcode("123456", storage.settings.load()["password"])

    def test_biometric_toggle(self, unlocked):
        set_passcode()
        unlocked.post("/settings/biometric", data={"enabled": "1"})
        assert storage.settings.load()["biometricEnabled"] is True
        unlocked.post("/settings/biometric", data={"enabled": "0"})
        assert storage.settings.load()["biometricEnabled"] is False
