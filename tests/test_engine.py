"""
Tests for the detection engine and its handlers.

These tests verify:
- Join bursts, suspicion handling and raid mode
- Spam escalation through the penalty ladder
- Content and link moderation
- Enforcement outcomes when the platform refuses or fails
- Event parsing and replay
"""

from __future__ import annotations

import asyncio
import io
import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from raidshield.adapters import LoggingAdapter
from raidshield.config import Config
from raidshield.engine import ShieldEngine
from raidshield.events import (
    LinkSubmitted,
    MemberJoined,
    MessagePosted,
    VoiceActionObserved,
    event_from_dict,
)
from raidshield.utils.database import DatabaseManager
from raidshield.utils.raid_mode import RaidTrigger

T0 = 1_700_000_000.0
DAY = 86400.0


class FakeClock:
    """Settable time source."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def db_path():
    """Path of a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    if os.path.exists(path):
        os.unlink(path)


def make_engine(db_path: str, adapter: LoggingAdapter | None = None, **overrides) -> ShieldEngine:
    config = Config(database_path=db_path, **overrides)
    return ShieldEngine(
        config,
        adapter if adapter is not None else LoggingAdapter(),
        db=DatabaseManager(db_path),
        clock=FakeClock(),
    )


def raider_join(i: int, community: str = "c1") -> MemberJoined:
    return MemberJoined(
        community=community,
        subject=f"raider{i}",
        account_created_at=T0 - DAY,
        has_avatar=False,
        username=f"new_user_acct_{i}",
        timestamp=T0 + i,
    )


def notices(adapter: LoggingAdapter, title: str) -> list:
    return [a for a in adapter.of_kind("notify") if a.message["title"] == title]


class TestHandlerLoading:
    """Tests for handler selection and dispatch."""

    def test_all_handlers_loaded_by_default(self, db_path: str) -> None:
        engine = make_engine(db_path)
        names = {type(h).__name__ for h in engine.handlers}
        assert names == {"AntiSpam", "AutoMod", "LinkFilter", "AntiRaid"}

    def test_disabled_handlers_not_loaded(self, db_path: str) -> None:
        engine = make_engine(db_path, enable_automod=False, enable_antiraid=False)
        names = {type(h).__name__ for h in engine.handlers}
        assert names == {"AntiSpam", "LinkFilter"}

    def test_failing_handler_does_not_stop_others(self, db_path: str) -> None:
        engine = make_engine(db_path, enable_antispam=False, enable_automod=False,
                             enable_linkfilter=False, enable_antiraid=False)
        seen: list = []

        class Broken:
            async def on_message_posted(self, event) -> None:
                raise RuntimeError("boom")

        class Recording:
            async def on_message_posted(self, event) -> None:
                seen.append(event)

        engine.add_handler(Broken())
        engine.add_handler(Recording())

        asyncio.run(engine.dispatch(MessagePosted("c1", "u1", "hello world", timestamp=T0)))

        assert len(seen) == 1


class TestAntiRaid:
    """Join burst and suspicious join scenarios."""

    def test_join_burst_enables_raid_mode(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            for i in range(6):
                await engine.dispatch(raider_join(i))
            await engine.drain()

            assert engine.is_raid_mode_active("c1") is True
            assert engine.get_raid_status("c1")["trigger"] == "auto"
            assert engine.raid.get_state("c1").trigger is RaidTrigger.AUTO

            entries = engine.get_suspicious_entries("c1")
            assert {e.subject for e in entries} == {f"raider{i}" for i in range(6)}
            assert all(e.score >= 7 for e in entries)
            assert set(engine.get_suspicious_subjects("c1")) == {e.subject for e in entries}

            assert len(adapter.of_kind("kick")) == 6
            assert len(notices(adapter, "Raid mode enabled")) == 1

            stats = engine.get_stats("c1")
            assert stats["raids_detected"] == 1
            assert stats["suspicious_joins"] == 6
            assert stats["kicks_issued"] == 6
            await engine.close()

        asyncio.run(scenario())

    def test_disable_resets_join_window(self, db_path: str) -> None:
        engine = make_engine(db_path)

        async def scenario() -> None:
            for i in range(6):
                await engine.dispatch(raider_join(i))

            assert await engine.disable_raid_mode("c1", "all clear") is True
            assert engine.get_join_stats("c1", T0 + 10)["last_minute"] == 0

            await engine.dispatch(raider_join(10))

            assert engine.is_raid_mode_active("c1") is False
            assert engine.get_join_stats("c1", T0 + 11)["last_minute"] == 1
            await engine.close()

        asyncio.run(scenario())

    def test_raid_action_quarantines_during_raid(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)
        engine.update_policy("c1", quarantine_role="quarantine", auto_kick_suspicious=False)

        async def scenario() -> None:
            await engine.enable_raid_mode("c1", reason="manual")
            await engine.dispatch(MemberJoined(
                community="c1",
                subject="newbie",
                account_created_at=T0 - DAY,
                has_avatar=True,
                username="newbie",
                timestamp=T0,
            ))
            await engine.drain()

            roles = adapter.of_kind("assign_role")
            assert [(r.subject, r.role_id) for r in roles] == [("newbie", "quarantine")]
            rows = engine.get_violations("c1", "newbie")
            assert [row["category"] for row in rows] == ["raid_join"]
            await engine.close()

        asyncio.run(scenario())

    def test_established_member_not_flagged(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            await engine.dispatch(MemberJoined(
                community="c1",
                subject="regular",
                account_created_at=T0 - 400 * DAY,
                has_avatar=True,
                username="regular",
                timestamp=T0,
            ))
            await engine.drain()
            assert engine.get_suspicious_subjects("c1") == []
            assert adapter.actions == []
            await engine.close()

        asyncio.run(scenario())

    def test_join_stats(self, db_path: str) -> None:
        engine = make_engine(db_path)
        engine.update_policy("c1", join_threshold=100)

        async def scenario() -> None:
            for offset in (0.0, 100.0, 250.0, 2000.0):
                await engine.dispatch(MemberJoined(
                    community="c1",
                    subject=f"member{int(offset)}",
                    account_created_at=T0 - 400 * DAY,
                    has_avatar=True,
                    username="member",
                    timestamp=T0 + offset,
                ))
            await engine.close()

        asyncio.run(scenario())

        assert engine.get_join_stats("c1", T0 + 2010.0) == {
            "last_minute": 1,
            "last_5_minutes": 1,
            "last_hour": 4,
        }


class TestAntiSpam:
    """Message flood escalation scenarios."""

    def test_flood_triggers_single_tier_one_timeout(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)
        engine.update_policy("c1", message_threshold=5, message_window=5.0)

        async def scenario() -> None:
            for i in range(5):
                await engine.dispatch(MessagePosted(
                    "c1", "u1", "buy my stuff", timestamp=T0 + i * 0.5, message_id=f"m{i}"
                ))
            await engine.drain()

            rows = engine.get_violations("c1")
            assert [(r["category"], r["action"]) for r in rows] == [("spam", "timeout")]

            timeouts = adapter.of_kind("timeout")
            assert [t.duration for t in timeouts] == [60.0]
            assert [d.content_ref for d in adapter.of_kind("delete_content")] == ["m4"]

            stats = engine.get_stats("c1")
            assert stats["spam_detected"] == 1
            assert stats["timeouts_issued"] == 1
            assert stats["automod_triggers"] == 0
            await engine.close()

        asyncio.run(scenario())

    def test_slow_repeats_flagged_as_duplicates(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)
        engine.update_policy("c1", message_threshold=5, message_window=5.0)

        async def scenario() -> None:
            for i in range(4):
                await engine.dispatch(MessagePosted(
                    "c1", "u1", "buy my stuff", timestamp=T0 + i * 6.0
                ))
            await engine.drain()

            rows = engine.get_violations("c1")
            assert [(r["category"], r["action"]) for r in rows] == [("automod", "warn")]
            assert "duplicate" in rows[0]["reason"]
            await engine.close()

        asyncio.run(scenario())

    def test_repeat_floods_escalate_to_kick(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)
        engine.update_policy("c1", message_threshold=5, message_window=5.0)

        async def scenario() -> None:
            for i in range(7):
                await engine.dispatch(MessagePosted(
                    "c1", "u1", f"hello there {i}", timestamp=T0 + i * 0.5
                ))
            await engine.drain()

            assert [t.duration for t in adapter.of_kind("timeout")] == [60.0, 3600.0]
            assert [k.subject for k in adapter.of_kind("kick")] == ["u1"]
            assert engine.escalation.get_count("c1", "u1", T0 + 4.0) == 0

            actions = [r["action"] for r in engine.get_violations("c1")]
            assert actions == ["kick", "timeout", "timeout"]
            await engine.close()

        asyncio.run(scenario())

    def test_privileged_subject_never_punished(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            for i in range(8):
                await engine.dispatch(MessagePosted(
                    "c1", "admin", f"hello there {i}", timestamp=T0 + i * 0.5, privileged=True
                ))
            await engine.drain()

            assert adapter.actions == []
            assert engine.get_violations("c1") == []
            assert engine.escalation.get_count("c1", "admin", T0 + 5) == 0
            await engine.close()

        asyncio.run(scenario())

    def test_voice_abuse(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            # Ignored: moves and self-disconnects
            await engine.dispatch(VoiceActionObserved("c1", "mod1", "a", "move", timestamp=T0))
            await engine.dispatch(VoiceActionObserved("c1", "mod1", "mod1", "disconnect", timestamp=T0))
            for i, kind in enumerate(("mute", "deafen", "disconnect")):
                await engine.dispatch(VoiceActionObserved(
                    "c1", "mod1", f"user{i}", kind, timestamp=T0 + 1 + i
                ))
            await engine.drain()

            rows = engine.get_violations("c1")
            assert [(r["subject_id"], r["category"]) for r in rows] == [("mod1", "voice_abuse")]
            assert [t.subject for t in adapter.of_kind("timeout")] == ["mod1"]
            assert engine.get_stats("c1")["voice_abuse_detected"] == 1
            await engine.close()

        asyncio.run(scenario())


class TestAutoModAndLinks:
    """Content and link moderation scenarios."""

    def test_caps_with_blocklisted_link(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            await engine.dispatch(MessagePosted(
                "c1", "u1", "AAAAAAAAAA http://discord-gift.com/x", timestamp=T0, message_id="m1"
            ))
            await engine.drain()

            rows = engine.get_violations("c1")
            assert len(rows) == 1
            assert rows[0]["category"] == "automod"
            assert rows[0]["severity"] == 10
            assert "caps" in rows[0]["reason"]
            assert "blocklisted_domain" in rows[0]["reason"]

            assert [t.duration for t in adapter.of_kind("timeout")] == [600.0]
            assert [d.content_ref for d in adapter.of_kind("delete_content")] == ["m1"]

            stats = engine.get_stats("c1")
            assert stats["automod_triggers"] == 1
            assert stats["scam_blocked"] == 1
            await engine.close()

        asyncio.run(scenario())

    def test_minor_violation_warns(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)
        engine.update_policy("c1", notification_channel="mod-log")

        async def scenario() -> None:
            await engine.dispatch(MessagePosted(
                "c1", "u1", "THIS IS VERY LOUD TEXT", timestamp=T0, message_id="m1"
            ))
            await engine.drain()

            assert adapter.of_kind("timeout") == []
            assert [r["action"] for r in engine.get_violations("c1")] == ["warn"]
            warnings = notices(adapter, "Automatic moderation")
            assert len(warnings) == 1
            assert warnings[0].channel_ref == "mod-log"
            assert engine.get_stats("c1")["warnings_issued"] == 1
            await engine.close()

        asyncio.run(scenario())

    def test_whitelisted_subject_skipped(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)
        engine.update_policy("c1", whitelist=["trusted"])

        async def scenario() -> None:
            await engine.dispatch(MessagePosted("c1", "trusted", "THIS IS VERY LOUD TEXT", timestamp=T0))
            await engine.drain()
            assert adapter.actions == []
            await engine.close()

        asyncio.run(scenario())

    def test_submitted_scam_link(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            await engine.dispatch(LinkSubmitted(
                "c1", "u1", ("https://grabify.link/abc",), timestamp=T0, message_id="m9"
            ))
            await engine.dispatch(LinkSubmitted(
                "c1", "u2", ("https://example.com/",), timestamp=T0
            ))
            await engine.drain()

            rows = engine.get_violations("c1")
            assert [(r["subject_id"], r["category"], r["action"]) for r in rows] == [
                ("u1", "link", "timeout")
            ]
            assert [t.duration for t in adapter.of_kind("timeout")] == [600.0]
            await engine.close()

        asyncio.run(scenario())

    def test_lists_persist_across_engines(self, db_path: str) -> None:
        engine = make_engine(db_path)
        assert engine.add_blocked_domain("evil.example", "test", "mod", community="c1") is True
        assert engine.add_blocked_domain("evil.example", "test", "mod", community="c1") is False
        assert engine.add_profanity_word("potato", "mod") is True

        reloaded = make_engine(db_path)
        assert reloaded.check_url("https://evil.example/x", "c1")["safe"] is False
        assert reloaded.check_url("https://evil.example/x", "c2")["safe"] is True
        assert "potato" in reloaded.list_profanity_words()
        assert "evil.example" in {d.domain for d in reloaded.list_blocked_domains("c1")}

        assert reloaded.remove_blocked_domain("evil.example", "c1") is True
        assert reloaded.remove_profanity_word("potato") is True
        assert make_engine(db_path).check_url("https://evil.example/x", "c1")["safe"] is True

    def test_check_url_reports(self, db_path: str) -> None:
        engine = make_engine(db_path)

        invalid = engine.check_url("http://")
        assert invalid["safe"] is False
        assert invalid["severity"] == 10

        report = engine.check_url("https://discordnitro.com/free")
        assert len(report["threats"]) == 2
        assert engine.check_url("https://example.com/")["safe"] is True


class TestEnforcementOutcomes:
    """Tests for denied and failed platform actions."""

    def test_failed_kick_recorded_as_attempted(self, db_path: str) -> None:
        adapter = LoggingAdapter(failing={"kick"})
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            await engine.dispatch(raider_join(0))
            await engine.drain()

            rows = engine.get_violations("c1", "raider0")
            assert [r["action"] for r in rows] == ["attempted"]
            assert len(notices(adapter, "Enforcement failed")) == 1
            assert engine.get_stats("c1")["kicks_issued"] == 0
            await engine.close()

        asyncio.run(scenario())

    def test_denied_action_recorded(self, db_path: str) -> None:
        adapter = LoggingAdapter(protected={"owner"})
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            for i in range(5):
                await engine.dispatch(MessagePosted(
                    "c1", "owner", f"hello there {i}", timestamp=T0 + i * 0.5
                ))
            await engine.drain()

            assert [r["action"] for r in engine.get_violations("c1")] == ["denied"]
            assert adapter.of_kind("timeout") == []
            assert notices(adapter, "Enforcement failed") == []
            assert engine.escalation.get_count("c1", "owner", T0 + 2.5) == 0
            await engine.close()

        asyncio.run(scenario())


class TestRaidModeOperations:
    """Tests for manual raid mode and expiry."""

    def test_manual_enable_disable(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            assert await engine.enable_raid_mode("c1", duration=0, reason="drill") is True
            assert await engine.enable_raid_mode("c1", duration=0) is False
            assert await engine.disable_raid_mode("c1") is True
            assert await engine.disable_raid_mode("c1") is False
            await engine.drain()

            assert len(notices(adapter, "Raid mode enabled")) == 1
            assert len(notices(adapter, "Raid mode disabled")) == 1
            assert engine.get_stats("c1")["raids_detected"] == 0
            await engine.close()

        asyncio.run(scenario())

    def test_expiry_then_manual_disable_notifies_once(self, db_path: str) -> None:
        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)

        async def scenario() -> None:
            await engine.enable_raid_mode("c1", duration=0.01)
            await asyncio.sleep(0.1)

            assert engine.is_raid_mode_active("c1") is False
            assert await engine.disable_raid_mode("c1") is False
            await engine.drain()

            assert len(notices(adapter, "Raid mode disabled")) == 1
            await engine.close()

        asyncio.run(scenario())

    def test_maintenance_prunes_state(self, db_path: str) -> None:
        engine = make_engine(db_path)

        async def scenario() -> None:
            await engine.dispatch(MessagePosted("c1", "u1", "hello world", timestamp=T0))
            await engine.enable_raid_mode("c1", duration=60.0)

            result = engine.run_maintenance(T0 + 7200.0)

            assert result["windows"] >= 1
            assert result["raids_expired"] == 1
            assert engine.is_raid_mode_active("c1") is False
            await engine.close()

        asyncio.run(scenario())


class TestEvents:
    """Tests for event parsing and replay."""

    def test_event_from_dict(self) -> None:
        event = event_from_dict({
            "type": "link_submitted",
            "community": "c1",
            "subject": "u1",
            "urls": ["https://example.com"],
            "timestamp": T0,
        })
        assert isinstance(event, LinkSubmitted)
        assert event.urls == ("https://example.com",)

    def test_event_from_dict_errors(self) -> None:
        with pytest.raises(ValueError, match="Unknown event type"):
            event_from_dict({"type": "reaction_added"})
        with pytest.raises(ValueError, match="Invalid"):
            event_from_dict({"type": "message_posted", "community": "c1"})

    def test_replay(self, db_path: str) -> None:
        from raidshield import replay

        adapter = LoggingAdapter()
        engine = make_engine(db_path, adapter)
        stream = io.StringIO(
            "# captured events\n"
            '{"type": "message_posted", "community": "c1", "subject": "u1", '
            '"content": "AAAAAAAAAA http://discord-gift.com/x", "timestamp": 1700000000}\n'
            "\n"
            "not json\n"
            '{"type": "member_joined", "community": "c1", "subject": "u2", "timestamp": 1700000001}\n'
        )

        async def scenario() -> int:
            count = await replay(engine, stream)
            await engine.drain()
            await engine.close()
            return count

        assert asyncio.run(scenario()) == 2
        assert len(adapter.of_kind("timeout")) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
