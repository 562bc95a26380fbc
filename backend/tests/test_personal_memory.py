"""Tests for the personal memory store and the preference state machine."""

import asyncio
import logging

import pytest

from app.memory.personal import (
    add_preference_manually,
    apply_contradiction,
    clear_personal_memory,
    delete_preference,
    edit_preference,
    format_personal_memory_for_prompt,
    get_personal_memory,
    get_personal_memory_history,
    update_identity,
    update_preference,
)
from app.memory.types import LearnedPreference, PersonalMemory, UserIdentity

USER = "usr_mem_0001"


def run(coro):
    return asyncio.run(coro)


def _pref(value="formal", reinforcements=1, contradictions=0, confidence=None):
    from app.memory.scoring import calculate_confidence

    return LearnedPreference(
        key="tone",
        value=value,
        reinforcements=reinforcements,
        contradictions=contradictions,
        confidence=(
            confidence if confidence is not None
            else calculate_confidence(reinforcements, contradictions)
        ),
        learned_from="chat",
    )


class TestApplyContradiction:
    """Each branch of the contradiction rules."""

    def test_explicit_replaces_weak_preference(self):
        pref = _pref(reinforcements=1, confidence=0.3)
        result = apply_contradiction(pref, "casual", "chat", "call me casual", is_explicit=True)
        assert result.action == "updated"
        assert pref.value == "casual"
        assert pref.reinforcements == 2
        assert pref.contradictions == 0
        assert pref.confidence == 0.5
        assert result.previous_value == "formal"

    def test_explicit_only_counts_against_established(self):
        pref = _pref(reinforcements=10)
        result = apply_contradiction(pref, "casual", "chat", is_explicit=True)
        assert result.action == "contradicted"
        assert pref.value == "formal"
        assert pref.contradictions == 1
        assert pref.confidence == pytest.approx(10 / 12)

    def test_implicit_against_established_is_contradiction(self):
        pref = _pref(reinforcements=4)  # 0.8
        result = apply_contradiction(pref, "casual", "chat")
        assert result.action == "contradicted"
        assert pref.value == "formal"
        assert pref.contradictions == 1
        assert result.previous_confidence == pytest.approx(0.8)

    def test_implicit_replaces_weak_preference(self):
        pref = _pref(reinforcements=2)  # 0.667, below established
        result = apply_contradiction(pref, "casual", "chat")
        assert result.action == "updated"
        assert pref.value == "casual"
        assert pref.reinforcements == 1
        assert pref.confidence == 0.3

    def test_implicit_against_uncertain_but_reinforced(self):
        pref = _pref(reinforcements=3, contradictions=2)  # 0.5
        result = apply_contradiction(pref, "casual", "chat")
        assert result.action == "contradicted"
        assert pref.value == "formal"
        assert pref.contradictions == 3
        assert pref.confidence == pytest.approx(3 / 7)

    def test_review_warning_at_third_contradiction(self, caplog, monkeypatch):
        monkeypatch.setattr(logging.getLogger("archidesk"), "propagate", True)
        pref = _pref(reinforcements=9, contradictions=1)  # 0.818

        with caplog.at_level(logging.WARNING, logger="archidesk.memory.personal"):
            apply_contradiction(pref, "casual", "chat")
        assert pref.contradictions == 2
        assert "may need review" not in caplog.text

        with caplog.at_level(logging.WARNING, logger="archidesk.memory.personal"):
            result = apply_contradiction(pref, "casual", "chat")
        assert result.action == "contradicted"
        assert pref.contradictions == 3
        assert "Preference tone has 3 contradictions - may need review" in caplog.text


class TestUpdatePreference:
    def test_create_then_reinforce(self, fake_db):
        first = run(update_preference(fake_db, USER, "tone", "formal"))
        assert first.action == "created"
        assert first.preference.confidence == 0.3

        second = run(update_preference(fake_db, USER, "tone", "formal"))
        assert second.action == "reinforced"
        assert second.preference.reinforcements == 2
        assert second.preference.confidence == pytest.approx(2 / 3)
        assert second.previous_confidence == 0.3

        memory = run(get_personal_memory(fake_db, USER))
        assert len(memory.preferences) == 1

    def test_explicit_creation_starts_stronger(self, fake_db):
        result = run(update_preference(fake_db, USER, "language", "nl", is_explicit=True))
        assert result.preference.confidence == 0.5
        assert result.preference.reinforcements == 2

    def test_history_records_snapshot_before_change(self, fake_db):
        run(update_preference(fake_db, USER, "tone", "formal"))
        run(update_preference(fake_db, USER, "tone", "casual"))

        rows = fake_db.rows("memory_updates")
        assert [r["update_type"] for r in rows] == ["learned", "learned"]
        assert rows[1]["old_value"] == {"value": "formal", "confidence": 0.3}
        assert rows[1]["new_value"]["value"] == "casual"

    def test_contradiction_recorded(self, fake_db):
        for _ in range(4):
            run(update_preference(fake_db, USER, "tone", "formal"))
        result = run(update_preference(fake_db, USER, "tone", "casual"))
        assert result.action == "contradicted"
        assert fake_db.rows("memory_updates")[-1]["update_type"] == "contradicted"

    def test_history_failure_does_not_break_update(self, fake_db, monkeypatch):
        from conftest import FakeQuery

        original = FakeQuery.insert

        def failing_insert(self, payload):
            if self._table == "memory_updates":
                raise RuntimeError("history table unavailable")
            return original(self, payload)

        monkeypatch.setattr(FakeQuery, "insert", failing_insert)
        result = run(update_preference(fake_db, USER, "tone", "formal"))
        assert result.action == "created"
        assert run(get_personal_memory(fake_db, USER)).preferences[0].value == "formal"


class TestManualOperations:
    def test_add_manually_and_edit(self, fake_db):
        pref = run(add_preference_manually(fake_db, USER, "units", "metric"))
        assert pref.reinforcements == 5
        assert pref.confidence == pytest.approx(5 / 6)
        assert pref.learned_from == "manual"

        edited = run(edit_preference(fake_db, USER, pref.id, "imperial"))
        assert edited.value == "imperial"
        assert edited.contradictions == 0

    def test_add_existing_key_edits(self, fake_db):
        run(update_preference(fake_db, USER, "units", "metric"))
        pref = run(add_preference_manually(fake_db, USER, "units", "imperial"))
        memory = run(get_personal_memory(fake_db, USER))
        assert len(memory.preferences) == 1
        assert pref.value == "imperial"
        assert pref.learned_from == "manual"

    def test_edit_unknown_returns_none(self, fake_db):
        assert run(edit_preference(fake_db, USER, "nope", "x")) is None

    def test_delete_preference(self, fake_db):
        pref = run(add_preference_manually(fake_db, USER, "units", "metric"))
        assert run(delete_preference(fake_db, USER, pref.id)) is True
        assert run(delete_preference(fake_db, USER, pref.id)) is False
        assert run(get_personal_memory(fake_db, USER)).preferences == []

    def test_identity_merge_keeps_known_values(self, fake_db):
        run(update_identity(fake_db, USER, {"name": "Sanne", "position": "Architect"}))
        memory = run(update_identity(fake_db, USER, {"name": "", "position": "Partner"}))
        assert memory.identity.name == "Sanne"
        assert memory.identity.position == "Partner"

    def test_clear_and_history(self, fake_db):
        run(add_preference_manually(fake_db, USER, "units", "metric"))
        history = run(get_personal_memory_history(fake_db, USER))
        assert len(history) == 1
        assert history[0].preference_key == "units"

        run(clear_personal_memory(fake_db, USER))
        memory = run(get_personal_memory(fake_db, USER))
        assert memory.preferences == []
        assert fake_db.rows("user_memories") == []


class TestFormatting:
    def test_filters_and_orders_by_confidence(self):
        memory = PersonalMemory(
            user_id=USER,
            identity=UserIdentity(name="Sanne", position="Architect"),
            preferences=[
                _pref(value="formal", confidence=0.6),
                LearnedPreference(key="units", value="metric", confidence=0.9, learned_from="manual"),
                LearnedPreference(key="noise", value="x", confidence=0.3, learned_from="chat"),
            ],
        )
        text = format_personal_memory_for_prompt(memory)
        assert text.startswith("User: Sanne (Architect)")
        assert "noise" not in text
        assert text.index("units: metric") < text.index("tone: formal")

    def test_empty_memory_formats_empty(self):
        assert format_personal_memory_for_prompt(PersonalMemory(user_id=USER)) == ""
