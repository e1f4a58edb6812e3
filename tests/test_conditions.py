"""Tests for the condition ledger."""

import pytest

from biomon.state import EventType
from biomon.systems import assert_consistent


class TestClearCondition:
    """Clearing a condition and un-applying its roll."""

    def test_clear_unapplies_roll(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)
        condition_id = outcome.applied_condition_id

        cleared = manager.clear_condition(character.id, condition_id)

        assert cleared.id == condition_id
        assert cleared.cleared_at is not None
        assert outcome.applied is False
        assert outcome.applied_condition_id is None
        assert outcome.applied_entry_id is None
        assert outcome.applied_entry_label is None

    def test_clear_keeps_stress_commit(self, make_manager):
        manager = make_manager(2)
        char = manager.add_character("Bishop", stress=6)
        outcome = manager.trigger_roll(char.id, "panic")
        manager.apply_outcome(char.id, outcome.event_id)
        manager.apply_stress_delta(char.id, outcome.event_id)

        manager.clear_condition(char.id, outcome.applied_condition_id)

        assert outcome.applied_condition_id is None
        assert outcome.stress_delta_applied is True
        assert outcome.applied is True
        assert char.stress == 5

    def test_clear_unrelated_condition_leaves_roll(self, manager, character):
        manager.toggle_condition(character.id, "fatigue")
        fatigue = character.live_conditions[0]
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)

        manager.clear_condition(character.id, fatigue.id)

        assert outcome.applied is True
        assert outcome.applied_condition_id is not None

    def test_clear_is_idempotent(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)
        condition_id = outcome.applied_condition_id
        first = manager.clear_condition(character.id, condition_id)
        stamp = first.cleared_at
        manager.mark_clean()

        again = manager.clear_condition(character.id, condition_id)

        assert again.cleared_at == stamp
        assert manager.dirty is False

    def test_unknown_condition(self, manager, character):
        assert manager.clear_condition(character.id, "nope") is None

    def test_unknown_character(self, manager):
        assert manager.clear_condition("ghost", "nope") is None

    def test_reapply_after_clear(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)
        manager.clear_condition(character.id, outcome.applied_condition_id)

        manager.apply_outcome(character.id, outcome.event_id)

        assert outcome.applied is True
        assert len(character.live_conditions) == 1

    def test_event_emitted(self, manager, character):
        received = []
        manager.bus.on(EventType.CONDITION_CLEARED, received.append)
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)

        manager.clear_condition(character.id, outcome.applied_condition_id)

        assert received[0].data["condition_type"] == "stress_jumpy"


class TestHasLive:
    """Live condition queries."""

    def test_live_and_cleared(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        assert manager.has_live_condition(character.id, "stress_jumpy") is False

        manager.apply_outcome(character.id, outcome.event_id)
        assert manager.has_live_condition(character.id, "stress_jumpy") is True

        manager.clear_condition(character.id, outcome.applied_condition_id)
        assert manager.has_live_condition(character.id, "stress_jumpy") is False

    def test_unknown_character(self, manager):
        assert manager.has_live_condition("ghost", "stress_jumpy") is False


class TestToggle:
    """Manual condition toggle."""

    def test_toggle_on_and_off(self, manager, character):
        added = manager.toggle_condition(character.id, "fatigue")

        assert added.type == "condition_fatigue"
        assert added.label == "FATIGUE"
        assert added.severity == 1
        assert manager.has_live_condition(character.id, "condition_fatigue")

        removed = manager.toggle_condition(character.id, "fatigue")

        assert removed.id == added.id
        assert removed.cleared_at is not None
        assert not manager.has_live_condition(character.id, "condition_fatigue")

    def test_toggle_again_creates_new(self, manager, character):
        manager.toggle_condition(character.id, "fatigue")
        manager.toggle_condition(character.id, "fatigue")
        manager.toggle_condition(character.id, "fatigue")

        assert len(character.conditions) == 2
        assert len(character.live_conditions) == 1

    @pytest.mark.parametrize("name", ["exhausted", "", "stress_jumpy"])
    def test_unknown_name_rejected(self, manager, character, name):
        assert manager.toggle_condition(character.id, name) is None
        assert character.conditions == []

    def test_mission_log(self, manager, character):
        manager.toggle_condition(character.id, "fatigue")
        assert manager.state.mission_log[0].message == "Ripley IS NOW FATIGUE"

        manager.toggle_condition(character.id, "fatigue")
        assert manager.state.mission_log[0].message == "Ripley RECOVERED FROM: FATIGUE"


class TestConsistency:
    """The outcome/condition cross-check."""

    def test_detects_dangling_reference(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)
        character.conditions.clear()

        with pytest.raises(AssertionError):
            assert_consistent(character)

    def test_detects_stale_applied_flag(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        outcome.applied = True

        with pytest.raises(AssertionError):
            assert_consistent(character)
