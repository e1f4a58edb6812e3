"""Tests for applying, undoing and clearing roll outcomes."""

import pytest

from biomon.state import EventType


def applied_block(outcome) -> dict:
    return outcome.model_dump(include={
        "applied",
        "applied_condition_id",
        "applied_entry_id",
        "applied_entry_label",
        "applied_entry_description",
        "applied_entry_stress_delta",
        "applied_stress_duplicate",
        "stress_delta_applied",
        "stress_delta_applied_value",
    })


class TestApply:
    """Committing an outcome."""

    def test_persistent_entry_creates_condition(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")

        result = manager.apply_outcome(character.id, outcome.event_id)

        assert result is outcome
        assert outcome.applied is True
        assert outcome.applied_entry_id == "stress_jumpy"
        assert outcome.applied_entry_label == "Jumpy"
        condition = character.get_condition(outcome.applied_condition_id)
        assert condition.type == "stress_jumpy"
        assert condition.label == "Jumpy"
        assert condition.severity == 2
        assert condition.is_live

    def test_non_persistent_entry_creates_nothing(self, make_manager):
        """Keeping Cool applies without a condition."""
        manager = make_manager(1)
        char = manager.add_character("Newt", resolve=6)
        outcome = manager.trigger_roll(char.id, "stress")
        assert outcome.total == -5
        assert outcome.entry_label == "Keeping Cool"

        manager.apply_outcome(char.id, outcome.event_id)

        assert outcome.applied is True
        assert outcome.applied_condition_id is None
        assert outcome.applied_entry_id == "stress_keeping_cool"
        assert char.conditions == []

    def test_apply_twice_is_noop(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)

        assert manager.apply_outcome(character.id, outcome.event_id) is None
        assert len(character.conditions) == 1

    def test_stale_event_is_ignored(self, manager, character):
        first = manager.trigger_roll(character.id, "stress")
        manager.trigger_roll(character.id, "stress")

        assert manager.apply_outcome(character.id, first.event_id) is None
        assert character.conditions == []

    def test_unknown_character_is_ignored(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        assert manager.apply_outcome("ghost", outcome.event_id) is None
        assert outcome.applied is False

    def test_failed_condition_leaves_outcome_pending(self, manager, character, monkeypatch):
        outcome = manager.trigger_roll(character.id, "stress")

        def broken_create(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(manager.conditions, "create", broken_create)
        with pytest.raises(RuntimeError):
            manager.apply_outcome(character.id, outcome.event_id)

        assert outcome.applied is False
        assert outcome.applied_entry_id is None
        assert outcome.applied_condition_id is None
        assert character.conditions == []

        monkeypatch.undo()
        assert manager.apply_outcome(character.id, outcome.event_id) is outcome
        assert outcome.applied is True
        assert character.get_condition(outcome.applied_condition_id).is_live

    def test_no_roll_is_ignored(self, manager, character):
        assert manager.apply_outcome(character.id, "deadbeef") is None


class TestApplyChoices:
    """Applying an alternative entry."""

    def roll_seek_cover(self, make_manager):
        manager = make_manager(2)
        char = manager.add_character("Bishop", stress=6)
        outcome = manager.trigger_roll(char.id, "panic")
        assert outcome.entry_id == "panic_seek_cover"
        return manager, char, outcome

    def test_permitted_choice_is_applied(self, make_manager):
        manager, char, outcome = self.roll_seek_cover(make_manager)

        manager.apply_outcome(char.id, outcome.event_id, "panic_scream")

        assert outcome.applied_entry_id == "panic_scream"
        assert outcome.applied_entry_label == "Scream"
        assert char.get_condition(outcome.applied_condition_id).type == "panic_scream"
        assert outcome.entry_id == "panic_seek_cover"

    def test_unknown_choice_is_rejected(self, make_manager):
        manager, char, outcome = self.roll_seek_cover(make_manager)
        before = applied_block(outcome)

        assert manager.apply_outcome(char.id, outcome.event_id, "panic_flee") is None
        assert manager.apply_outcome(char.id, outcome.event_id, "made_up") is None

        assert outcome.applied is False
        assert applied_block(outcome) == before
        assert char.conditions == []

    def test_choice_on_entry_without_choices(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")

        assert manager.apply_outcome(character.id, outcome.event_id, "stress_shakes") is None
        assert outcome.applied is False

        manager.apply_outcome(character.id, outcome.event_id, "stress_jumpy")
        assert outcome.applied_entry_id == "stress_jumpy"

    def test_applied_delta_follows_choice(self, make_manager):
        manager, char, outcome = self.roll_seek_cover(make_manager)
        manager.apply_outcome(char.id, outcome.event_id, "panic_scream")

        assert outcome.applied_entry_stress_delta == -1
        manager.apply_stress_delta(char.id, outcome.event_id)
        assert char.stress == 5


class TestStressDuplicateOnApply:
    """A repeated stress response is worth +1 stress instead of a second condition."""

    def test_duplicate_collapses_to_stress(self, manager, character):
        first = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, first.event_id)
        second = manager.trigger_roll(character.id, "stress")

        manager.apply_outcome(character.id, second.event_id)

        assert len(character.conditions) == 1
        assert character.stress == 1
        assert second.applied is True
        assert second.applied_condition_id is None
        assert second.applied_stress_duplicate is True
        assert second.stress_delta_applied is True
        assert second.stress_delta_applied_value == 1

    def test_duplicate_undo_restores_stress(self, manager, character):
        first = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, first.event_id)
        second = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, second.event_id)

        manager.undo_outcome(character.id, second.event_id)

        assert character.stress == 0
        assert second.applied is False
        assert len(character.live_conditions) == 1


class TestApplyStressDelta:
    """Committing the outcome's stress change."""

    def test_applies_resolved_delta(self, make_manager):
        manager = make_manager(1)
        char = manager.add_character("Apone")
        outcome = manager.trigger_roll(char.id, "panic")
        assert outcome.entry_id == "panic_spooked"

        manager.apply_stress_delta(char.id, outcome.event_id)

        assert char.stress == 1
        assert outcome.stress_delta_applied is True
        assert outcome.stress_delta_applied_value == 1
        assert outcome.applied is True
        assert outcome.applied_entry_id is None

    def test_at_most_once(self, make_manager):
        manager = make_manager(1)
        char = manager.add_character("Apone")
        outcome = manager.trigger_roll(char.id, "panic")

        manager.apply_stress_delta(char.id, outcome.event_id)
        assert manager.apply_stress_delta(char.id, outcome.event_id) is None

        assert char.stress == 1

    def test_zero_delta_is_noop(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")

        assert manager.apply_stress_delta(character.id, outcome.event_id) is None
        assert outcome.stress_delta_applied is False
        assert outcome.applied is False

    def test_clamped_to_range(self, make_manager):
        manager = make_manager(6)
        char = manager.add_character("Hudson", stress=10)
        outcome = manager.trigger_roll(char.id, "stress")
        assert outcome.entry_id == "stress_mess_up"

        manager.apply_stress_delta(char.id, outcome.event_id)

        assert char.stress == 10
        assert outcome.stress_delta_applied_value == 0

    def test_apply_after_stress_delta(self, make_manager):
        manager = make_manager(2)
        char = manager.add_character("Bishop", stress=6)
        outcome = manager.trigger_roll(char.id, "panic")
        manager.apply_stress_delta(char.id, outcome.event_id)
        assert char.stress == 5

        manager.apply_outcome(char.id, outcome.event_id)

        assert outcome.applied_condition_id is not None
        assert char.stress == 5

    def test_duplicate_from_earlier_roll_is_plus_one(self, manager, character):
        first = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, first.event_id)
        second = manager.trigger_roll(character.id, "stress")

        manager.apply_stress_delta(character.id, second.event_id)

        assert character.stress == 1
        assert second.applied_stress_duplicate is True

    def test_own_condition_is_not_a_duplicate(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)

        # Jumpy carries no stress delta, and its own condition isn't a repeat
        assert manager.apply_stress_delta(character.id, outcome.event_id) is None
        assert character.stress == 0

    def test_event_emitted(self, make_manager):
        manager = make_manager(1)
        char = manager.add_character("Apone")
        received = []
        manager.bus.on(EventType.STRESS_DELTA_APPLIED, received.append)
        outcome = manager.trigger_roll(char.id, "panic")

        manager.apply_stress_delta(char.id, outcome.event_id)

        assert received[0].data["delta"] == 1
        assert received[0].data["stress"] == 1


class TestUndo:
    """Reversing a commit."""

    def test_undo_clears_condition_and_resets(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        pending = applied_block(outcome)
        manager.apply_outcome(character.id, outcome.event_id)
        condition_id = outcome.applied_condition_id

        result = manager.undo_outcome(character.id, outcome.event_id)

        assert result is outcome
        assert applied_block(outcome) == pending
        assert character.get_condition(condition_id).cleared_at is not None
        assert character.live_conditions == []

    def test_apply_undo_inverse(self, make_manager):
        """Live conditions, stress and the applied block return to their pre-apply values."""
        manager = make_manager(2)
        char = manager.add_character("Bishop", stress=6)
        outcome = manager.trigger_roll(char.id, "panic")
        live_before = [c.id for c in char.live_conditions]
        stress_before = char.stress
        pending = applied_block(outcome)

        manager.apply_outcome(char.id, outcome.event_id, "panic_scream")
        manager.apply_stress_delta(char.id, outcome.event_id)
        manager.undo_outcome(char.id, outcome.event_id)

        assert [c.id for c in char.live_conditions] == live_before
        assert char.stress == stress_before
        assert applied_block(outcome) == pending

    def test_undo_when_pending_is_noop(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        assert manager.undo_outcome(character.id, outcome.event_id) is None

    def test_undo_stale_event_is_noop(self, manager, character):
        first = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, first.event_id)
        manager.trigger_roll(character.id, "stress")

        assert manager.undo_outcome(character.id, first.event_id) is None
        assert len(character.live_conditions) == 1

    def test_can_reapply_after_undo(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)
        manager.undo_outcome(character.id, outcome.event_id)

        manager.apply_outcome(character.id, outcome.event_id)

        assert outcome.applied is True
        assert len(character.conditions) == 2
        assert len(character.live_conditions) == 1

    def test_history_not_retracted(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)
        log_size = len(manager.state.mission_log)

        manager.undo_outcome(character.id, outcome.event_id)

        assert manager.state.roll_events[-1].event_id == outcome.event_id
        assert len(manager.state.mission_log) == log_size + 1

    def test_undo_stress_only_commit(self, make_manager):
        manager = make_manager(1)
        char = manager.add_character("Apone")
        outcome = manager.trigger_roll(char.id, "panic")
        manager.apply_stress_delta(char.id, outcome.event_id)
        assert char.stress == 1

        manager.undo_outcome(char.id, outcome.event_id)

        assert char.stress == 0
        assert outcome.applied is False


class TestClearOutcome:
    """Detaching the last roll."""

    def test_clear_detaches(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.apply_outcome(character.id, outcome.event_id)

        assert manager.clear_outcome(character.id) is True

        assert character.last_roll_outcome is None
        assert len(character.live_conditions) == 1

    def test_clear_without_roll(self, manager, character):
        assert manager.clear_outcome(character.id) is False

    def test_clear_unknown_character(self, manager):
        assert manager.clear_outcome("ghost") is False

    def test_apply_after_clear_is_noop(self, manager, character):
        outcome = manager.trigger_roll(character.id, "stress")
        manager.clear_outcome(character.id)
        assert manager.apply_outcome(character.id, outcome.event_id) is None
