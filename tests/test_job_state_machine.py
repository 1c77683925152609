import pytest

from refurbline.core.errors import AttemptLimitExceeded, IllegalTransition
from refurbline.models.refurb_job import JobAction, JobState
from refurbline.services.job_state_machine import (
    JOB_TRANSITIONS, MAIN_PATH, TERMINAL_STATES, ESCAPE_STATES,
    validate_transition, get_allowed_actions, get_resolve_targets, get_override_targets,
    is_past_repair, main_path_position,
)


def test_every_state_has_a_table_row():
    assert set(JOB_TRANSITIONS) == {state.value for state in JobState}


def test_terminal_states_have_no_actions():
    for state in TERMINAL_STATES:
        assert JOB_TRANSITIONS[state] == {}
        with pytest.raises(IllegalTransition, match="terminal"):
            validate_transition(state, JobAction.ADVANCE.value)


@pytest.mark.parametrize("state", [s for s in JOB_TRANSITIONS if s not in TERMINAL_STATES])
def test_escape_actions_legal_from_every_non_terminal_state(state):
    assert validate_transition(state, JobAction.BLOCK.value) == JobState.BLOCKED.value
    assert validate_transition(state, JobAction.ESCALATE.value) == JobState.ESCALATED.value


def test_main_path_advances_in_order():
    for current, expected in zip(MAIN_PATH[1:-1], MAIN_PATH[2:]):
        assert validate_transition(current, JobAction.ADVANCE.value) == expected


def test_queued_requires_assignment():
    with pytest.raises(IllegalTransition) as exc_info:
        validate_transition(JobState.QUEUED.value, JobAction.ADVANCE.value)
    assert exc_info.value.current_state == JobState.QUEUED.value
    assert exc_info.value.action == JobAction.ADVANCE.value


def test_retry_blocked_when_attempts_exhausted():
    assert validate_transition(
        JobState.FINAL_TEST_FAILED.value, JobAction.RETRY.value, attempt_count=1, max_attempts=2
    ) == JobState.REPAIR_IN_PROGRESS.value
    with pytest.raises(AttemptLimitExceeded):
        validate_transition(JobState.FINAL_TEST_FAILED.value, JobAction.RETRY.value, attempt_count=2, max_attempts=2)


def test_dispose_after_failure_only_when_exhausted():
    with pytest.raises(IllegalTransition):
        validate_transition(JobState.FINAL_TEST_FAILED.value, JobAction.DISPOSE.value, attempt_count=1, max_attempts=2)
    assert validate_transition(
        JobState.FINAL_TEST_FAILED.value, JobAction.DISPOSE.value, attempt_count=2, max_attempts=2
    ) == JobState.FAILED_DISPOSITION.value


def test_cannot_reenter_final_test_when_exhausted():
    with pytest.raises(AttemptLimitExceeded):
        validate_transition(
            JobState.REPAIR_COMPLETE.value, JobAction.ADVANCE.value, attempt_count=2, max_attempts=2
        )
    with pytest.raises(AttemptLimitExceeded):
        validate_transition(
            JobState.BLOCKED.value, JobAction.RESOLVE.value, attempt_count=2, max_attempts=2,
            target_state=JobState.FINAL_TEST_IN_PROGRESS.value,
        )


def test_actor_chosen_actions_need_a_target():
    with pytest.raises(IllegalTransition, match="target"):
        validate_transition(JobState.BLOCKED.value, JobAction.RESOLVE.value)
    assert validate_transition(
        JobState.BLOCKED.value, JobAction.RESOLVE.value, target_state=JobState.DIAGNOSED.value
    ) == JobState.DIAGNOSED.value


def test_allowed_actions_reflect_attempt_guard():
    fresh = get_allowed_actions(JobState.FINAL_TEST_FAILED.value, attempt_count=1, max_attempts=2)
    assert JobAction.RETRY.value in fresh
    assert JobAction.DISPOSE.value not in fresh

    exhausted = get_allowed_actions(JobState.FINAL_TEST_FAILED.value, attempt_count=2, max_attempts=2)
    assert JobAction.RETRY.value not in exhausted
    assert JobAction.DISPOSE.value in exhausted


def test_allowed_actions_include_resolve_from_escape():
    actions = get_allowed_actions(JobState.BLOCKED.value)
    assert JobAction.RESOLVE.value in actions
    assert JobAction.DISPOSE.value in actions
    assert get_allowed_actions(JobState.COMPLETE.value) == []


def test_resolve_targets_stop_at_resume_state():
    targets = get_resolve_targets(JobState.DIAGNOSED.value)
    assert targets[-1] == JobState.DIAGNOSED.value
    assert JobState.REPAIR_IN_PROGRESS.value not in targets
    assert JobState.QUEUED.value in targets

    after_failure = get_resolve_targets(JobState.FINAL_TEST_FAILED.value)
    assert JobState.FINAL_TEST_FAILED.value in after_failure
    assert JobState.FINAL_TEST_PASSED.value not in after_failure


def test_override_targets_exclude_escape_and_terminal():
    targets = set(get_override_targets())
    assert not targets & ESCAPE_STATES
    assert not targets & TERMINAL_STATES
    assert JobState.REPAIR_IN_PROGRESS.value in targets
    assert JobState.CERTIFIED.value in targets


def test_override_cannot_fake_a_failed_test():
    # Only FAIL enters FINAL_TEST_FAILED, so every RETRY is backed by a counted attempt
    assert JobState.FINAL_TEST_FAILED.value not in get_override_targets()


def test_failed_final_test_sits_at_final_test_position():
    assert main_path_position(JobState.FINAL_TEST_FAILED.value) == MAIN_PATH.index(JobState.FINAL_TEST_IN_PROGRESS.value)
    assert main_path_position(JobState.BLOCKED.value) is None
    assert is_past_repair(JobState.REPAIR_COMPLETE.value)
    assert not is_past_repair(JobState.REPAIR_IN_PROGRESS.value)
