"""
Refurbishment Job State Machine

This module is the SINGLE SOURCE OF TRUTH for job stage transitions.
The table below is enumerable data (state x action -> state); an illegal
transition is a lookup miss, never a missed branch.

Main path:
    QUEUED → ASSIGNED → IN_PROGRESS → SECURITY_PREP_COMPLETE → DIAGNOSED
    → REPAIR_IN_PROGRESS → REPAIR_COMPLETE → FINAL_TEST_IN_PROGRESS
    → FINAL_TEST_PASSED → CERTIFIED → COMPLETE

Retest loop:
    FINAL_TEST_IN_PROGRESS --FAIL--> FINAL_TEST_FAILED
    FINAL_TEST_FAILED --RETRY--> REPAIR_IN_PROGRESS     (attempts < max)
    FINAL_TEST_FAILED --DISPOSE--> FAILED_DISPOSITION   (attempts >= max)

Escape states (from any non-terminal state):
    BLOCKED, ESCALATED → RESOLVE to a chosen stage, or DISPOSE

Attempt-count guards and the repair guard need job data and are applied by
JobLifecycleService on top of this table.
"""

from typing import Dict, List, Optional

from refurbline.core.errors import IllegalTransition, AttemptLimitExceeded
from refurbline.models.refurb_job import JobState, JobAction


# =============================================================================
# STATE GROUPS
# =============================================================================

MAIN_PATH: List[str] = [
    JobState.QUEUED.value,
    JobState.ASSIGNED.value,
    JobState.IN_PROGRESS.value,
    JobState.SECURITY_PREP_COMPLETE.value,
    JobState.DIAGNOSED.value,
    JobState.REPAIR_IN_PROGRESS.value,
    JobState.REPAIR_COMPLETE.value,
    JobState.FINAL_TEST_IN_PROGRESS.value,
    JobState.FINAL_TEST_PASSED.value,
    JobState.CERTIFIED.value,
    JobState.COMPLETE.value,
]

ESCAPE_STATES = frozenset({JobState.BLOCKED.value, JobState.ESCALATED.value})
TERMINAL_STATES = frozenset({JobState.COMPLETE.value, JobState.FAILED_DISPOSITION.value})
SUCCESS_STATES = frozenset({JobState.CERTIFIED.value, JobState.COMPLETE.value})

# Actions whose target is chosen by the actor rather than the table
ACTOR_CHOSEN = "*"


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_state -> {action: next_state}
JOB_TRANSITIONS: Dict[str, Dict[str, str]] = {
    JobState.QUEUED.value: {
        JobAction.ASSIGN.value: JobState.ASSIGNED.value,
    },
    JobState.ASSIGNED.value: {
        JobAction.ASSIGN.value: JobState.ASSIGNED.value,  # Reassign
        JobAction.ADVANCE.value: JobState.IN_PROGRESS.value,
    },
    JobState.IN_PROGRESS.value: {
        JobAction.ADVANCE.value: JobState.SECURITY_PREP_COMPLETE.value,
    },
    JobState.SECURITY_PREP_COMPLETE.value: {
        JobAction.ADVANCE.value: JobState.DIAGNOSED.value,
    },
    JobState.DIAGNOSED.value: {
        JobAction.ADVANCE.value: JobState.REPAIR_IN_PROGRESS.value,
    },
    JobState.REPAIR_IN_PROGRESS.value: {
        JobAction.ADVANCE.value: JobState.REPAIR_COMPLETE.value,
    },
    JobState.REPAIR_COMPLETE.value: {
        JobAction.ADVANCE.value: JobState.FINAL_TEST_IN_PROGRESS.value,
    },
    JobState.FINAL_TEST_IN_PROGRESS.value: {
        JobAction.ADVANCE.value: JobState.FINAL_TEST_PASSED.value,
        JobAction.FAIL.value: JobState.FINAL_TEST_FAILED.value,
    },
    JobState.FINAL_TEST_PASSED.value: {
        JobAction.ADVANCE.value: JobState.CERTIFIED.value,
    },
    JobState.CERTIFIED.value: {
        JobAction.ADVANCE.value: JobState.COMPLETE.value,
    },
    JobState.FINAL_TEST_FAILED.value: {
        JobAction.RETRY.value: JobState.REPAIR_IN_PROGRESS.value,
        JobAction.DISPOSE.value: JobState.FAILED_DISPOSITION.value,
    },
    JobState.BLOCKED.value: {
        JobAction.RESOLVE.value: ACTOR_CHOSEN,
        JobAction.DISPOSE.value: JobState.FAILED_DISPOSITION.value,
    },
    JobState.ESCALATED.value: {
        JobAction.RESOLVE.value: ACTOR_CHOSEN,
        JobAction.DISPOSE.value: JobState.FAILED_DISPOSITION.value,
    },
    JobState.COMPLETE.value: {},  # Terminal state - no transitions
    JobState.FAILED_DISPOSITION.value: {},  # Terminal state - no transitions
}

# BLOCK / ESCALATE / OVERRIDE are legal from every non-terminal state
for _state, _actions in JOB_TRANSITIONS.items():
    if _state not in TERMINAL_STATES:
        _actions[JobAction.BLOCK.value] = JobState.BLOCKED.value
        _actions[JobAction.ESCALATE.value] = JobState.ESCALATED.value
        _actions[JobAction.OVERRIDE.value] = ACTOR_CHOSEN
del _state, _actions

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[tuple, str] = {
    (JobState.QUEUED.value, JobState.ASSIGNED.value): "Assign Technician",
    (JobState.ASSIGNED.value, JobState.ASSIGNED.value): "Reassign Technician",
    (JobState.ASSIGNED.value, JobState.IN_PROGRESS.value): "Start Work",
    (JobState.IN_PROGRESS.value, JobState.SECURITY_PREP_COMPLETE.value): "Complete Security Prep",
    (JobState.SECURITY_PREP_COMPLETE.value, JobState.DIAGNOSED.value): "Complete Diagnosis",
    (JobState.DIAGNOSED.value, JobState.REPAIR_IN_PROGRESS.value): "Start Repair",
    (JobState.REPAIR_IN_PROGRESS.value, JobState.REPAIR_COMPLETE.value): "Complete Repair",
    (JobState.REPAIR_COMPLETE.value, JobState.FINAL_TEST_IN_PROGRESS.value): "Start Final Test",
    (JobState.FINAL_TEST_IN_PROGRESS.value, JobState.FINAL_TEST_PASSED.value): "Pass Final Test",
    (JobState.FINAL_TEST_IN_PROGRESS.value, JobState.FINAL_TEST_FAILED.value): "Fail Final Test",
    (JobState.FINAL_TEST_PASSED.value, JobState.CERTIFIED.value): "Certify",
    (JobState.CERTIFIED.value, JobState.COMPLETE.value): "Complete",
    (JobState.FINAL_TEST_FAILED.value, JobState.REPAIR_IN_PROGRESS.value): "Retry Repair",
    (JobState.FINAL_TEST_FAILED.value, JobState.FAILED_DISPOSITION.value): "Dispose",
    (JobState.BLOCKED.value, JobState.FAILED_DISPOSITION.value): "Dispose",
    (JobState.ESCALATED.value, JobState.FAILED_DISPOSITION.value): "Dispose",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_transition_target(current_state: str, action: str) -> Optional[str]:
    """Look up the table target for (state, action); None when not in the table."""
    return JOB_TRANSITIONS.get(current_state, {}).get(action)


def can_transition(current_state: str, action: str) -> bool:
    """Check if an action is in the table for a state."""
    return get_transition_target(current_state, action) is not None


def get_table_actions(current_state: str) -> List[str]:
    """Get actions the table allows from a state, ignoring attempt guards."""
    return list(JOB_TRANSITIONS.get(current_state, {}).keys())


def get_allowed_actions(current_state: str, attempt_count: int = 0, max_attempts: int = 2) -> List[str]:
    """Get actions legal right now, with the attempt-count guards applied."""
    allowed = []
    for action in get_table_actions(current_state):
        if get_transition_target(current_state, action) == ACTOR_CHOSEN:
            # Legality depends on the chosen target
            allowed.append(action)
            continue
        try:
            validate_transition(current_state, action, attempt_count, max_attempts)
        except IllegalTransition:
            continue
        allowed.append(action)
    return allowed


def get_transition_action(current_state: str, new_state: str) -> str:
    """Get human-readable action name for a transition."""
    return TRANSITION_ACTIONS.get((current_state, new_state), f"{current_state} -> {new_state}")


def is_terminal(state: str) -> bool:
    """Is this a terminal (final) state?"""
    return state in TERMINAL_STATES


def is_escape(state: str) -> bool:
    """Is this BLOCKED or ESCALATED?"""
    return state in ESCAPE_STATES


def is_success(state: str) -> bool:
    """Is this on the certified side of the lifecycle?"""
    return state in SUCCESS_STATES


def main_path_position(state: str) -> Optional[int]:
    """
    Position of a stage along the main path.

    FINAL_TEST_FAILED sits at the final-test position; escape states and
    FAILED_DISPOSITION have no position.
    """
    if state == JobState.FINAL_TEST_FAILED.value:
        return MAIN_PATH.index(JobState.FINAL_TEST_IN_PROGRESS.value)
    if state in MAIN_PATH:
        return MAIN_PATH.index(state)
    return None


def is_past_repair(state: str) -> bool:
    """Is this stage at or after REPAIR_COMPLETE on the main path?"""
    position = main_path_position(state)
    return position is not None and position >= MAIN_PATH.index(JobState.REPAIR_COMPLETE.value)


def is_landing_state(state: str) -> bool:
    """Can a job be placed directly into this stage by resolve/override?"""
    return (
        state in JOB_TRANSITIONS
        and not is_escape(state)
        and not is_terminal(state)
    )


def get_resolve_targets(resume_state: Optional[str]) -> List[str]:
    """
    Stages an escaped job may be resolved back into.

    Any main-path stage up to the one the job escaped from, or that stage
    itself (which may be FINAL_TEST_FAILED).
    """
    limit = main_path_position(resume_state) if resume_state else None
    targets = [
        state for state in MAIN_PATH
        if is_landing_state(state) and (limit is None or MAIN_PATH.index(state) <= limit)
    ]
    if resume_state and is_landing_state(resume_state) and resume_state not in targets:
        targets.append(resume_state)
    return targets


def get_override_targets() -> List[str]:
    """
    Stages a privileged override may place a job into.

    FINAL_TEST_FAILED is reachable only through FAIL, which counts the attempt.
    """
    return [
        state for state in JOB_TRANSITIONS
        if is_landing_state(state) and state != JobState.FINAL_TEST_FAILED.value
    ]


def validate_transition(
    current_state: str,
    action: str,
    attempt_count: int = 0,
    max_attempts: int = 2,
    target_state: Optional[str] = None,
) -> str:
    """
    Validate an action against the table and the attempt limit.

    Args:
        current_state: Stored job state
        action: JobAction value
        attempt_count: Final-test failures so far
        max_attempts: Attempt limit of the job
        target_state: Required for actor-chosen actions (RESOLVE, OVERRIDE)

    Returns:
        The resolved target state

    Raises:
        IllegalTransition: If the action is not legal from current_state
        AttemptLimitExceeded: If the action would re-enter final test past the limit
    """
    target = get_transition_target(current_state, action)
    if target is None:
        allowed = get_table_actions(current_state)
        if not allowed:
            message = f"Job in '{current_state}' cannot change stage. This is a terminal state."
        else:
            message = (
                f"Action '{action}' is not allowed from '{current_state}'. "
                f"Allowed actions: {', '.join(allowed)}"
            )
        raise IllegalTransition(message, current_state=current_state, action=action)

    if target == ACTOR_CHOSEN:
        if not target_state:
            raise IllegalTransition(
                f"Action '{action}' requires a target state",
                current_state=current_state, action=action,
            )
        target = target_state

    exhausted = attempt_count >= max_attempts

    if action == JobAction.RETRY.value and exhausted:
        raise AttemptLimitExceeded(
            f"Job used {attempt_count} of {max_attempts} final-test attempts; it can only be disposed",
            current_state=current_state, action=action, target_state=target,
        )
    if action == JobAction.DISPOSE.value and current_state == JobState.FINAL_TEST_FAILED.value and not exhausted:
        raise IllegalTransition(
            f"Job has {max_attempts - attempt_count} final-test attempt(s) left; retry the repair instead",
            current_state=current_state, action=action, target_state=target,
        )
    if target == JobState.FINAL_TEST_IN_PROGRESS.value and exhausted:
        raise AttemptLimitExceeded(
            f"Job used {attempt_count} of {max_attempts} final-test attempts and cannot re-enter final test",
            current_state=current_state, action=action, target_state=target,
        )

    return target


# =============================================================================
# VISUALIZATION (for debugging/documentation)
# =============================================================================

def print_state_diagram():
    """Print a text representation of the state machine."""
    print("\n=== Refurbishment Job State Machine ===\n")
    for state in JOB_TRANSITIONS:
        transitions = JOB_TRANSITIONS[state]
        if transitions:
            print(f"{state}:")
            for action, target in transitions.items():
                if target == ACTOR_CHOSEN:
                    print(f"  --{action}--> (chosen by actor)")
                else:
                    print(f"  --{action}--> {target} ({get_transition_action(state, target)})")
        else:
            print(f"{state}: [TERMINAL STATE]")
        print()


if __name__ == "__main__":
    # Run this file directly to see the state diagram
    print_state_diagram()
