"""Adversarial tests — jobs cannot skip, repeat or leave terminal states."""

from __future__ import annotations

import itertools

import pytest

from pwaforge.core.state_machine import GenerationStateMachine, InvalidTransitionError
from pwaforge.models.generation import VALID_TRANSITIONS, GenerationState

_PATH_TO = {
    GenerationState.IDLE: [],
    GenerationState.ACQUIRING_CREDENTIAL: [GenerationState.ACQUIRING_CREDENTIAL],
    GenerationState.CALLING: [GenerationState.ACQUIRING_CREDENTIAL, GenerationState.CALLING],
    GenerationState.PARSING: [
        GenerationState.ACQUIRING_CREDENTIAL, GenerationState.CALLING, GenerationState.PARSING,
    ],
    GenerationState.MATERIALIZING: [
        GenerationState.ACQUIRING_CREDENTIAL, GenerationState.CALLING,
        GenerationState.PARSING, GenerationState.MATERIALIZING,
    ],
    GenerationState.DONE: [
        GenerationState.ACQUIRING_CREDENTIAL, GenerationState.CALLING,
        GenerationState.PARSING, GenerationState.MATERIALIZING, GenerationState.DONE,
    ],
    GenerationState.FAILED: [GenerationState.FAILED],
}

_FORBIDDEN = [
    (src, dst)
    for src, dst in itertools.product(GenerationState, GenerationState)
    if dst not in VALID_TRANSITIONS[src]
]


def _machine_at(state: GenerationState) -> GenerationStateMachine:
    machine = GenerationStateMachine()
    for step in _PATH_TO[state]:
        machine.transition(step)
    return machine


class TestStateMachineBypass:
    @pytest.mark.parametrize(("src", "dst"), _FORBIDDEN, ids=lambda s: s.value)
    def test_forbidden_transition_rejected(self, src, dst):
        machine = _machine_at(src)
        before = machine.history
        with pytest.raises(InvalidTransitionError):
            machine.transition(dst)
        assert machine.state == src
        assert machine.history == before

    @pytest.mark.parametrize("terminal", [GenerationState.DONE, GenerationState.FAILED])
    def test_terminal_states_are_final(self, terminal):
        machine = _machine_at(terminal)
        assert machine.is_terminal
        for target in GenerationState:
            with pytest.raises(InvalidTransitionError):
                machine.transition(target)

    def test_history_is_a_copy(self):
        machine = _machine_at(GenerationState.CALLING)
        history = machine.history
        history.clear()
        assert len(machine.history) == 2

    def test_every_state_has_a_rule(self):
        assert set(VALID_TRANSITIONS) == set(GenerationState)
