"""Run lifecycle state machine using the ``transitions`` library.

Defines 5 states and 5 transitions.  ``succeeded`` and ``failed`` are
terminal: no transition leaves them, so a run can reach exactly one
terminal status.  Invalid triggers raise instead of being ignored.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions.extensions.asyncio import AsyncMachine, AsyncState

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------
STATES: list[AsyncState] = [
    AsyncState("pending"),
    AsyncState("running"),
    AsyncState("awaiting_approval"),
    AsyncState("succeeded"),
    AsyncState("failed"),
]

TERMINAL_STATES = {"succeeded", "failed"}

# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
TRANSITIONS: list[dict[str, Any]] = [
    {
        "trigger": "start",
        "source": "pending",
        "dest": "running",
        "conditions": ["has_parameters"],
    },
    {
        "trigger": "await_approval",
        "source": "running",
        "dest": "awaiting_approval",
    },
    {
        "trigger": "approval_granted",
        "source": "awaiting_approval",
        "dest": "running",
    },
    {
        "trigger": "succeed",
        "source": "running",
        "dest": "succeeded",
        "conditions": ["all_stages_passed"],
    },
    {
        "trigger": "fail",
        "source": ["pending", "running", "awaiting_approval"],
        "dest": "failed",
    },
]


def create_run_machine(model: Any, initial_state: str = "pending") -> AsyncMachine:
    """Create and return an ``AsyncMachine`` bound to *model*.

    The model object must implement the guard methods referenced in
    ``TRANSITIONS`` (``has_parameters``, ``all_stages_passed``).

    Args:
        model: The object whose state the machine manages.
        initial_state: The initial state for the machine.

    Returns:
        Configured ``AsyncMachine`` instance.
    """
    machine = AsyncMachine(
        model=model,
        states=STATES,
        transitions=TRANSITIONS,
        initial=initial_state,
        auto_transitions=False,
        send_event=True,
        queued=True,
        ignore_invalid_triggers=False,
    )
    return machine
