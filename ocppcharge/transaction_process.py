"""Preconditions, triggers and the enable sequence that start and stop a transaction."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class TxPrecondition(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class TxTrigger(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class TxEnableState(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    PENDING = "Pending"


class TransactionProcess:
    """Decides whether a transaction may run on a connector.

    All preconditions must be active, and all triggers active, before the
    enable steps are driven towards ``ACTIVE``. The steps are checked in
    reverse order while enabling and in order while disabling.
    """

    def __init__(self, connector_id: int = 0) -> None:
        self.connector_id = connector_id
        self._preconditions: list[Callable[[], TxPrecondition]] = []
        self._triggers: list[Callable[[], TxTrigger]] = []
        self._enable_sequence: list[Callable[[TxTrigger], TxEnableState]] = []
        self._active_trigger_exists = False
        self._state = TxEnableState.INACTIVE

    def add_precondition(self, fn: Callable[[], TxPrecondition]) -> None:
        self._preconditions.append(fn)

    def add_trigger(self, fn: Callable[[], TxTrigger]) -> None:
        self._triggers.append(fn)

    def add_enable_step(self, fn: Callable[[TxTrigger], TxEnableState]) -> None:
        self._enable_sequence.append(fn)

    @property
    def active_trigger_exists(self) -> bool:
        """Whether at least one trigger was active at the last evaluation."""
        return self._active_trigger_exists

    @property
    def state(self) -> TxEnableState:
        """Result of the last evaluation."""
        return self._state

    def evaluate_process_steps(self) -> TxEnableState:
        """Evaluate preconditions, triggers and enable steps; return the new state."""
        before = self._state

        precondition = TxPrecondition.ACTIVE
        for condition in self._preconditions:
            if condition() is not TxPrecondition.ACTIVE:
                precondition = TxPrecondition.INACTIVE
                break

        trigger = TxTrigger.ACTIVE if self._triggers else TxTrigger.INACTIVE
        if precondition is not TxPrecondition.ACTIVE:
            trigger = TxTrigger.INACTIVE

        self._active_trigger_exists = False
        for fn in self._triggers:
            if fn() is TxTrigger.ACTIVE:
                self._active_trigger_exists = True
            else:
                trigger = TxTrigger.INACTIVE

        if trigger is TxTrigger.ACTIVE:
            self._state = TxEnableState.ACTIVE
            for step in reversed(self._enable_sequence):
                if step(TxTrigger.ACTIVE) is not TxEnableState.ACTIVE:
                    self._state = TxEnableState.PENDING
                    break
        else:
            self._state = TxEnableState.INACTIVE
            for step in self._enable_sequence:
                if step(TxTrigger.INACTIVE) is not TxEnableState.INACTIVE:
                    self._state = TxEnableState.PENDING
                    break

        if before is not self._state:
            logger.debug("Transition from %s to %s", before.value, self._state.value)
        return self._state