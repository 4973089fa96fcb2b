"""Stacks of installed charging profiles, one per purpose, and limit selection."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterator

from ocppcharge.smart_charging_model import (
    MAX_TIME,
    ChargingProfile,
    ChargingProfilePurposeType,
)

logger = logging.getLogger(__name__)

MAX_STACK_LEVEL = 8

_PURPOSE_ORDER = (
    ChargingProfilePurposeType.CHARGE_POINT_MAX_PROFILE,
    ChargingProfilePurposeType.TX_DEFAULT_PROFILE,
    ChargingProfilePurposeType.TX_PROFILE,
)

ClearPredicate = Callable[[int, int, ChargingProfilePurposeType, int], bool]


class ProfileStack:
    """Holds at most one profile per purpose and stack level."""

    def __init__(self) -> None:
        self._stacks: dict[ChargingProfilePurposeType, list[ChargingProfile | None]] = {
            purpose: [None] * MAX_STACK_LEVEL for purpose in _PURPOSE_ORDER
        }

    def add(self, profile: ChargingProfile) -> ChargingProfile | None:
        """Install a profile and return the one it replaced, if any.

        A stack level outside the supported range is put on the highest level.
        """
        level = profile.stack_level
        if not 0 <= level < MAX_STACK_LEVEL:
            logger.error("stack level %d out of range, using %d", level, MAX_STACK_LEVEL - 1)
            level = MAX_STACK_LEVEL - 1
        stack = self._stacks[profile.purpose]
        previous = stack[level]
        stack[level] = profile
        return previous

    def clear(self, predicate: ClearPredicate) -> list[ChargingProfile]:
        """Remove every profile for which ``predicate(id, connector_id, purpose, level)`` holds.

        The connector id passed is always -1. Returns the removed profiles.
        """
        removed: list[ChargingProfile] = []
        for purpose in _PURPOSE_ORDER:
            stack = self._stacks[purpose]
            for level, profile in enumerate(stack):
                if profile is None:
                    continue
                if predicate(profile.charging_profile_id, -1, purpose, level):
                    removed.append(profile)
                    stack[level] = None
        return removed

    def profiles(self) -> Iterator[ChargingProfile]:
        """Yield the installed profiles, by purpose and then by ascending stack level."""
        for purpose in _PURPOSE_ORDER:
            yield from (p for p in self._stacks[purpose] if p is not None)

    def __len__(self) -> int:
        return sum(1 for _ in self.profiles())

    def _evaluate(
        self,
        purpose: ChargingProfilePurposeType,
        t: datetime,
        start_of_charging: datetime,
        accept: Callable[[ChargingProfile], bool],
    ) -> tuple[float | None, datetime]:
        valid_to = MAX_TIME
        for profile in reversed(self._stacks[purpose]):
            if profile is None or not accept(profile):
                continue
            limit, next_change = profile.inference_limit(t, start_of_charging)
            valid_to = min(valid_to, next_change)
            if limit is not None:
                return limit, valid_to
        return None, valid_to

    def inference_limit(
        self,
        t: datetime,
        start_of_charging: datetime,
        transaction_id: int,
        remote_profile_id: int,
        default_limit: float,
    ) -> tuple[float, datetime]:
        """Return the limit in force at ``t`` and the time it may change next.

        A TxProfile prevails over a TxDefaultProfile; a ChargePointMaxProfile
        caps both. Without any applicable profile ``default_limit`` applies.
        """
        limit_tx, valid_tx = self._evaluate(
            ChargingProfilePurposeType.TX_PROFILE,
            t,
            start_of_charging,
            lambda p: p.check_transaction_assignment(transaction_id, remote_profile_id),
        )
        limit_txdef, valid_txdef = self._evaluate(
            ChargingProfilePurposeType.TX_DEFAULT_PROFILE,
            t,
            start_of_charging,
            lambda p: True,
        )
        limit_cpmax, valid_cpmax = self._evaluate(
            ChargingProfilePurposeType.CHARGE_POINT_MAX_PROFILE,
            t,
            start_of_charging,
            lambda p: True,
        )
        valid_to = min(valid_tx, valid_txdef, valid_cpmax)

        limit: float | None = None
        if limit_txdef is not None:
            limit = limit_txdef
        if limit_tx is not None:
            limit = limit_tx
        if limit_cpmax is not None:
            limit = limit_cpmax if limit is None else min(limit, limit_cpmax)
        if limit is None:
            limit = default_limit
        return limit, valid_to