"""Smart charging: installs charging profiles and derives the current charge limit."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

from ocppcharge.charging_profile_stack import MAX_STACK_LEVEL, ClearPredicate, ProfileStack
from ocppcharge.smart_charging_model import (
    MAX_TIME,
    MIN_TIME,
    ChargingProfile,
    ChargingProfileKindType,
    ChargingProfilePurposeType,
    ChargingSchedule,
    ChargingSchedulePeriod,
    RecurrencyKindType,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

CHARGE_PROFILE_MAX_STACK_LEVEL = MAX_STACK_LEVEL
CHARGING_SCHEDULE_MAX_PERIODS = 24
MAX_CHARGING_PROFILES_INSTALLED = 10

_PROFILE_FILE_NAMES = {
    ChargingProfilePurposeType.CHARGE_POINT_MAX_PROFILE: "CpMaxProfile",
    ChargingProfilePurposeType.TX_DEFAULT_PROFILE: "TxDefProfile",
    ChargingProfilePurposeType.TX_PROFILE: "TxProfile",
}
_STATE_FILE_NAME = "ocpp-smartcharging.jsn"
_SESSION_START_TOLERANCE = timedelta(seconds=1_000_000)


class ConnectorSession(Protocol):
    """What the service needs to know about the charging connector."""

    transaction_id: int
    session_id_tag: str | None
    session_write_count: int


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def profile_file_name(purpose: ChargingProfilePurposeType, stack_level: int) -> str:
    """File name under which a profile of this purpose and level is stored."""
    return f"ocpp-{_PROFILE_FILE_NAMES[purpose]}-{stack_level}.cnf"


class SmartChargingService:
    """Keeps the installed charging profiles and reports changes of the limit."""

    def __init__(
        self,
        charge_limit: float,
        v_eff: float = 230.0,
        num_connectors: int = 2,
        *,
        clock: Callable[[], datetime] = _utc_now,
        connector: ConnectorSession | None = None,
        profile_dir: str | Path | None = None,
        on_limit_change: Callable[[float], None] | None = None,
    ) -> None:
        if num_connectors > 2:
            logger.error("Only one connector supported at the moment")
        self.default_charge_limit = charge_limit
        self.v_eff = v_eff
        self.on_limit_change = on_limit_change
        self._clock = clock
        self._connector = connector
        self._profile_dir = Path(profile_dir) if profile_dir is not None else None
        self._stack = ProfileStack()

        self._limit_before_change = -1.0
        self._next_change = MIN_TIME
        self._session_initialized = False
        self._session_start = MAX_TIME
        self._session_tx_id = -1
        self._session_id_tag_rev = 0
        self._remote_profile_rev_seen = 0

        self._stored_tx_start = format_timestamp(MAX_TIME)
        self._remote_profile_id = -1
        self._remote_profile_rev = 0
        self._load_state()
        self._load_profiles()

    # -- persistent session state -------------------------------------------

    @property
    def remote_profile_id(self) -> int:
        """Id of the profile installed by a remote start, or -1."""
        return self._remote_profile_id

    @remote_profile_id.setter
    def remote_profile_id(self, value: int) -> None:
        self._remote_profile_id = value
        self._remote_profile_rev += 1
        self._save_state()

    @property
    def charging_session_start(self) -> datetime:
        return self._session_start

    @property
    def profiles(self) -> list[ChargingProfile]:
        return list(self._stack.profiles())

    def _load_state(self) -> None:
        if self._profile_dir is None:
            return
        path = self._profile_dir / _STATE_FILE_NAME
        if not path.exists():
            return
        try:
            state = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("could not read smart charging state: %s", exc)
            return
        if not isinstance(state, dict):
            return
        if isinstance(state.get("txStartTime"), str):
            self._stored_tx_start = state["txStartTime"]
        remote = state.get("remoteProfileId")
        if isinstance(remote, int) and not isinstance(remote, bool):
            self._remote_profile_id = remote

    def _save_state(self) -> None:
        if self._profile_dir is None:
            return
        state = {
            "txStartTime": self._stored_tx_start,
            "remoteProfileId": self._remote_profile_id,
        }
        try:
            self._profile_dir.mkdir(parents=True, exist_ok=True)
            (self._profile_dir / _STATE_FILE_NAME).write_text(
                json.dumps(state), encoding="utf-8"
            )
        except OSError as exc:
            logger.error("could not save smart charging state: %s", exc)

    # -- main loop ----------------------------------------------------------

    def loop(self) -> None:
        """Refresh the session state and report a changed limit."""
        self._refresh_charging_session_state()

        now = self._clock()
        if now >= self._next_change:
            limit, valid_to = self.inference_limit(now)
            logger.info(
                "New limit for connector 1, scheduled at = %s, nextChange = %s, limit = %f",
                format_timestamp(self._next_change),
                format_timestamp(valid_to),
                limit,
            )
            self._next_change = valid_to
            if limit != self._limit_before_change and self.on_limit_change is not None:
                self.on_limit_change(limit)
            self._limit_before_change = limit

    def _refresh_charging_session_state(self) -> None:
        connector = self._connector
        if connector is None:
            return

        if not self._session_initialized:
            self._session_initialized = True
            try:
                self._session_start = parse_timestamp(self._stored_tx_start)
            except ValueError:
                self._session_start = MAX_TIME
            self._session_tx_id = connector.transaction_id
            self._session_id_tag_rev = connector.session_write_count
            self._remote_profile_rev_seen = self._remote_profile_rev
            if self._session_start >= MAX_TIME - _SESSION_START_TOLERANCE:
                # no charging session was running before the restart
                self._session_tx_id = -1

        if connector.transaction_id != self._session_tx_id:
            updated = False
            if self._session_tx_id != 0 and connector.transaction_id >= 0:
                self._session_start = self._clock()
                updated = True
            elif self._session_tx_id >= 0 and connector.transaction_id < 0:
                self._session_start = MAX_TIME
                updated = True
            if updated:
                self._stored_tx_start = format_timestamp(self._session_start)
                self._save_state()
            self._next_change = self._clock()

        if self._remote_profile_id >= 0 and (
            not connector.session_id_tag
            or (
                self._session_id_tag_rev != connector.session_write_count
                and self._remote_profile_rev_seen == self._remote_profile_rev
            )
        ):
            clear_id = self._remote_profile_id
            cleared = self.clear_charging_profile(lambda pid, _c, _p, _l: pid == clear_id)
            logger.debug(
                "Clearing RmtTx Charging Profile after session expiry: %s",
                "success" if cleared else "already cleared",
            )
            self.remote_profile_id = -1

        self._session_tx_id = connector.transaction_id
        self._session_id_tag_rev = connector.session_write_count
        self._remote_profile_rev_seen = self._remote_profile_rev

    # -- profiles -----------------------------------------------------------

    def set_charging_profile(self, json: Mapping[str, Any]) -> ChargingProfile:
        """Install a profile from its OCPP JSON form and store it if possible."""
        profile = self._update_profile_stack(json)
        self._write_profile(json, profile)
        return profile

    def _update_profile_stack(self, json: Mapping[str, Any]) -> ChargingProfile:
        profile = ChargingProfile.from_json(json)
        self._stack.add(profile)
        self._next_change = self._clock()
        return profile

    def clear_charging_profile(self, predicate: ClearPredicate) -> bool:
        """Remove matching profiles; True if any was removed.

        The predicate receives profile id, connector id (-1), purpose and stack level.
        """
        removed = self._stack.clear(predicate)
        if self._profile_dir is not None:
            for profile in removed:
                path = self._profile_dir / profile_file_name(profile.purpose, profile.stack_level)
                try:
                    path.unlink(missing_ok=True)
                except OSError as exc:
                    logger.error("could not remove %s: %s", path, exc)
        self._next_change = self._clock()
        return bool(removed)

    def _write_profile(self, json_obj: Mapping[str, Any], profile: ChargingProfile) -> bool:
        if self._profile_dir is None:
            return True
        path = self._profile_dir / profile_file_name(profile.purpose, profile.stack_level)
        try:
            self._profile_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(dict(json_obj)), encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Unable to save profile %s: %s", path, exc)
            return False
        return True

    def _load_profiles(self) -> bool:
        if self._profile_dir is None:
            return True
        success = True
        for purpose in _PROFILE_FILE_NAMES:
            for level in range(CHARGE_PROFILE_MAX_STACK_LEVEL):
                path = self._profile_dir / profile_file_name(purpose, level)
                if not path.exists():
                    continue
                try:
                    text = path.read_text(encoding="utf-8")
                except OSError as exc:
                    logger.error("could not open file for profile %s: %s", path, exc)
                    success = False
                    continue
                if len(text) < 2:
                    logger.error("too short for json: %s", path)
                    success = False
                    continue
                try:
                    data = json.loads(text)
                except ValueError:
                    logger.error("invalid json in file: %s", path)
                    success = False
                    continue
                if not isinstance(data, dict):
                    logger.error("error in file: %s", path)
                    success = False
                    continue
                self._update_profile_stack(data)
        return success

    # -- limits -------------------------------------------------------------

    def inference_limit(self, t: datetime) -> tuple[float, datetime]:
        """Return the limit at ``t`` and the time from which it may change."""
        return self._stack.inference_limit(
            t,
            self._session_start,
            self._session_tx_id,
            self._remote_profile_id,
            self.default_charge_limit,
        )

    def inference_limit_now(self) -> float:
        limit, _ = self.inference_limit(self._clock())
        return limit

    def get_composite_schedule(self, connector_id: int, duration: int) -> ChargingSchedule:
        """Combine all profiles into one absolute schedule starting now."""
        start = self._clock()
        result = ChargingSchedule(
            start_schedule=start,
            duration=duration,
            kind=ChargingProfileKindType.ABSOLUTE,
            recurrency=RecurrencyKindType.NOT_SET,
        )
        period_begin = start
        while (period_begin - start).total_seconds() < duration:
            limit, period_stop = self.inference_limit(period_begin)
            offset = int((period_begin - start).total_seconds())
            if not result.add_charging_schedule_period(ChargingSchedulePeriod(offset, limit)):
                break
            period_begin = period_stop
        return result