"""Transactions: the client- and server-side record of one charging session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol

from ocppcharge.smart_charging_model import MIN_TIME, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

IDTAG_LEN_MAX = 20
REASON_LEN_MAX = 15


class TransactionContext(Protocol):
    """Where a transaction is persisted."""

    def commit(self, transaction: "Transaction") -> None: ...


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _int_or(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def _bool_or(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _str_or(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _truncate(text: str | None, max_len: int) -> str:
    return (text or "")[:max_len]


def _timestamp_or(value: Any, current: datetime) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError:
        return current


@dataclass
class TransactionRPC:
    """Progress of one request to the central system: sent and answered."""

    requested: bool = False
    confirmed: bool = False

    def set_requested(self) -> None:
        self.requested = True

    def confirm(self) -> None:
        self.confirmed = True

    @property
    def is_completed(self) -> bool:
        return self.requested and self.confirmed

    def serialize(self) -> dict[str, bool]:
        return {"requested": self.requested, "confirmed": self.confirmed}

    def deserialize(self, rpc: Mapping[str, Any]) -> None:
        """Apply stored flags; flags already set are never cleared."""
        if _bool_or(rpc.get("requested"), False):
            self.requested = True
        if _bool_or(rpc.get("confirmed"), False):
            self.confirmed = True


class Transaction:
    """A transaction as seen by the charging station.

    The session part is what the station decides locally; the start and stop
    parts track the StartTransaction and StopTransaction exchanges.
    """

    def __init__(
        self,
        context: TransactionContext,
        connector_id: int = 0,
        tx_nr: int = 0,
        silent: bool = False,
    ) -> None:
        self._context = context
        self.connector_id = connector_id
        self.tx_nr = tx_nr
        self.silent = silent

        self._id_tag = ""
        self.session_timestamp: datetime = MIN_TIME
        self.tx_profile_id = -1
        self.session_active = True

        self.start_rpc = TransactionRPC()
        self.start_timestamp: datetime = MIN_TIME
        self.meter_start = -1
        self.authorized = True
        self.transaction_id = -1

        self.stop_rpc = TransactionRPC()
        self._stop_id_tag = ""
        self.stop_timestamp: datetime = MIN_TIME
        self.meter_stop = -1
        self._stop_reason = ""

    # -- bounded strings ----------------------------------------------------

    @property
    def id_tag(self) -> str:
        return self._id_tag

    @id_tag.setter
    def id_tag(self, value: str | None) -> None:
        self._id_tag = _truncate(value, IDTAG_LEN_MAX)

    @property
    def stop_id_tag(self) -> str:
        return self._stop_id_tag

    @stop_id_tag.setter
    def stop_id_tag(self, value: str | None) -> None:
        self._stop_id_tag = _truncate(value, IDTAG_LEN_MAX)

    @property
    def stop_reason(self) -> str:
        return self._stop_reason

    @stop_reason.setter
    def stop_reason(self, value: str | None) -> None:
        self._stop_reason = _truncate(value, REASON_LEN_MAX)

    # -- state --------------------------------------------------------------

    @property
    def is_aborted(self) -> bool:
        return not self.start_rpc.requested and not self.session_active

    @property
    def is_completed(self) -> bool:
        return self.stop_rpc.confirmed

    @property
    def is_preparing(self) -> bool:
        return (
            self.session_active
            and not self.start_rpc.requested
            and not self.stop_rpc.requested
        )

    @property
    def is_running(self) -> bool:
        return self.start_rpc.requested and not self.stop_rpc.requested

    @property
    def is_active(self) -> bool:
        return self.session_active and not self.stop_rpc.requested

    @property
    def is_in_session(self) -> bool:
        return self.is_active and bool(self._id_tag)

    @property
    def is_id_tag_deauthorized(self) -> bool:
        return self.start_rpc.confirmed and not self.authorized

    @property
    def is_meter_start_defined(self) -> bool:
        return self.meter_start >= 0

    @property
    def is_meter_stop_defined(self) -> bool:
        return self.meter_stop >= 0

    def end_session(self) -> None:
        self.session_active = False

    def set_id_tag_deauthorized(self) -> None:
        self.authorized = False

    def commit(self) -> None:
        """Persist this transaction through its store."""
        self._context.commit(self)

    # -- persistence --------------------------------------------------------

    def serialize_session_state(self) -> dict[str, Any]:
        """Return the JSON-ready record of this transaction."""
        session: dict[str, Any] = {}
        if self._id_tag:
            session["idTag"] = self._id_tag
        if self.session_timestamp > MIN_TIME:
            session["timestamp"] = format_timestamp(self.session_timestamp)
        if self.tx_profile_id >= 0:
            session["txProfileId"] = self.tx_profile_id
        if not self.session_active:
            session["active"] = False

        start_client: dict[str, Any] = {}
        if self.start_timestamp > MIN_TIME:
            start_client["timestamp"] = format_timestamp(self.start_timestamp)
        if self.meter_start >= 0:
            start_client["meter"] = self.meter_start
        start: dict[str, Any] = {"rpc": self.start_rpc.serialize(), "client": start_client}
        if self.start_rpc.confirmed:
            start["server"] = {
                "transactionId": self.transaction_id,
                "authorized": self.authorized,
            }

        stop_client: dict[str, Any] = {}
        if self.stop_timestamp > MIN_TIME:
            stop_client["timestamp"] = format_timestamp(self.stop_timestamp)
        if self.meter_stop >= 0:
            stop_client["meter"] = self.meter_stop
        if self._stop_id_tag:
            stop_client["idTag"] = self._stop_id_tag
        if self._stop_reason:
            stop_client["reason"] = self._stop_reason
        stop: dict[str, Any] = {"rpc": self.stop_rpc.serialize(), "client": stop_client}

        state: dict[str, Any] = {"session": session, "start": start, "stop": stop}
        if self.silent:
            state["silent"] = True
        return state

    def deserialize_session_state(self, state: Mapping[str, Any]) -> None:
        """Apply a record produced by :meth:`serialize_session_state`."""
        session = _mapping(state.get("session"))
        if "idTag" in session:
            self.id_tag = _str_or(session["idTag"], "")
        if "timestamp" in session:
            self.session_timestamp = _timestamp_or(session["timestamp"], self.session_timestamp)
        if "txProfileId" in session:
            self.tx_profile_id = _int_or(session["txProfileId"], -1)
        if "active" in session:
            self.session_active = _bool_or(session["active"], True)

        start = _mapping(state.get("start"))
        if "rpc" in start:
            self.start_rpc.deserialize(_mapping(start["rpc"]))
        start_client = _mapping(start.get("client"))
        if "timestamp" in start_client:
            self.start_timestamp = _timestamp_or(start_client["timestamp"], self.start_timestamp)
        if "meter" in start_client:
            self.meter_start = _int_or(start_client["meter"], 0)
        if self.start_rpc.confirmed:
            server = _mapping(start.get("server"))
            self.transaction_id = _int_or(server.get("transactionId"), -1)
            self.authorized = _bool_or(server.get("authorized"), False)

        stop = _mapping(state.get("stop"))
        if "rpc" in stop:
            self.stop_rpc.deserialize(_mapping(stop["rpc"]))
        stop_client = _mapping(stop.get("client"))
        if "timestamp" in stop_client:
            self.stop_timestamp = _timestamp_or(stop_client["timestamp"], self.stop_timestamp)
        if "meter" in stop_client:
            self.meter_stop = _int_or(stop_client["meter"], 0)
        if "idTag" in stop_client:
            self.stop_id_tag = _str_or(stop_client["idTag"], "")
        if "reason" in stop_client:
            self.stop_reason = _str_or(stop_client["reason"], "")

        if "silent" in state:
            self.silent = _bool_or(state["silent"], False)

        logger.debug(
            "tx %s-%s | idTag %s | start req %s conf %s | stop req %s conf %s%s",
            self.connector_id,
            self.tx_nr,
            self._id_tag,
            self.start_rpc.requested,
            self.start_rpc.confirmed,
            self.stop_rpc.requested,
            self.stop_rpc.confirmed,
            " | silent" if self.silent else "",
        )