# ocppcharge

Building blocks for the charge-point side of OCPP 1.6, in plain Python with no
third-party dependencies. The package covers:

- **Smart charging**: charging profiles, schedules and schedule periods with
  limit inference (`ocppcharge.smart_charging_model`), stacks of installed
  profiles by purpose and stack level (`ocppcharge.charging_profile_stack`),
  and `SmartChargingService` (`ocppcharge.smart_charging_service`), which
  installs and clears profiles, reports limit changes and builds composite
  schedules.
- **Metering**: sampled values and reading contexts (`ocppcharge.sampled_value`),
  meter values and `MeterValueBuilder`, which samples the measurands named in a
  comma-separated selection (`ocppcharge.meter_value`), the per-connector
  `ConnectorMeterValuesRecorder` with its `MeteringConfig`
  (`ocppcharge.meter_recorder`) and `MeteringService` for all connectors
  (`ocppcharge.metering_service`).
- **Transactions**: the `Transaction` record and its JSON session state
  (`ocppcharge.transaction`), stop-transaction meter data
  (`ocppcharge.transaction_meter_data`, `ocppcharge.meter_store`) and
  `TransactionProcess`, which combines preconditions, triggers and enable steps
  (`ocppcharge.transaction_process`).
- **Heartbeat**: `HeartbeatService` calls a function of yours whenever its
  interval has passed (`ocppcharge.heartbeat`).

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Example: reading a limit from a charging profile

```python
from ocppcharge.smart_charging_model import ChargingProfile, parse_timestamp

profile = ChargingProfile.from_json({
    "chargingProfileId": 1,
    "stackLevel": 0,
    "chargingProfilePurpose": "TxDefaultProfile",
    "chargingProfileKind": "Absolute",
    "chargingSchedule": {
        "startSchedule": "2023-01-01T00:00:00.000Z",
        "chargingRateUnit": "W",
        "chargingSchedulePeriod": [
            {"startPeriod": 0, "limit": 11000},
            {"startPeriod": 3600, "limit": 7400},
        ],
    },
})

t = parse_timestamp("2023-01-01T00:30:00.000Z")
limit, next_change = profile.inference_limit(t)
# limit == 11000.0, next_change is 2023-01-01T01:00:00Z
```

`inference_limit` returns the limit at time `t`, or `None` where the profile
sets none, together with the time at which the answer may next change.

## Example: the smart charging service

```python
from ocppcharge.smart_charging_service import SmartChargingService

service = SmartChargingService(
    charge_limit=22000.0,
    on_limit_change=lambda limit: print("new limit", limit),
)
service.set_charging_profile({
    "chargingProfileId": 2,
    "stackLevel": 0,
    "chargingProfilePurpose": "ChargePointMaxProfile",
    "chargingProfileKind": "Relative",
    "chargingSchedule": {
        "chargingRateUnit": "W",
        "chargingSchedulePeriod": [{"startPeriod": 0, "limit": 16000}],
    },
})
service.loop()          # calls on_limit_change when the limit has changed
schedule = service.get_composite_schedule(1, 3600)
```

A TxProfile prevails over a TxDefaultProfile, and a ChargePointMaxProfile caps
both; without any applicable profile `charge_limit` applies. Given a
`profile_dir`, installed profiles are written there as JSON files and loaded
again on start.

## Example: the transaction process

```python
from ocppcharge.transaction_process import (
    TransactionProcess, TxPrecondition, TxTrigger, TxEnableState,
)

process = TransactionProcess(1)
process.add_precondition(lambda: TxPrecondition.ACTIVE)
process.add_trigger(lambda: TxTrigger.ACTIVE)
process.add_enable_step(lambda trigger: TxEnableState.ACTIVE)
state = process.evaluate_process_steps()   # TxEnableState.ACTIVE
```

Once every precondition and trigger is active, the enable steps are asked in
reverse order whether they are ready. When the triggers go inactive again, the
steps are asked in forward order whether they have shut down.

## What the package does not do

- It does not talk to a central system. There is no WebSocket connection and
  no OCPP message framing: `HeartbeatService` and `MeteringService` hand their
  heartbeats and `MeterValuesReport` objects to a callable you supply.
- It does not store or number transactions. `Transaction.commit()` passes the
  transaction to the context object given when it was created, which must
  provide `commit(transaction)`; keeping transaction records on disk and
  choosing transaction numbers are left to that object.