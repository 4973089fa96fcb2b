"""Charge point building blocks for OCPP 1.6: smart charging, metering, transaction records and heartbeat."""

__version__ = "0.1.0"