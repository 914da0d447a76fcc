"""Logging and telemetry helpers for the email-os core."""
