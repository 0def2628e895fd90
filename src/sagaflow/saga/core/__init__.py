"""Saga core model — enums, events, instance state, wire messages, templates."""
