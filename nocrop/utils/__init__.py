"""Shared helpers: errors, tracing, logging, alarms."""
