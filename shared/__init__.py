"""Shared helpers for the Tally data layer."""
