"""Tally bookkeeping data layer."""
