"""Scenario replay and randomized runs."""
