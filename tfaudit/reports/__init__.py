"""Aggregation and rendering of audit findings."""
