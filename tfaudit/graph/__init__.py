"""Dependency graph of a module."""
