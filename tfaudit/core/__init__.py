"""
Core components for the audit engine.

Contains:
- Base class for checkers
- Data models (Finding, ModuleResult, AuditReport)
- Exceptions
"""
