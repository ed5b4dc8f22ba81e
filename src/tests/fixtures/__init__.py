"""Test fixtures and model factories."""

from tests.fixtures.factories import T0, SessionFactory, TaskFactory, at

__all__ = [
    "T0",
    "at",
    "TaskFactory",
    "SessionFactory",
]
