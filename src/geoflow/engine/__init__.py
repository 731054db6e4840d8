"""Dependency-aware task scheduling and execution engine.

The engine is a pull-based, single-flight scheduler: one loop polls the
store for queued tasks, dispatches the first one whose prerequisite task
types are completed within its workflow, and runs it to completion before
polling again.  Dispatch is sequential, so a single scheduler process never
races itself for a task.  Running several scheduler processes against the
same database is not supported: there is no claim/lease step beyond the
guarded Queued -> Running status update.
"""
