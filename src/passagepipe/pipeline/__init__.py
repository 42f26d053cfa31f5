"""Splitting, scheduling, tasks and result sinks."""
