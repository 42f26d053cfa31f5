"""Checkpointing, devices and progress reporting."""
