"""Passage embedding models."""
