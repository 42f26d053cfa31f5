"""Core types, errors, configuration and the local model backend."""
