"""Thin wrappers over the host OS: subprocesses and files."""
