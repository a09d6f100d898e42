"""Batch multi-file commits of admin panel edits."""
