"""Lifecycle controllers and their collaborators."""
