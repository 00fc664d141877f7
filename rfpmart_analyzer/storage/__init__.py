"""Artifact storage housekeeping."""
