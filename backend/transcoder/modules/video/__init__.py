"""Artifact storage, metadata records and the manual upload routes."""
