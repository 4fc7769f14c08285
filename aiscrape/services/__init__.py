"""Extraction pipeline services."""
