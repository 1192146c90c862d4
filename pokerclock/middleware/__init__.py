"""Metrics and error-tracking integrations."""
