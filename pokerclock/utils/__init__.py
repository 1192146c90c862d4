"""Shared utilities: errors, database, redis, JSON, security."""
