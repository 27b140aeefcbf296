"""Cron and one-off scheduling of synthetic events."""
