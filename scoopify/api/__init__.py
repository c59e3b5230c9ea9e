"""
HTTP API: cron triggers and per-request service actions.
"""
