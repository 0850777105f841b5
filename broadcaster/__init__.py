"""Notification broadcaster package.

Per-recipient send pipeline, work queue and reporting API for bot
notifications.
"""

__all__: list[str] = []
