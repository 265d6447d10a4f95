"""
RSS Hook - Announce new RSS/Atom entries on Discord webhooks.

A Python service that polls subscribed feeds on a fixed interval and
posts each new entry as an embed to the feed's Discord webhook.
"""

__version__ = "1.0.0"
