"""
Notifications Module - Topic subscriptions.

Features:
- Subscribe/unsubscribe to topics
- Reply notifications for subscribers
- Read/unread state
"""

from agora.modules.notifications.service import NotificationService

__all__ = ["NotificationService"]
