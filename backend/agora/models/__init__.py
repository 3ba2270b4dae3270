"""
ORM models.

Importing this package registers every table with ``Base.metadata``.
"""

from agora.models.forum import ForumCategory, ForumPost, ForumTopic
from agora.models.notification import Notification, NotificationType, TopicSubscription
from agora.models.user import User, UserRole, UserStatus

__all__ = [
    "ForumCategory",
    "ForumPost",
    "ForumTopic",
    "Notification",
    "NotificationType",
    "TopicSubscription",
    "User",
    "UserRole",
    "UserStatus",
]
