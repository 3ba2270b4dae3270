"""
Forum Module - Community discussions.

Features:
- Categories, topics and posts
- Pinning and locking
- Role-based authorization rules
"""

from agora.modules.forum.service import ForumService

__all__ = ["ForumService"]
