"""
Agora Forum Backend.

Categories, topics and posts with role-based moderation.
"""

__version__ = "1.0.0"
