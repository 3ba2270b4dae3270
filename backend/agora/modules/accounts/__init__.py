"""
Accounts Module - Identity and user moderation.

Features:
- Registration with field validation
- Login issuing signed session tokens
- Ban/unban and role changes
"""

from agora.modules.accounts.service import AccountService

__all__ = ["AccountService"]
