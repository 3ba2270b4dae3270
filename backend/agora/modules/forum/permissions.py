"""
Forum authorization rules.

Every decision about who may create, edit, delete, pin, lock, reply, ban,
change roles, edit profiles or read notifications is made here. The
functions are pure: they look only at their arguments and never touch
the database.

Rules come from one table, ``PERMISSIONS``, keyed by ``(role, action)``:

- ``Grant.ANY``: allowed on any resource
- ``Grant.OWN``: allowed only on resources the actor authored
- ``Grant.DENY``: never allowed

A few guards then apply on top of the table: banned actors cannot create
content, locked topics need the ``REPLY_LOCKED`` grant, first posts are
never deletable, admins are immune to ban/role change/deletion, and the
strict moderation policy stops moderators deleting content written by
moderators or admins.

Usage:
    actor = Actor.from_user(user)
    if not can_delete_post(actor, Resource.from_post(post)):
        raise ForbiddenError()
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING

from agora.models.user import UserRole, UserStatus

if TYPE_CHECKING:
    from agora.models.forum import ForumPost, ForumTopic
    from agora.models.user import User


class Action(str, Enum):
    """Actions subject to authorization."""

    MANAGE_CATEGORY = "manage_category"
    CREATE_TOPIC = "create_topic"
    EDIT_TOPIC = "edit_topic"
    DELETE_TOPIC = "delete_topic"
    PIN_OR_LOCK = "pin_or_lock"
    POST_REPLY = "post_reply"
    REPLY_LOCKED = "reply_locked"
    EDIT_POST = "edit_post"
    DELETE_POST = "delete_post"
    VIEW_USERS = "view_users"
    BAN_USER = "ban_user"
    CHANGE_ROLE = "change_role"
    DELETE_USER = "delete_user"
    EDIT_PROFILE = "edit_profile"


class Grant(IntEnum):
    DENY = 0
    OWN = 1
    ANY = 2


class ModerationPolicy(str, Enum):
    """How far moderator powers reach over other staff members' content."""

    STRICT = "strict"
    PERMISSIVE = "permissive"


ROLE_RANK = {
    UserRole.USER: 0,
    UserRole.MODERATOR: 1,
    UserRole.ADMIN: 2,
}

_CONTENT_OWNER = {
    Action.CREATE_TOPIC: Grant.ANY,
    Action.EDIT_TOPIC: Grant.OWN,
    Action.DELETE_TOPIC: Grant.OWN,
    Action.POST_REPLY: Grant.ANY,
    Action.EDIT_POST: Grant.OWN,
    Action.DELETE_POST: Grant.OWN,
    Action.EDIT_PROFILE: Grant.OWN,
}

_CONTENT_MODERATOR = {
    Action.CREATE_TOPIC: Grant.ANY,
    Action.EDIT_TOPIC: Grant.ANY,
    Action.DELETE_TOPIC: Grant.ANY,
    Action.PIN_OR_LOCK: Grant.ANY,
    Action.POST_REPLY: Grant.ANY,
    Action.REPLY_LOCKED: Grant.ANY,
    Action.EDIT_POST: Grant.ANY,
    Action.DELETE_POST: Grant.ANY,
    Action.VIEW_USERS: Grant.ANY,
    Action.BAN_USER: Grant.ANY,
    Action.EDIT_PROFILE: Grant.OWN,
}

_GRANTS_BY_ROLE: dict[UserRole, dict[Action, Grant]] = {
    UserRole.USER: _CONTENT_OWNER,
    UserRole.MODERATOR: _CONTENT_MODERATOR,
    UserRole.ADMIN: {action: Grant.ANY for action in Action},
}

# Full (role x action) grid; anything not listed above is denied
PERMISSIONS: dict[tuple[UserRole, Action], Grant] = {
    (role, action): grants.get(action, Grant.DENY)
    for role, grants in _GRANTS_BY_ROLE.items()
    for action in Action
}

# Actions a banned account loses regardless of role
BANNED_DENIED = frozenset({Action.CREATE_TOPIC, Action.POST_REPLY})


@dataclass(frozen=True)
class Actor:
    """The user performing an action (or the user being acted upon)."""

    id: int
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", UserRole(self.role))
        object.__setattr__(self, "status", UserStatus(self.status))

    @property
    def is_banned(self) -> bool:
        return self.status == UserStatus.BANNED

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.MODERATOR, UserRole.ADMIN)

    @classmethod
    def from_user(cls, user: "User") -> "Actor":
        return cls(id=user.id, role=user.role, status=user.status)


@dataclass(frozen=True)
class Resource:
    """Authored content (topic or post) as seen by the rules."""

    author_id: int
    author_role: UserRole = UserRole.USER
    is_locked: bool = False
    is_first_post: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "author_role", UserRole(self.author_role))

    @classmethod
    def from_topic(cls, topic: "ForumTopic") -> "Resource":
        """Build from a topic with its author loaded."""
        return cls(
            author_id=topic.author_id,
            author_role=topic.author.role,
            is_locked=topic.is_locked,
        )

    @classmethod
    def from_post(cls, post: "ForumPost") -> "Resource":
        """Build from a post with its author and topic loaded."""
        return cls(
            author_id=post.author_id,
            author_role=post.author.role,
            is_locked=post.topic.is_locked,
            is_first_post=post.is_first_post,
        )


def grant_for(actor: Actor, action: Action) -> Grant:
    """Look up the table cell for an actor's role."""
    return PERMISSIONS[(actor.role, action)]


def is_allowed(
    actor: Actor | None,
    action: Action,
    resource: Resource | None = None,
) -> bool:
    """
    Apply the permission table.

    Args:
        actor: Acting user, None for anonymous requests
        action: Action being attempted
        resource: Content acted upon, needed for ``Grant.OWN`` cells

    Returns:
        True if the table allows it
    """
    if actor is None:
        return False
    if actor.is_banned and action in BANNED_DENIED:
        return False

    grant = grant_for(actor, action)
    if grant == Grant.ANY:
        return True
    if grant == Grant.OWN:
        return resource is not None and resource.author_id == actor.id
    return False


def _within_moderation_policy(
    actor: Actor,
    resource: Resource,
    policy: ModerationPolicy,
) -> bool:
    if ModerationPolicy(policy) == ModerationPolicy.PERMISSIVE:
        return True
    if resource.author_id == actor.id or actor.role == UserRole.ADMIN:
        return True
    return ROLE_RANK[resource.author_role] < ROLE_RANK[actor.role]


# ==================== Categories ====================


def can_manage_category(actor: Actor | None) -> bool:
    return is_allowed(actor, Action.MANAGE_CATEGORY)


# ==================== Topics ====================


def can_create_topic(actor: Actor | None) -> bool:
    return is_allowed(actor, Action.CREATE_TOPIC)


def can_edit_topic(actor: Actor | None, topic: Resource) -> bool:
    return is_allowed(actor, Action.EDIT_TOPIC, topic)


def can_delete_topic(
    actor: Actor | None,
    topic: Resource,
    policy: ModerationPolicy = ModerationPolicy.STRICT,
) -> bool:
    if not is_allowed(actor, Action.DELETE_TOPIC, topic):
        return False
    return _within_moderation_policy(actor, topic, policy)


def can_pin_or_lock(actor: Actor | None) -> bool:
    return is_allowed(actor, Action.PIN_OR_LOCK)


# ==================== Posts ====================


def can_post_reply(actor: Actor | None, topic: Resource) -> bool:
    if not is_allowed(actor, Action.POST_REPLY, topic):
        return False
    return not topic.is_locked or is_allowed(actor, Action.REPLY_LOCKED)


def can_edit_post(actor: Actor | None, post: Resource) -> bool:
    return is_allowed(actor, Action.EDIT_POST, post)


def can_delete_post(
    actor: Actor | None,
    post: Resource,
    policy: ModerationPolicy = ModerationPolicy.STRICT,
) -> bool:
    """First posts are never deletable; delete the topic instead."""
    if post.is_first_post:
        return False
    if not is_allowed(actor, Action.DELETE_POST, post):
        return False
    return _within_moderation_policy(actor, post, policy)


# ==================== Users ====================


def can_view_users(actor: Actor | None) -> bool:
    return is_allowed(actor, Action.VIEW_USERS)


def can_ban_user(actor: Actor | None, target: Actor) -> bool:
    """Covers both ban and unban."""
    if not is_allowed(actor, Action.BAN_USER):
        return False
    return target.role != UserRole.ADMIN


def can_change_role(
    actor: Actor | None,
    target: Actor,
    new_role: UserRole | str,
) -> bool:
    try:
        UserRole(new_role)
    except ValueError:
        return False
    if not is_allowed(actor, Action.CHANGE_ROLE):
        return False
    return target.role != UserRole.ADMIN


def can_delete_user(actor: Actor | None, target: Actor) -> bool:
    if not is_allowed(actor, Action.DELETE_USER):
        return False
    return target.role != UserRole.ADMIN


def can_edit_profile(actor: Actor | None, target: Actor) -> bool:
    """Own profile, or anyone's for an admin."""
    return is_allowed(
        actor,
        Action.EDIT_PROFILE,
        Resource(author_id=target.id, author_role=target.role),
    )


# ==================== Notifications ====================


def can_access_notification(actor: Actor | None, owner_id: int) -> bool:
    """Notifications are private to their recipient, admins included."""
    return actor is not None and actor.id == owner_id
