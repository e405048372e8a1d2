"""
groupify/features/analytics/share_store.py

Read-only share store consumed by the analytics engine.
In-memory implementation plus store selection; the SQL-backed store lives in
share_store_sql.py and exposes the same interface.
"""

import logging
import os
from datetime import datetime
from typing import Dict, List, Optional

from groupify.features.analytics.models import (
    GroupMember,
    GroupRecord,
    ShareEvent,
    UserProfile,
)

logger = logging.getLogger("groupify")

# In-memory read models (seeded by tests and local dev)
_users: Dict[str, UserProfile] = {}
_groups: Dict[str, GroupRecord] = {}
_shares: List[ShareEvent] = []


class ShareStore:
    """
    In-memory share store.

    Every read returns fresh lists so callers can never mutate store state.
    """

    @staticmethod
    def find_group(group_id: str) -> Optional[GroupRecord]:
        return _groups.get(group_id)

    @staticmethod
    def find_shares_by_group(group_id: str, created_after: Optional[datetime] = None) -> List[ShareEvent]:
        """
        Shares of one group, ascending by created_at.

        Args:
            group_id: Group to read
            created_after: Inclusive lower bound on created_at (optional)
        """
        selected = [
            s for s in _shares
            if s.group_id == group_id and (created_after is None or s.created_at >= created_after)
        ]
        return sorted(selected, key=lambda s: (s.created_at, s.share_id))

    @staticmethod
    def find_earliest_share_at(group_id: str) -> Optional[datetime]:
        created = [s.created_at for s in _shares if s.group_id == group_id]
        return min(created) if created else None

    @staticmethod
    def find_group_members(group_id: str) -> List[GroupMember]:
        """Members in membership order; ids without a known user fall back to the id as name."""
        group = _groups.get(group_id)
        if group is None:
            return []

        members = []
        for user_id in group.member_ids:
            profile = _users.get(user_id)
            members.append(GroupMember(
                user_id=user_id,
                display_name=profile.display_name if profile else user_id,
                profile_image=profile.profile_image if profile else None,
            ))
        return members

    @staticmethod
    def find_user_by_id(user_id: str) -> Optional[UserProfile]:
        return _users.get(user_id)

    # ---- seeding ----

    @staticmethod
    def add_user(user: UserProfile) -> None:
        _users[user.user_id] = user

    @staticmethod
    def add_group(group: GroupRecord) -> None:
        _groups[group.group_id] = group

    @staticmethod
    def add_share(share: ShareEvent) -> bool:
        """
        Add a share. Returns False if the share id is already present.
        """
        if any(s.share_id == share.share_id for s in _shares):
            return False
        _shares.append(share)
        return True

    @staticmethod
    def clear() -> None:
        """
        Clear all users, groups and shares.
        FOR TESTING ONLY.
        """
        _users.clear()
        _groups.clear()
        _shares.clear()

    @staticmethod
    def count() -> int:
        """Return total number of shares in store."""
        return len(_shares)


def get_share_store():
    """
    Pick the store implementation.

    - SQL store when DATABASE_URL is configured and reachable
    - in-memory store otherwise
    Reducers and API are agnostic to the choice.
    """
    database_url = os.getenv("DATABASE_URL")

    if database_url:
        try:
            from groupify.features.analytics.share_store_sql import SqlShareStore
            from groupify.core.database import check_connection

            if check_connection():
                return SqlShareStore()
            logger.warning("[share_store] database unavailable, falling back to in-memory")
        except Exception as e:
            logger.warning(f"[share_store] failed to initialize SQL store: {e}; falling back to in-memory")

    return ShareStore()


# Global store instance (lazy initialization)
_store_instance = None


def get_store():
    """
    Get the singleton share store instance.

    This is the primary API that all consumers should use.
    """
    global _store_instance
    if _store_instance is None:
        _store_instance = get_share_store()
    return _store_instance


def reset_store():
    """
    Reset the store instance.

    FOR TESTING ONLY - forces re-initialization on next get_store() call.
    """
    global _store_instance
    _store_instance = None
