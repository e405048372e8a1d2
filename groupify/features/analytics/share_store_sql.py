"""
groupify/features/analytics/share_store_sql.py

SQLAlchemy-backed share store.

Maintains the same interface as the in-memory ShareStore:
- shares ascending by created_at (share_id breaks ties)
- likes / listeners embedded per share
- membership order preserved via group_members.position
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, insert, and_, func
from sqlalchemy.exc import IntegrityError

from groupify.core.database import (
    get_db_session,
    users,
    groups,
    group_members,
    shares,
    share_likes,
    share_listeners,
)
from groupify.features.analytics.models import (
    GroupMember,
    GroupRecord,
    ShareEvent,
    ShareLike,
    ShareListener,
    UserProfile,
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlShareStore:
    """
    SQL-backed share store.

    Maintains identical interface to in-memory ShareStore.
    """

    @staticmethod
    def find_group(group_id: str) -> Optional[GroupRecord]:
        with get_db_session() as session:
            row = session.execute(select(groups).where(groups.c.group_id == group_id)).first()
            if row is None:
                return None

            member_ids = session.execute(
                select(group_members.c.user_id)
                .where(group_members.c.group_id == group_id)
                .order_by(group_members.c.position, group_members.c.id)
            ).scalars().all()

            return GroupRecord(group_id=row.group_id, name=row.name, member_ids=list(member_ids))

    @staticmethod
    def find_shares_by_group(group_id: str, created_after: Optional[datetime] = None) -> List[ShareEvent]:
        """
        Retrieve a group's shares with likes and listeners embedded.

        Args:
            group_id: Group to read
            created_after: Inclusive lower bound on created_at (optional)

        Returns:
            List of ShareEvent instances (copies, not DB references)
        """
        with get_db_session() as session:
            filters = [shares.c.group_id == group_id]
            if created_after is not None:
                filters.append(shares.c.created_at >= created_after)

            share_rows = session.execute(
                select(shares)
                .where(and_(*filters))
                .order_by(shares.c.created_at, shares.c.share_id)
            ).all()
            if not share_rows:
                return []

            share_ids = [row.share_id for row in share_rows]

            likes_by_share: Dict[str, List[ShareLike]] = {}
            for row in session.execute(
                select(share_likes)
                .where(share_likes.c.share_id.in_(share_ids))
                .order_by(share_likes.c.liked_at, share_likes.c.id)
            ):
                likes_by_share.setdefault(row.share_id, []).append(
                    ShareLike(user_id=row.user_id, liked_at=_utc(row.liked_at))
                )

            listeners_by_share: Dict[str, List[ShareListener]] = {}
            for row in session.execute(
                select(share_listeners)
                .where(share_listeners.c.share_id.in_(share_ids))
                .order_by(share_listeners.c.listened_at, share_listeners.c.id)
            ):
                listeners_by_share.setdefault(row.share_id, []).append(
                    ShareListener(
                        user_id=row.user_id,
                        listened_at=_utc(row.listened_at),
                        time_to_listen_ms=row.time_to_listen_ms,
                    )
                )

            return [
                ShareEvent(
                    share_id=row.share_id,
                    group_id=row.group_id,
                    shared_by_user_id=row.shared_by,
                    created_at=_utc(row.created_at),
                    artist_name=row.artist_name,
                    track_name=row.track_name,
                    spotify_track_id=row.spotify_track_id,
                    like_count=row.like_count,
                    likes=likes_by_share.get(row.share_id, []),
                    listen_count=row.listen_count,
                    listeners=listeners_by_share.get(row.share_id, []),
                )
                for row in share_rows
            ]

    @staticmethod
    def find_earliest_share_at(group_id: str) -> Optional[datetime]:
        with get_db_session() as session:
            earliest = session.execute(
                select(func.min(shares.c.created_at)).where(shares.c.group_id == group_id)
            ).scalar()
            return _utc(earliest)

    @staticmethod
    def find_group_members(group_id: str) -> List[GroupMember]:
        with get_db_session() as session:
            rows = session.execute(
                select(group_members.c.user_id, users.c.display_name, users.c.profile_image)
                .select_from(group_members.outerjoin(users, users.c.user_id == group_members.c.user_id))
                .where(group_members.c.group_id == group_id)
                .order_by(group_members.c.position, group_members.c.id)
            ).all()

            return [
                GroupMember(
                    user_id=row.user_id,
                    display_name=row.display_name or row.user_id,
                    profile_image=row.profile_image,
                )
                for row in rows
            ]

    @staticmethod
    def find_user_by_id(user_id: str) -> Optional[UserProfile]:
        with get_db_session() as session:
            row = session.execute(select(users).where(users.c.user_id == user_id)).first()
            if row is None:
                return None
            return UserProfile(user_id=row.user_id, display_name=row.display_name, profile_image=row.profile_image)

    # ---- seeding ----

    @staticmethod
    def add_user(user: UserProfile) -> None:
        with get_db_session() as session:
            session.execute(insert(users).values(
                user_id=user.user_id,
                display_name=user.display_name,
                profile_image=user.profile_image,
            ))

    @staticmethod
    def add_group(group: GroupRecord) -> None:
        with get_db_session() as session:
            session.execute(insert(groups).values(group_id=group.group_id, name=group.name))
            for position, user_id in enumerate(group.member_ids):
                session.execute(insert(group_members).values(
                    group_id=group.group_id,
                    user_id=user_id,
                    position=position,
                ))

    @staticmethod
    def add_share(share: ShareEvent) -> bool:
        """
        Insert a share with its likes and listeners.

        Returns:
            True if inserted, False if the share id already exists
        """
        try:
            with get_db_session() as session:
                session.execute(insert(shares).values(
                    share_id=share.share_id,
                    group_id=share.group_id,
                    shared_by=share.shared_by_user_id,
                    spotify_track_id=share.spotify_track_id,
                    track_name=share.track_name,
                    artist_name=share.artist_name,
                    like_count=share.like_count,
                    listen_count=share.listen_count,
                    created_at=share.created_at,
                ))
                for like in share.likes:
                    session.execute(insert(share_likes).values(
                        share_id=share.share_id,
                        user_id=like.user_id,
                        liked_at=like.liked_at,
                    ))
                for listener in share.listeners:
                    session.execute(insert(share_listeners).values(
                        share_id=share.share_id,
                        user_id=listener.user_id,
                        listened_at=listener.listened_at,
                        time_to_listen_ms=listener.time_to_listen_ms,
                    ))
            return True
        except IntegrityError:
            return False

    @staticmethod
    def clear() -> None:
        """
        Delete all rows from the analytics tables.
        FOR TESTING ONLY.
        """
        with get_db_session() as session:
            for table in (share_listeners, share_likes, shares, group_members, groups, users):
                session.execute(table.delete())

    @staticmethod
    def count() -> int:
        """Return total number of shares."""
        with get_db_session() as session:
            return session.execute(select(func.count()).select_from(shares)).scalar() or 0
