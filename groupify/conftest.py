# groupify/conftest.py
import os
import pytest
from datetime import datetime, timedelta, timezone

# App import validates the environment; tests run with whatever the shell has
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")

from groupify.features.analytics.models import (
    GroupRecord,
    ShareEvent,
    ShareLike,
    ShareListener,
    UserProfile,
)
from groupify.features.analytics.share_store import ShareStore, reset_store


@pytest.fixture
def fixed_now():
    """Fixed timestamp for deterministic testing."""
    return datetime(2025, 3, 14, 15, 30, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def in_memory_store(monkeypatch):
    """
    Force the in-memory share store and start every test empty.

    SQL store tests build their own SqlShareStore against a temp SQLite file.
    """
    monkeypatch.delenv("DATABASE_URL", raising=False)
    reset_store()
    ShareStore.clear()
    yield ShareStore
    ShareStore.clear()
    reset_store()


def _make_share(
    share_id,
    author,
    created_at,
    *,
    group_id="g1",
    artist="Artist",
    likes=(),
    listeners=(),
    like_count=None,
    listen_count=None,
):
    """
    Build a ShareEvent.

    likes: iterable of (user_id, liked_at)
    listeners: iterable of (user_id, listened_at) or (user_id, listened_at, ms)
    Counters default to the list lengths.
    """
    like_models = [ShareLike(user_id=u, liked_at=ts) for u, ts in likes]
    listener_models = []
    for entry in listeners:
        user_id, listened_at = entry[0], entry[1]
        ms = entry[2] if len(entry) > 2 else None
        listener_models.append(ShareListener(user_id=user_id, listened_at=listened_at, time_to_listen_ms=ms))

    return ShareEvent(
        share_id=share_id,
        group_id=group_id,
        shared_by_user_id=author,
        created_at=created_at,
        artist_name=artist,
        track_name=f"Track {share_id}",
        spotify_track_id=f"sp-{share_id}",
        like_count=len(like_models) if like_count is None else like_count,
        likes=like_models,
        listen_count=len(listener_models) if listen_count is None else listen_count,
        listeners=listener_models,
    )


def _seed_group(store, group_id, members, shares=()):
    """Register users, the group (membership order = members order) and its shares."""
    for user_id in members:
        store.add_user(UserProfile(user_id=user_id, display_name=f"User {user_id}", profile_image=f"https://img/{user_id}.png"))
    store.add_group(GroupRecord(group_id=group_id, name=f"Group {group_id}", member_ids=list(members)))
    for share in shares:
        store.add_share(share)


@pytest.fixture
def three_member_group(in_memory_store, fixed_now):
    """
    A, B, C in group g1.
    A shares two tracks (artists X, Y), each liked by B.
    B shares one track (artist X) with no likes. C shares nothing.
    """
    now = fixed_now
    shares = [
        _make_share("s1", "A", now - timedelta(days=2), artist="X", likes=[("B", now - timedelta(days=1))]),
        _make_share("s2", "A", now - timedelta(days=1), artist="Y", likes=[("B", now - timedelta(hours=12))]),
        _make_share("s3", "B", now - timedelta(days=3), artist="X"),
    ]
    _seed_group(in_memory_store, "g1", ["A", "B", "C"], shares)
    return shares


@pytest.fixture
def make_share():
    return _make_share


@pytest.fixture
def seed_group():
    return _seed_group
