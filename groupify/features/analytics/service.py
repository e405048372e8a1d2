"""
groupify/features/analytics/service.py
Analytics service: fetch an immutable share snapshot, run the pure reducers,
hydrate user profiles. Everything is recomputed per request.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Type, TypeVar, Union

from groupify.core.config import Settings, settings
from groupify.core.errors import NotFoundError, UpstreamFetchError, ValidationError
from groupify.core.logging import log_event
from groupify.core.tracing import start_span
from groupify.features.analytics.models import (
    ActivityBucket,
    ActivityMode,
    GroupAnalytics,
    GroupRecord,
    ListenerReflexReport,
    MemberStats,
    MemberVibeProfile,
    ReflexMode,
    Superlative,
    TimeRange,
)
from groupify.features.analytics.pipeline import match
from groupify.features.analytics.reducers import (
    SUPERLATIVE_RULES,
    now_or_utc,
    range_filter_start,
    reduce_activity_series,
    reduce_listener_reflex,
    reduce_member_stats,
    reduce_member_vibes,
    reduce_superlative,
    resolve_activity_start,
)
from groupify.features.analytics.share_store import get_store

E = TypeVar("E", bound=Enum)

REFLEX_RANGES = (TimeRange.LAST_24H, TimeRange.LAST_7D, TimeRange.LAST_30D, TimeRange.LAST_90D)


def coerce_choice(
    enum_cls: Type[E],
    value: Union[E, str, None],
    default: E,
    field: str,
    lenient: bool = False,
) -> E:
    """
    Missing -> default; unknown value -> ValidationError listing the allowed ones.

    lenient maps unknown values to the default instead of rejecting them.
    """
    if value is None or value == "":
        return default
    try:
        return enum_cls(value)
    except ValueError:
        if lenient:
            log_event("warning", "analytics.choice.defaulted", extra={"field": field, "value": str(value), "default": default.value})
            return default
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Must be one of: {allowed}")


class AnalyticsService:
    """Deterministic group analytics over the share store"""

    def __init__(self, store=None, settings_obj: Optional[Settings] = None):
        self._store = store
        self._settings = settings_obj or settings

    @property
    def store(self):
        return self._store if self._store is not None else get_store()

    async def _fetch(self, operation: str, group_id: Optional[str], fn: Callable, *args):
        """Run a blocking store read off the event loop; any failure becomes UpstreamFetchError."""
        try:
            return await asyncio.to_thread(fn, *args)
        except Exception as e:
            log_event(
                "error",
                "analytics.fetch.failed",
                group_id=group_id,
                operation=operation,
                error_code=UpstreamFetchError.code,
                extra={"error": repr(e)},
            )
            raise UpstreamFetchError(f"Failed to fetch {operation} for group {group_id}") from e

    async def _require_group(self, group_id: str) -> GroupRecord:
        group = await self._fetch("group", group_id, self.store.find_group, group_id)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found")
        return group

    # ---- activity ----

    async def get_group_activity(
        self,
        group_id: str,
        time_range: Union[TimeRange, str, None] = TimeRange.LAST_7D,
        mode: Union[ActivityMode, str, None] = ActivityMode.SHARES,
        now: Optional[datetime] = None,
    ) -> List[ActivityBucket]:
        time_range = coerce_choice(TimeRange, time_range, TimeRange.LAST_7D, "timeRange", lenient=True)
        mode = coerce_choice(ActivityMode, mode, ActivityMode.SHARES, "mode")
        now = now_or_utc(now)

        with start_span("analytics.activity", {"group_id": group_id, "time_range": time_range.value, "mode": mode.value}):
            earliest = None
            if time_range == TimeRange.ALL:
                await self._require_group(group_id)
                earliest = await self._fetch("earliest_share", group_id, self.store.find_earliest_share_at, group_id)

            start = resolve_activity_start(
                time_range,
                now,
                earliest_share_at=earliest,
                max_days=self._settings.ANALYTICS_ALL_RANGE_MAX_DAYS,
            )
            shares = await self._fetch("shares", group_id, self.store.find_shares_by_group, group_id, start)
            series = reduce_activity_series(shares, start=start, time_range=time_range, mode=mode, now=now)

        log_event(
            "info",
            "analytics.activity.computed",
            group_id=group_id,
            operation="activity",
            extra={"time_range": time_range.value, "mode": mode.value, "buckets": len(series), "shares": len(shares)},
        )
        return series

    # ---- vibes ----

    async def get_member_vibes(
        self,
        group_id: str,
        time_range: Union[TimeRange, str, None] = TimeRange.ALL,
        now: Optional[datetime] = None,
    ) -> List[MemberVibeProfile]:
        time_range = coerce_choice(TimeRange, time_range, TimeRange.ALL, "timeRange")
        now = now_or_utc(now)

        with start_span("analytics.vibes", {"group_id": group_id, "time_range": time_range.value}):
            await self._require_group(group_id)
            members, shares = await asyncio.gather(
                self._fetch("members", group_id, self.store.find_group_members, group_id),
                self._fetch("shares", group_id, self.store.find_shares_by_group, group_id, range_filter_start(time_range, now)),
            )
            vibes = reduce_member_vibes(
                members,
                shares,
                now=now,
                freshness_decay_per_day=self._settings.ANALYTICS_FRESHNESS_DECAY_PER_DAY,
            )

        log_event(
            "info",
            "analytics.vibes.computed",
            group_id=group_id,
            operation="vibes",
            extra={"time_range": time_range.value, "members": len(vibes)},
        )
        return vibes

    # ---- superlatives ----

    async def _rank_superlatives(self, group_id: str, shares) -> Dict[str, Superlative]:
        winners = await asyncio.gather(
            *(asyncio.to_thread(reduce_superlative, rule, shares) for rule in SUPERLATIVE_RULES)
        )
        ranked = [(rule, row) for rule, row in zip(SUPERLATIVE_RULES, winners) if row is not None]

        profiles = await asyncio.gather(
            *(self._fetch("user", group_id, self.store.find_user_by_id, row.key) for _, row in ranked)
        )

        result: Dict[str, Superlative] = {}
        for (rule, row), profile in zip(ranked, profiles):
            if profile is None:
                continue
            result[rule.key] = Superlative(
                rule_key=rule.key,
                winner_user_id=row.key,
                winner=profile,
                value=row["value"],
                label=rule.label,
                description=rule.description,
                icon=rule.icon,
            )
        return result

    async def get_superlatives(self, group_id: str) -> Dict[str, Superlative]:
        """
        Hall-of-fame winners keyed by rule.

        Rules with no qualifying user, and winners whose profile no longer
        resolves, are omitted.
        """
        with start_span("analytics.superlatives", {"group_id": group_id}):
            shares = await self._fetch("shares", group_id, self.store.find_shares_by_group, group_id)
            result = await self._rank_superlatives(group_id, shares)

        log_event(
            "info",
            "analytics.superlatives.computed",
            group_id=group_id,
            operation="superlatives",
            extra={"rules": ",".join(result)},
        )
        return result

    # ---- listener reflex ----

    async def get_listener_reflex(
        self,
        group_id: str,
        time_range: Union[TimeRange, str, None] = TimeRange.LAST_30D,
        mode: Union[ReflexMode, str, None] = ReflexMode.RECEIVED,
        now: Optional[datetime] = None,
    ) -> ListenerReflexReport:
        time_range = coerce_choice(TimeRange, time_range, TimeRange.LAST_30D, "range")
        if time_range not in REFLEX_RANGES:
            allowed = ", ".join(r.value for r in REFLEX_RANGES)
            raise ValidationError(f"Invalid range '{time_range.value}'. Must be one of: {allowed}")
        mode = coerce_choice(ReflexMode, mode, ReflexMode.RECEIVED, "mode")
        now = now_or_utc(now)

        with start_span("analytics.listener_reflex", {"group_id": group_id, "time_range": time_range.value, "mode": mode.value}):
            await self._require_group(group_id)
            # listens inside the window may belong to older shares, so no created_at filter
            members, shares = await asyncio.gather(
                self._fetch("members", group_id, self.store.find_group_members, group_id),
                self._fetch("shares", group_id, self.store.find_shares_by_group, group_id),
            )
            report = reduce_listener_reflex(members, shares, time_range=time_range, mode=mode, now=now)

        log_event(
            "info",
            "analytics.listener_reflex.computed",
            group_id=group_id,
            operation="listener_reflex",
            extra={"time_range": time_range.value, "mode": mode.value, "listens": report.total_listens},
        )
        return report

    # ---- member engagement ----

    async def get_member_stats(self, group_id: str, now: Optional[datetime] = None) -> List[MemberStats]:
        """Planet size and orbit distance for every member, inactive ones included."""
        now = now_or_utc(now)

        with start_span("analytics.member_stats", {"group_id": group_id}):
            await self._require_group(group_id)
            members, shares = await asyncio.gather(
                self._fetch("members", group_id, self.store.find_group_members, group_id),
                self._fetch("shares", group_id, self.store.find_shares_by_group, group_id),
            )
            stats = reduce_member_stats(members, shares, now=now)

        log_event(
            "info",
            "analytics.member_stats.computed",
            group_id=group_id,
            operation="member_stats",
            extra={"members": len(stats), "active": sum(1 for s in stats if s.orbit_distance >= 0)},
        )
        return stats

    # ---- dashboard ----

    async def get_group_analytics(
        self,
        group_id: str,
        time_range: Union[TimeRange, str, None] = TimeRange.LAST_7D,
        mode: Union[ActivityMode, str, None] = ActivityMode.SHARES,
        now: Optional[datetime] = None,
        vibes_range: Union[TimeRange, str, None] = TimeRange.ALL,
    ) -> GroupAnalytics:
        """
        Activity, vibes and superlatives in one call.

        Members and shares are read once and every panel is reduced from
        that snapshot. All-or-nothing: the first failing read fails the
        whole dashboard.
        """
        time_range = coerce_choice(TimeRange, time_range, TimeRange.LAST_7D, "timeRange", lenient=True)
        mode = coerce_choice(ActivityMode, mode, ActivityMode.SHARES, "mode")
        vibes_range = coerce_choice(TimeRange, vibes_range, TimeRange.ALL, "timeRange")
        now = now_or_utc(now)

        with start_span("analytics.dashboard", {"group_id": group_id, "time_range": time_range.value, "mode": mode.value}):
            await self._require_group(group_id)
            members, shares = await asyncio.gather(
                self._fetch("members", group_id, self.store.find_group_members, group_id),
                self._fetch("shares", group_id, self.store.find_shares_by_group, group_id),
            )

            start = resolve_activity_start(
                time_range,
                now,
                earliest_share_at=min((s.created_at for s in shares), default=None),
                max_days=self._settings.ANALYTICS_ALL_RANGE_MAX_DAYS,
            )
            activity = reduce_activity_series(shares, start=start, time_range=time_range, mode=mode, now=now)

            vibes_start = range_filter_start(vibes_range, now)
            vibe_shares = shares if vibes_start is None else match(shares, lambda s: s.created_at >= vibes_start)
            vibes = reduce_member_vibes(
                members,
                vibe_shares,
                now=now,
                freshness_decay_per_day=self._settings.ANALYTICS_FRESHNESS_DECAY_PER_DAY,
            )

            superlatives = await self._rank_superlatives(group_id, shares)

        log_event(
            "info",
            "analytics.dashboard.computed",
            group_id=group_id,
            operation="dashboard",
            extra={"time_range": time_range.value, "mode": mode.value, "shares": len(shares), "members": len(members)},
        )
        return GroupAnalytics(group_id=group_id, activity=activity, vibes=vibes, superlatives=superlatives)
