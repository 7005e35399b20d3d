from __future__ import annotations

from typing import Mapping

from loguru import logger

from story_engine.domain.models import RateLimitResult, RequestClass
from story_engine.quota.windows import Clock, start_of_next_utc_day, start_of_utc_day, to_epoch_ms, utc_now
from story_engine.storage.db import DatabaseService
from story_engine.storage.quotas import crud as quotas_crud

guard_log = logger.bind(node="quota_guard")


class QuotaGuard:
    """Atomic daily counter per (user, request class).

    Every call runs in its own transaction. The first statement is a write, so the store
    serializes concurrent callers on the same key before any counter is compared with
    the limit. Store errors deny the request.
    """

    def __init__(
        self,
        db: DatabaseService,
        limits: Mapping[str, int],
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.db = db
        self.limits = {str(key): int(value) for key, value in limits.items()}
        self.clock = clock

    def limit_for(self, request_class: RequestClass | str) -> int:
        return self.limits[RequestClass(request_class).value]

    async def check_and_consume(
        self,
        user_id: str | None,
        request_class: RequestClass | str,
    ) -> RateLimitResult:
        request_class = RequestClass(request_class)
        limit = self.limit_for(request_class)
        now = self.clock()
        reset_ms = to_epoch_ms(start_of_next_utc_day(now))

        if not user_id:
            return RateLimitResult(
                success=False,
                limit=limit,
                remaining=0,
                reset_timestamp=reset_ms,
                error_kind="AuthenticationRequired",
                error_message="Authentication required.",
            )

        log = guard_log.bind(user_id=user_id, request_class=request_class.value)
        if limit <= 0:
            log.info("Quota disabled for request class; denying")
            return self._exceeded(request_class, limit, reset_ms)

        now_ms = to_epoch_ms(now)
        floor_ms = to_epoch_ms(start_of_utc_day(now))
        try:
            async with self.db.transaction() as session:
                if await quotas_crud.open_window(session, user_id, request_class.value, now_ms):
                    count = 1
                else:
                    row = await quotas_crud.consume(
                        session,
                        user_id,
                        request_class.value,
                        now_ms=now_ms,
                        window_floor_ms=floor_ms,
                        limit=limit,
                    )
                    count = row.request_count if row is not None else None
        except Exception:  # noqa: BLE001
            log.exception("Quota store error; failing closed")
            return RateLimitResult(
                success=False,
                limit=limit,
                remaining=0,
                reset_timestamp=reset_ms,
                error_kind="InternalError",
                error_message="Unable to verify usage quota. Please try again later.",
            )

        if count is None:
            log.info("Daily quota exhausted limit={}", limit)
            return self._exceeded(request_class, limit, reset_ms)

        log.debug("Quota consumed count={} limit={}", count, limit)
        return RateLimitResult(
            success=True,
            limit=limit,
            remaining=max(0, limit - count),
            reset_timestamp=reset_ms,
        )

    async def peek(self, user_id: str, request_class: RequestClass | str) -> RateLimitResult:
        """Report usage for the current UTC day without consuming a request."""

        request_class = RequestClass(request_class)
        limit = self.limit_for(request_class)
        now = self.clock()
        floor_ms = to_epoch_ms(start_of_utc_day(now))
        reset_ms = to_epoch_ms(start_of_next_utc_day(now))

        async with self.db.with_session() as session:
            row = await quotas_crud.get_quota(session, user_id, request_class.value)

        used = 0
        if row is not None and row.window_start_time >= floor_ms:
            used = row.request_count
        remaining = max(0, limit - used)
        return RateLimitResult(
            success=remaining > 0,
            limit=limit,
            remaining=remaining,
            reset_timestamp=reset_ms,
            error_kind=None if remaining > 0 else "RateLimitExceeded",
        )

    @staticmethod
    def _exceeded(request_class: RequestClass, limit: int, reset_ms: int) -> RateLimitResult:
        return RateLimitResult(
            success=False,
            limit=limit,
            remaining=0,
            reset_timestamp=reset_ms,
            error_kind="RateLimitExceeded",
            error_message=f"Daily {request_class.value} generation limit of {limit} reached.",
        )
