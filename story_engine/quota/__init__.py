"""Daily per-user request quotas."""

from story_engine.quota.guard import QuotaGuard

__all__ = ["QuotaGuard"]
