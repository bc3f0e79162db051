"""SQLite implementations of the calling-layer interfaces."""

from report_kit.db.repositories.plan_repo import UserPlanRepository
from report_kit.db.repositories.provider_key_repo import ProviderKeyRepository
from report_kit.db.repositories.usage_repo import UsageEventRepository

__all__ = ["ProviderKeyRepository", "UsageEventRepository", "UserPlanRepository"]
