"""
Repository for user plan tiers (``PlanLookup`` implementation).
"""

from __future__ import annotations

import logging

from report_kit.db.repositories.base import BaseRepository
from report_kit.models.plan import UserPlan, plan_rank

logger = logging.getLogger(__name__)


class UserPlanRepository(BaseRepository):
    """Read/write access to the ``user_plans`` table.

    Users without a row are on the ``free`` tier.
    """

    def get_user_plan(self, user_id: str) -> UserPlan:
        row = self.fetchone("SELECT tier FROM user_plans WHERE user_id = ?;", (user_id,))
        tier = row["tier"] if row else "free"
        return UserPlan.for_tier(user_id, tier)

    def set_user_plan(self, user_id: str, tier: str) -> UserPlan:
        """Create or replace the plan row for ``user_id``.

        Raises:
            ValueError: If ``tier`` is not a known plan.
        """
        plan_rank(tier)
        self.execute(
            """
            INSERT INTO user_plans (user_id, tier)
            VALUES (?, ?)
            ON CONFLICT (user_id) DO UPDATE SET
                tier       = excluded.tier,
                updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
            """,
            (user_id, tier),
        )
        logger.info("Plan for user %s set to %s.", user_id, tier)
        return UserPlan.for_tier(user_id, tier)
