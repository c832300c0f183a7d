"""Plan rule versioning and single-active-rule activation"""

import logging
import uuid
from decimal import Decimal
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from returns_engine.domain.exceptions import NotFoundError
from returns_engine.domain.models import RateBand, RateRule
from returns_engine.domain.rate_bands import bands_from_json, bands_to_json, build_rate_rule
from returns_engine.infrastructure.database.models import PlanRule, utcnow
from returns_engine.infrastructure.database.repositories import PlanRuleRepository
from returns_engine.infrastructure.locks import ACTIVATION_KEY, KeyedLock, activation_lock


def to_rate_rule(rule: PlanRule) -> RateRule:
    """Calculator view of a stored rule"""
    return RateRule(
        bands=tuple(bands_from_json(rule.bands)),
        special_min_paise=rule.special_min_paise,
        special_rate=Decimal(rule.special_rate),
        admin_charge=Decimal(rule.admin_charge),
        booster=Decimal(rule.booster),
        min_amount_paise=rule.min_amount_paise,
    )


class PlanRuleManager:
    """
    Creates rule versions and keeps exactly one of them active.

    Activation runs under a process-wide lock and a row lock on the singleton
    pointer, so two concurrent activations serialize and the loser simply
    re-points the singleton after the winner commits.
    """

    def __init__(self, db: AsyncSession, lock: KeyedLock = activation_lock):
        self.db = db
        self.repo = PlanRuleRepository(db)
        self.lock = lock

    async def create_rule(
        self,
        name: str,
        bands: Sequence[RateBand],
        min_amount_paise: int,
        special_min_paise: int,
        special_rate: Decimal,
        admin_charge: Decimal,
        booster: Decimal,
        family: str = "default",
        created_by: str | None = None,
        activate: bool = False,
    ) -> PlanRule:
        """Validate and store a new version; optionally make it the active rule"""
        validated = build_rate_rule(
            bands,
            special_min_paise=special_min_paise,
            special_rate=special_rate,
            admin_charge=admin_charge,
            booster=booster,
            min_amount_paise=min_amount_paise,
        )

        async with self.lock.hold(ACTIVATION_KEY):
            rule = PlanRule(
                family=family,
                name=name,
                min_amount_paise=validated.min_amount_paise,
                special_min_paise=validated.special_min_paise,
                special_rate=validated.special_rate,
                admin_charge=validated.admin_charge,
                booster=validated.booster,
                bands=bands_to_json(validated.bands),
                active=False,
                version=await self.repo.next_version(family),
                created_by=created_by,
            )
            await self.repo.add(rule)
            await self.db.commit()

        logging.info(
            "Plan rule created",
            extra={"plan_rule_id": str(rule.id), "family": family, "version": rule.version, "step": "create_rule"},
        )

        if activate:
            rule = await self.activate(rule.id)
        return rule

    async def activate(self, rule_id: uuid.UUID) -> PlanRule:
        """
        Make rule_id the single active rule.

        Clearing the previous flag, setting the new one and moving the
        pointer commit together. Activating the already active rule is a
        no-op.

        Raises:
            NotFoundError: Unknown rule id
        """
        async with self.lock.hold(ACTIVATION_KEY):
            try:
                pointer = await self.repo.pointer_for_update()
                rule = await self.repo.get(rule_id, for_update=True)
                if rule is None:
                    raise NotFoundError(f"Plan rule {rule_id} not found")

                if pointer.plan_rule_id == rule.id and rule.active:
                    await self.db.commit()
                    return rule

                previous_id = pointer.plan_rule_id
                for other in await self.repo.flagged_active():
                    if other.id != rule.id:
                        other.active = False

                now = utcnow()
                rule.active = True
                rule.effective_from = now
                pointer.plan_rule_id = rule.id
                pointer.updated_at = now
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise

        logging.info(
            "Plan rule activated",
            extra={
                "plan_rule_id": str(rule.id),
                "previous_plan_rule_id": str(previous_id) if previous_id else None,
                "version": rule.version,
                "step": "activate_rule",
            },
        )
        return rule

    async def get_latest(self) -> PlanRule | None:
        """Highest version in any state, or None before the first rule exists"""
        return await self.repo.latest()

    async def get_active(self) -> PlanRule | None:
        return await self.repo.active()

    async def require_active(self) -> PlanRule:
        rule = await self.repo.active()
        if rule is None:
            raise NotFoundError("No plan rule is active")
        return rule

    async def get(self, rule_id: uuid.UUID) -> PlanRule:
        rule = await self.repo.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Plan rule {rule_id} not found")
        return rule
