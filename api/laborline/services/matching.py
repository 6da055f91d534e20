from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from fastapi import Depends

from laborline.services.repository import LaborRequestRepository, get_repository

logger = logging.getLogger(__name__)


class AgencyMatcher(Protocol):
    """Returns candidate agency ids for one craft; ranking and order are opaque."""

    async def match_craft(self, trade_id: str, region_id: str) -> list[str]: ...


class RepositoryAgencyMatcher:
    """Delegates to the ``match_agencies_to_craft`` database function."""

    def __init__(self, repository: LaborRequestRepository) -> None:
        self.repository = repository

    async def match_craft(self, trade_id: str, region_id: str) -> list[str]:
        rows = await self.repository.match_agencies_to_craft(trade_id=trade_id, region_id=region_id)
        return [str(row["agency_id"]) for row in rows if row.get("agency_id")]


@dataclass(slots=True)
class MatchTally:
    total: int = 0
    by_craft: list[tuple[str, int]] = field(default_factory=list)

    def add(self, craft_id: str, matches: int) -> None:
        self.by_craft.append((craft_id, matches))
        self.total += matches


async def match_craft_safely(matcher: AgencyMatcher, *, craft_id: str, trade_id: str, region_id: str) -> list[str]:
    try:
        return list(await matcher.match_craft(trade_id, region_id))
    except Exception:
        logger.exception(
            "agency matching failed craft=%s trade=%s region=%s; treating as zero matches",
            craft_id,
            trade_id,
            region_id,
        )
        return []


def get_agency_matcher(repository: LaborRequestRepository = Depends(get_repository)) -> AgencyMatcher:
    return RepositoryAgencyMatcher(repository)
