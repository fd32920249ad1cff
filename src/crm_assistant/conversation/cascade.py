from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from crm_assistant.conversation.counting_resolver import CountingResolver
from crm_assistant.conversation.detail_resolvers import (
    ClinicDetailResolver,
    ProposalByIdResolver,
    UserDetailResolver,
)
from crm_assistant.conversation.listing_resolvers import (
    CampaignListingResolver,
    ClinicListingResolver,
    ProductListingResolver,
    ProposalListingResolver,
    RecentProposalsResolver,
    SurgeryListingResolver,
    UserListingResolver,
    VisitListingResolver,
)
from crm_assistant.conversation.resolver_base import Resolver
from crm_assistant.conversation.types import ConversationState, Resolution
from crm_assistant.core.entity_matcher import RegionLookup
from crm_assistant.core.snapshot_loader import EntitySnapshot
from crm_assistant.core.text_utils import normalize_text

logger = logging.getLogger(__name__)


def default_resolvers(region_lookup: Optional[RegionLookup] = None) -> List[Resolver]:
    """Resolvers in priority order; earlier entries shadow later ones."""
    region_lookup = region_lookup or RegionLookup()
    return [
        ProposalByIdResolver(),
        ClinicDetailResolver(),
        UserDetailResolver(),
        ClinicListingResolver(region_lookup),
        RecentProposalsResolver(),
        ProposalListingResolver(),
        SurgeryListingResolver(),
        VisitListingResolver(),
        ProductListingResolver(),
        CampaignListingResolver(),
        UserListingResolver(),
        CountingResolver(region_lookup),
    ]


class ResolverCascade:
    """
    Runs resolvers in order and stops at the first one that claims the
    message. Unclaimed messages give Resolution(retrieved=False).
    """

    def __init__(self, resolvers: Optional[Sequence[Resolver]] = None, region_lookup: Optional[RegionLookup] = None):
        self.resolvers: List[Resolver] = list(resolvers) if resolvers is not None else default_resolvers(region_lookup)

    def resolve(self, message: str, snapshot: EntitySnapshot, state: ConversationState) -> Resolution:
        text = normalize_text(message)
        if not text:
            return Resolution(retrieved=False, context="")

        for resolver in self.resolvers:
            resolution = resolver.try_resolve(text, snapshot, state)
            if resolution is None:
                continue
            logger.info("Message resolved by %s (retrieved=%s)", resolver.name, resolution.retrieved)
            if resolution.grounded is not None:
                state.last_grounded = resolution.grounded
            return resolution

        logger.info("No resolver matched; using the generic prompt")
        return Resolution(retrieved=False, context="")

    def refers_to_earlier_answer(self, message: str, snapshot: EntitySnapshot, state: ConversationState) -> bool:
        """True for a bare number naming a proposal the previous answer listed."""
        text = normalize_text(message)
        for resolver in self.resolvers:
            if isinstance(resolver, ProposalByIdResolver):
                return resolver.implicit_reference(text, snapshot, state) is not None
        return False


_DEFAULT_CASCADE: Optional[ResolverCascade] = None


def resolve(message: str, snapshot: EntitySnapshot, state: ConversationState) -> Resolution:
    """Module-level entry point using the default resolver order."""
    global _DEFAULT_CASCADE
    if _DEFAULT_CASCADE is None:
        _DEFAULT_CASCADE = ResolverCascade(region_lookup=RegionLookup.from_file())
    return _DEFAULT_CASCADE.resolve(message, snapshot, state)
