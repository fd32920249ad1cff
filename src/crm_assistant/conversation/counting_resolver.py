from __future__ import annotations

import logging
from typing import Dict, Optional

from crm_assistant.conversation.resolver_base import Resolver, contains_any, rows_for, rows_in_window, rows_with_value
from crm_assistant.conversation.types import Resolution
from crm_assistant.core.entity_matcher import RegionLookup, column, find_first_by_name, id_key
from crm_assistant.core.formatters import format_currency, is_missing, text_or
from crm_assistant.core.text_utils import capitalize_first
from crm_assistant.core.time_windows import find_named_window

logger = logging.getLogger(__name__)

COUNTING_KEYWORDS = ("kaç", "toplam", "ne kadar")

# keyword -> (status, display word); first keyword found wins
PROPOSAL_STATUS_COUNTS = [
    ("bekleyen", "pending", "Bekleyen"),
    ("onaylanan", "approved", "Onaylanan"),
    ("reddedilen", "rejected", "Reddedilen"),
]


class CountingResolver(Resolver):
    """
    Last resort for "kaç / toplam / ne kadar" questions.

    Sub-questions are tried in order; when none applies the resolver still
    ends the cascade but reports retrieved=False so the generic prompt is used.
    """
    name = "counting"

    def __init__(self, region_lookup: Optional[RegionLookup] = None):
        self.region_lookup = region_lookup or RegionLookup()

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if not contains_any(message, COUNTING_KEYWORDS):
            return None

        now = state.now()

        if "klinik" in message and "toplam" in message:
            return self._resolved(f"Toplam klinik sayısı: {len(snapshot.clinics)}.")

        if "klinik" in message:
            region = self.region_lookup.resolve(message, snapshot.regions)
            if region is not None and region.row is not None:
                count = len(rows_for(snapshot.clinics, "region_id", region.region_id))
                return self._resolved(f"{region.label} bölgesindeki klinik sayısı: {count}.")

        if "onaylanan teklif" in message and "toplam değer" in message:
            return self._resolved(self._approved_total(snapshot))

        window = find_named_window(message, now=now)

        if "teklif" in message and window is not None:
            count = len(rows_in_window(snapshot.proposals, "created_at", window))
            return self._resolved(f"{capitalize_first(window.label)} oluşturulan yeni teklif sayısı: {count}.")

        if "teklif" in message:
            for keyword, status, label in PROPOSAL_STATUS_COUNTS:
                if keyword in message:
                    count = len(rows_with_value(snapshot.proposals, "status", status))
                    return self._resolved(f"{label} teklif sayısı: {count}.")

        if "ziyaret" in message and window is not None:
            count = len(rows_in_window(snapshot.visits, "date", window))
            return self._resolved(f"{capitalize_first(window.label)} yapılan ziyaret sayısı: {count}.")

        if "ürün" in message and "teklifte kullan" in message:
            product = find_first_by_name(snapshot.products, message)
            if product is None:
                return self._resolved("Sorgulanacak ürün adı belirtilmedi veya bulunamadı.")
            count = self._proposals_with_product(snapshot, product.get("id"))
            return self._resolved(f"{product.get('name')} ürünü {count} teklifte kullanılmış.")

        logger.debug("Counting question without a known sub-pattern: %r", message[:80])
        return Resolution(retrieved=False, context="", resolver=self.name)

    @staticmethod
    def _approved_total(snapshot) -> str:
        approved = rows_with_value(snapshot.proposals, "status", "approved")
        totals: Dict[str, float] = {}
        for _, p in approved.iterrows():
            currency = text_or(p.get("currency"), "TRY")
            amount = p.get("total_amount")
            totals[currency] = totals.get(currency, 0.0) + (0.0 if is_missing(amount) else float(amount))
        if not totals:
            return "Henüz onaylanmış teklif bulunmamaktadır."
        lines = ["Onaylanan tekliflerin toplam değeri:"]
        lines.extend(f"- {format_currency(total, currency)}" for currency, total in totals.items())
        return "\n".join(lines)

    @staticmethod
    def _proposals_with_product(snapshot, product_id) -> int:
        key = id_key(product_id)
        count = 0
        for items in column(snapshot.proposals, "items"):
            if isinstance(items, list) and any(
                isinstance(item, dict) and id_key(item.get("product_id")) == key for item in items
            ):
                count += 1
        return count
