from __future__ import annotations

import logging
import re
from typing import List

from crm_assistant.core.text_utils import fuzzy_tolerance, levenshtein_distance, normalize_text

logger = logging.getLogger(__name__)

# In-domain vocabulary, including common misspellings of the domain nouns.
BUSINESS_KEYWORDS: List[str] = [
    # General CRM terms
    "crm", "müşteri", "satış",
    # Entities and frequent typos
    "klinik", "klnik", "kllink", "kllinik", "klinlik", "kilink",
    "teklif", "tekklif", "tekliff",
    "rapor", "repor", "rapo",
    "ameliyat", "amaliyat", "amelyat",
    "ziyaret", "ziyart", "ziyret",
    "ürün", "uru", "urun", "ürn",
    "kampanya", "kampania", "kampnya",
    "kullanıcı", "bölge", "takım", "doktor", "hasta", "implant",
    # Actions
    "listele", "göster", "filtreleme", "detay", "adres", "iletişim",
    # Dates, counts
    "bu ay", "geçen ay", "bu hafta", "bugün", "kaç tane", "toplam",
    # Statuses
    "onay", "bekleyen", "durum", "aktif", "pasif", "tamamlanan", "planlanmış",
    # Help
    "yardım", "yapabilirsin", "özellik", "nasıl",
]

_FUZZY_KEYWORDS = [k for k in BUSINESS_KEYWORDS if len(k) >= 3]

# "<word> kliniği", "<word> dental", "<word> tıp merkezi", ...
CLINIC_NAME_PATTERN = re.compile(r"\w+\s+(?:klinik|kliniği|dental|hastanesi|tıp\s+merkezi)")
# "<word> kliniğin", "<word> kliniğinin"
CLINIC_POSSESSIVE_PATTERN = re.compile(r"\w+\s+kliniğin(?:in)?")

BUSINESS_PATTERNS = [
    re.compile(r"kaç .*(?:klinik|kllinik|teklif|rapor|ziyaret|ürün|kampanya)"),  # counting
    re.compile(r"#(\d+)"),                                                      # id references
    re.compile(r"\b(?:id|numara).*: *(\d+)"),                                   # "id: 12"
    re.compile(r"(?:en çok|en az|karşılaştır)"),                                # comparatives
    re.compile(r"(?:benim|senin) (?:tekliflerim|raporlarım|ziyaretlerim)"),    # ownership
]


def has_business_keyword(text: str) -> bool:
    return any(keyword in text for keyword in BUSINESS_KEYWORDS)


def has_approximate_keyword(text: str) -> bool:
    """Any token (len >= 3) within floor(len(keyword)/4)+1 edits of a keyword."""
    for word in text.split():
        if len(word) < 3:
            continue
        for keyword in _FUZZY_KEYWORDS:
            # Length difference alone already exceeds the tolerance
            if abs(len(word) - len(keyword)) > fuzzy_tolerance(keyword):
                continue
            if levenshtein_distance(word, keyword) <= fuzzy_tolerance(keyword):
                return True
    return False


def is_business_related(message: str) -> bool:
    """
    Decide whether a message is about the CRM domain.

    OR of: clinic-name-like phrase, keyword substring, typo-tolerant keyword
    token, or one of the question patterns (counting, ids, comparisons,
    first-person ownership).
    """
    text = normalize_text(message)
    if not text:
        return False

    if CLINIC_NAME_PATTERN.search(text) or CLINIC_POSSESSIVE_PATTERN.search(text):
        return True
    if has_business_keyword(text):
        return True
    if has_approximate_keyword(text):
        return True
    if any(p.search(text) for p in BUSINESS_PATTERNS):
        return True

    logger.debug("Message judged out of domain: %r", text[:80])
    return False
