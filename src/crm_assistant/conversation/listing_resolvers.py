from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

import pandas as pd

from crm_assistant.config import CLINIC_LIST_LIMIT, LIST_LIMIT
from crm_assistant.conversation.resolver_base import (
    Resolver,
    contains_any,
    is_self_request,
    is_true,
    rows_for,
    rows_in_window,
    rows_with_value,
)
from crm_assistant.conversation.types import (
    CAMPAIGN,
    PROPOSAL,
    USER_ENTITY,
    GroundedReference,
    Resolution,
)
from crm_assistant.core.entity_matcher import (
    RegionLookup,
    column,
    find_first_by_name,
    id_key,
    name_of,
    region_label,
)
from crm_assistant.core.formatters import (
    NOT_SPECIFIED,
    describe_filters,
    format_currency,
    format_date,
    is_missing,
    listing_block,
    text_or,
)
from crm_assistant.core.snapshot_loader import TEAM_VIEWER_ROLES
from crm_assistant.core.text_utils import capitalize_first
from crm_assistant.core.time_windows import (
    default_window,
    find_named_window,
    find_parametric_window,
    find_time_keyword,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

PERMISSION_DENIED = "Bu bilgiyi görüntüleme yetkiniz bulunmamaktadır."


def _not_found(noun: str, descriptions: List[str]) -> str:
    return f"\nBelirtilen kriterlere ({describe_filters(descriptions)}) uygun {noun} bulunamadı."


def _time_filter(df: pd.DataFrame, message: str, date_column: str, now, descriptions: List[str]) -> pd.DataFrame:
    """Apply the first named time window found in the message, if any."""
    keyword = find_time_keyword(message)
    if keyword is None:
        return df
    window = find_named_window(message, now=now)
    if window is None:
        return df
    descriptions.append(f"Zaman: {keyword}")
    return rows_in_window(df, date_column, window)


def _sort_newest_first(df: pd.DataFrame, date_column: str) -> pd.DataFrame:
    if df.empty:
        return df
    keys = [parse_timestamp(v) for v in column(df, date_column)]
    # Undated rows sort last; ties keep snapshot order
    order = sorted(range(len(df)), key=lambda i: (keys[i] is None, -(keys[i].value if keys[i] is not None else 0)))
    return df.iloc[order]


# ---------------------------------------------------------------------------
# Clinics
# ---------------------------------------------------------------------------

# "klinik" and its common typos ("kllinik", "klnik", "kilink")
CLINIC_KEYWORD_PATTERN = re.compile(r"k[l]+[i]?n[i]?[k]+|klinik|kilink")
CLINIC_PLURAL_PATTERN = re.compile(r"k[l]+[i]?n[i]?k+ler")
CLINIC_BARE_PATTERN = re.compile(r"^\s*(?:k[l]+[i]?n[i]?[k]+\w*|kilink\w*)\s*$")
LIST_VERBS = ("listele", "göster")
# A plural clinic word inside a question about these records names a filter
OTHER_ENTITY_NOUNS = ("teklif", "ziyaret", "ameliyat", "ürün", "kampanya")

CLINIC_STATUS_KEYWORDS = [("aktif", "active", "Aktif"), ("pasif", "inactive", "Pasif")]


class ClinicListingResolver(Resolver):
    name = "clinic_listing"

    def __init__(self, region_lookup: Optional[RegionLookup] = None):
        self.region_lookup = region_lookup or RegionLookup()

    @staticmethod
    def is_list_request(message: str) -> bool:
        if not CLINIC_KEYWORD_PATTERN.search(message):
            return False
        return (
            contains_any(message, LIST_VERBS)
            or (bool(CLINIC_PLURAL_PATTERN.search(message)) and not contains_any(message, OTHER_ENTITY_NOUNS))
            or bool(CLINIC_BARE_PATTERN.match(message))
        )

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if not self.is_list_request(message):
            return None

        clinics = snapshot.clinics
        description: List[str] = []

        for keyword, status, label in CLINIC_STATUS_KEYWORDS:
            if keyword in message:
                clinics = rows_with_value(clinics, "status", status)
                description.append(label)
                break

        region = self.region_lookup.resolve(message, snapshot.regions)
        if region is not None:
            description.append(region_label(region.label))
            # A macro region without a record only labels the listing
            if region.row is not None:
                clinics = rows_for(clinics, "region_id", region.region_id)

        desc = " ".join(description)
        context = f"Klinik Bilgileri ({desc or 'Tümü'}):"
        if clinics.empty:
            if desc:
                context += f"\nSistemde '{desc}' kriterlerine uygun klinik bulunmuyor."
            else:
                context += "\nSistemde kayıtlı klinik bulunmuyor."
            return self._resolved(context)

        fallback_region = region.label if region is not None and region.row is not None else "Bölge Yok"
        items = []
        for _, clinic in clinics.head(CLINIC_LIST_LIMIT).iterrows():
            region_name = clinic.get("region_name")
            if is_missing(region_name) or not str(region_name).strip():
                region_name = name_of(snapshot.regions, clinic.get("region_id"), default=fallback_region)
            items.append(f"{clinic.get('name')} ({region_name})")

        context = listing_block(
            header=context,
            total_noun="klinik",
            items=items,
            total=len(clinics),
            limit=CLINIC_LIST_LIMIT,
            first_label="Klinik",
            all_label="Klinikler",
        )
        return self._resolved(context)


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------

def proposal_status_from(message: str) -> Optional[str]:
    if "onaylan" in message:
        return "approved"
    if contains_any(message, ("bekleyen", "pending")):
        return "pending"
    if contains_any(message, ("reddedilen", "rejected")):
        return "rejected"
    if contains_any(message, ("süresi dol", "expired")):
        return "expired"
    if contains_any(message, ("tamamlanan", "teslim", "delivered")):
        return "delivered"
    if "sözleşme" in message and "alındı" in message:
        return "contract_received"
    if "transfer" in message:
        return "in_transfer"
    return None


def _proposal_line(p: pd.Series, snapshot, with_date: bool = False) -> str:
    parts = [f"ID: {id_key(p.get('id'))}"]
    if with_date:
        parts.append(f"Tarih: {format_date(p.get('created_at'))}")
    parts.extend([
        f"Klinik: {name_of(snapshot.clinics, p.get('clinic_id'))}",
        f"Oluşturan: {name_of(snapshot.users, p.get('user_id'))}",
        f"Durum: {text_or(p.get('status'))}",
        f"Tutar: {format_currency(p.get('total_amount'), p.get('currency'))}",
    ])
    return ", ".join(parts)


def _proposal_listing(header: str, proposals: pd.DataFrame, snapshot, with_date: bool = False) -> Tuple[str, List]:
    shown = proposals.head(LIST_LIMIT)
    context = listing_block(
        header=header,
        total_noun="teklif",
        items=[_proposal_line(p, snapshot, with_date) for _, p in shown.iterrows()],
        total=len(proposals),
        limit=LIST_LIMIT,
        first_label="Teklif",
        all_label="Teklifler",
    )
    return context, list(column(shown, "id"))


class RecentProposalsResolver(Resolver):
    """Proposals created in "son N gün/hafta/ay" or a named window, newest first."""
    name = "recent_proposals"

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if not (re.search(r"\bson\b", message) and "teklif" in message):
            return None

        now = state.now()
        window = find_parametric_window(message, now=now)
        if window is not None:
            label = window.label
        else:
            window = find_named_window(message, now=now)
            if window is not None:
                label = capitalize_first(window.label)
            else:
                window = default_window(now)
                label = window.label

        proposals = _sort_newest_first(rows_in_window(snapshot.proposals, "created_at", window), "created_at")
        header = f"Teklif Bilgileri ({label}):"
        if proposals.empty:
            return self._resolved(f"{header}\n{label} içinde oluşturulmuş teklif bulunamadı.")

        context, ids = _proposal_listing(header, proposals, snapshot, with_date=True)
        return self._resolved(context, grounded=GroundedReference.many(PROPOSAL, ids))


class ProposalListingResolver(Resolver):
    name = "proposal_listing"

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if "teklif" not in message:
            return None

        proposals = snapshot.proposals
        descriptions: List[str] = []

        status = proposal_status_from(message)
        if status:
            proposals = rows_with_value(proposals, "status", status)
            descriptions.append(f"Durum: {status}")

        clinic = find_first_by_name(snapshot.clinics, message)
        if clinic is not None:
            proposals = rows_for(proposals, "clinic_id", clinic.get("id"))
            descriptions.append(f"Klinik: {clinic.get('name')}")

        mine = is_self_request(message) and state.current_user is not None
        if mine:
            proposals = rows_for(proposals, "user_id", state.current_user.id)
            descriptions.append("Oluşturan: Siz")
        else:
            user = find_first_by_name(snapshot.users, message)
            if user is not None:
                proposals = rows_for(proposals, "user_id", user.get("id"))
                descriptions.append(f"Oluşturan: {user.get('name')}")

        campaign = find_first_by_name(snapshot.campaigns, message)
        if campaign is not None:
            proposals = rows_for(proposals, "campaign_id", campaign.get("id"))
            descriptions.append(f"Kampanya: {campaign.get('name')}")

        proposals = _time_filter(proposals, message, "created_at", state.now(), descriptions)

        header = f"Teklif Bilgileri ({describe_filters(descriptions)}):"
        if proposals.empty:
            return self._resolved(header + _not_found("teklif", descriptions))

        context, ids = _proposal_listing(header, proposals, snapshot)
        return self._resolved(context, grounded=GroundedReference.many(PROPOSAL, ids))


# ---------------------------------------------------------------------------
# Surgery reports
# ---------------------------------------------------------------------------

SURGERY_REPORTS_PATTERN = re.compile(r"raporlar[ı]?$")


class SurgeryListingResolver(Resolver):
    name = "surgery_listing"

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if not (contains_any(message, ("ameliyat", "cerrahi")) or SURGERY_REPORTS_PATTERN.search(message)):
            return None

        surgeries = snapshot.surgery_reports
        descriptions: List[str] = []

        status = None
        if contains_any(message, ("planlanmış", "planlanan")):
            status = "planned"
        elif "tamamlan" in message:
            status = "completed"
        if status:
            surgeries = rows_with_value(surgeries, "status", status)
            descriptions.append(f"Durum: {status}")

        clinic = find_first_by_name(snapshot.clinics, message)
        if clinic is not None:
            surgeries = rows_for(surgeries, "clinic_id", clinic.get("id"))
            descriptions.append(f"Klinik: {clinic.get('name')}")

        if is_self_request(message) and state.current_user is not None:
            surgeries = rows_for(surgeries, "user_id", state.current_user.id)
            descriptions.append("Oluşturan: Siz")

        surgeries = _time_filter(surgeries, message, "date", state.now(), descriptions)

        header = f"Ameliyat Rapor Bilgileri ({describe_filters(descriptions)}):"
        if surgeries.empty:
            return self._resolved(header + _not_found("ameliyat raporu", descriptions))

        items = [
            f"ID: {id_key(s.get('id'))}, Klinik: {name_of(snapshot.clinics, s.get('clinic_id'))}, "
            f"Doktor: {text_or(s.get('doctor_name'), '-')}, Tarih: {format_date(s.get('date'))}, "
            f"Durum: {text_or(s.get('status'))}, Oluşturan: {name_of(snapshot.users, s.get('user_id'))}"
            for _, s in surgeries.head(LIST_LIMIT).iterrows()
        ]
        context = listing_block(
            header=header,
            total_noun="ameliyat raporu",
            items=items,
            total=len(surgeries),
            limit=LIST_LIMIT,
            first_label="Rapor",
            all_label="Raporlar",
        )
        return self._resolved(context)


# ---------------------------------------------------------------------------
# Visit reports
# ---------------------------------------------------------------------------

class VisitListingResolver(Resolver):
    """
    Visit reports filtered by clinic, owner, follow-up flag and time window.

    "son ziyaret" together with a clinic name collapses the listing to the
    most recent visit of that clinic.
    """
    name = "visit_listing"

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if "ziyaret" not in message:
            return None

        now = state.now()
        visits = snapshot.visits
        descriptions: List[str] = []

        clinic = find_first_by_name(snapshot.clinics, message)
        if clinic is not None:
            visits = rows_for(visits, "clinic_id", clinic.get("id"))
            descriptions.append(f"Klinik: {clinic.get('name')}")

        if is_self_request(message) and state.current_user is not None:
            visits = rows_for(visits, "user_id", state.current_user.id)
            descriptions.append("Gerçekleştiren: Siz")

        follow_up = "takip" in message
        if follow_up:
            visits = visits[column(visits, "follow_up_required").map(is_true).astype(bool)]
            descriptions.append("Takip Gerekiyor")

        visits = _time_filter(visits, message, "date", now, descriptions)

        if follow_up and "geçmiş" in message:
            overdue = column(visits, "follow_up_date").map(
                lambda v: (parse_timestamp(v) is not None and parse_timestamp(v) < now)
            )
            visits = visits[overdue.astype(bool)]
            descriptions.append("Takip Tarihi Geçmiş")

        header = f"Ziyaret Rapor Bilgileri ({describe_filters(descriptions)}):"
        if visits.empty:
            return self._resolved(header + _not_found("ziyaret raporu", descriptions))

        if clinic is not None and "son ziyaret" in message:
            last = _sort_newest_first(visits, "date").iloc[0]
            context = (
                f"{clinic.get('name')} kliniğine yapılan son ziyaret:\n"
                f"- ID: {id_key(last.get('id'))}, Gerçekleştiren: {name_of(snapshot.users, last.get('user_id'))}, "
                f"Tarih: {format_date(last.get('date'))}, Konu: {text_or(last.get('subject'), '-')}"
            )
            return self._resolved(context)

        items = []
        for _, v in visits.head(LIST_LIMIT).iterrows():
            tag = ""
            if is_true(v.get("follow_up_required")):
                due = v.get("follow_up_date")
                tag = f" (Takip: {format_date(due) if not is_missing(due) else 'Evet'})"
            items.append(
                f"ID: {id_key(v.get('id'))}, Klinik: {name_of(snapshot.clinics, v.get('clinic_id'))}, "
                f"Gerçekleştiren: {name_of(snapshot.users, v.get('user_id'))}, "
                f"Tarih: {format_date(v.get('date'))}, Konu: {text_or(v.get('subject'), '-')}{tag}"
            )
        context = listing_block(
            header=header,
            total_noun="ziyaret raporu",
            items=items,
            total=len(visits),
            limit=LIST_LIMIT,
            first_label="Rapor",
            all_label="Raporlar",
        )
        return self._resolved(context)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

PRODUCT_CATEGORIES = ["implant", "accessory", "tool", "other"]
CURRENCY_PATTERN = re.compile(r"\b(try|usd|eur|tl)\b")
PRICE_KEYWORDS = ("fiyat", "ne kadar")


class ProductListingResolver(Resolver):
    name = "product_listing"

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if "ürün" not in message:
            return None
        # "X ürünü kaç teklifte kullanıldı" is a counting question
        if "teklifte kullan" in message:
            return None

        product = find_first_by_name(snapshot.products, message)
        if product is not None and contains_any(message, PRICE_KEYWORDS):
            return self._resolved(
                f"{product.get('name')} ürününün fiyatı: "
                f"{format_currency(product.get('price'), product.get('currency'))}"
            )

        products = snapshot.products
        descriptions: List[str] = []

        for category in PRODUCT_CATEGORIES:
            if category in message:
                products = rows_with_value(products, "category_name", category)
                descriptions.append(f"Kategori: {category}")
                break

        m = CURRENCY_PATTERN.search(message)
        if m:
            currency = "TRY" if m.group(1) == "tl" else m.group(1).upper()
            products = rows_with_value(products, "currency", currency)
            descriptions.append(f"Para Birimi: {currency}")

        header = f"Ürün Bilgileri ({describe_filters(descriptions)}):"
        if products.empty:
            return self._resolved(header + _not_found("ürün", descriptions))

        items = [
            f"{p.get('name')} (Kategori: {text_or(p.get('category_name'))}, "
            f"Fiyat: {format_currency(p.get('price'), p.get('currency'))})"
            for _, p in products.head(LIST_LIMIT).iterrows()
        ]
        context = listing_block(
            header=header,
            total_noun="ürün",
            items=items,
            total=len(products),
            limit=LIST_LIMIT,
            first_label="Ürün",
            all_label="Ürünler",
        )
        return self._resolved(context)


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------

def _target_region_names(campaign: pd.Series, snapshot, default: str) -> str:
    targets = campaign.get("target_regions")
    if not isinstance(targets, list) or not targets:
        return default
    names = [name_of(snapshot.regions, rid, default="") for rid in targets]
    names = [n for n in names if n]
    return ", ".join(names) if names else default


class CampaignListingResolver(Resolver):
    name = "campaign_listing"

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if "kampanya" not in message:
            return None

        campaign = find_first_by_name(snapshot.campaigns, message)
        if campaign is not None and contains_any(message, ("detay", "bilgi")):
            context = "\n".join([
                f"{campaign.get('name')} Kampanyası Detayları:",
                f"- Açıklama: {text_or(campaign.get('description'), 'Yok')}",
                f"- Başlangıç: {format_date(campaign.get('start_date'))}",
                f"- Bitiş: {format_date(campaign.get('end_date'))}",
                f"- Durum: {text_or(campaign.get('status'))}",
                f"- Hedef Bölgeler: {_target_region_names(campaign, snapshot, 'Tüm Bölgeler')}",
            ])
            return self._resolved(context, grounded=GroundedReference.single(CAMPAIGN, campaign.get("id")))

        campaigns = snapshot.campaigns
        descriptions: List[str] = []

        if "aktif" in message:
            campaigns = rows_with_value(campaigns, "status", "active")
            descriptions.append("Durum: Aktif")
        elif contains_any(message, ("süresi dolmuş", "geçmiş", "eski")):
            campaigns = rows_with_value(campaigns, "status", "inactive")
            descriptions.append("Durum: Süresi Dolmuş")

        region = find_first_by_name(snapshot.regions, message)
        if region is not None:
            region_id = id_key(region.get("id"))
            targeted = column(campaigns, "target_regions").map(
                lambda targets: isinstance(targets, list) and region_id in {id_key(t) for t in targets}
            )
            campaigns = campaigns[targeted.astype(bool)]
            descriptions.append(f"Bölge: {region.get('name')}")

        header = f"Kampanya Bilgileri ({describe_filters(descriptions)}):"
        if campaigns.empty:
            return self._resolved(header + _not_found("kampanya", descriptions))

        items = [
            f"{c.get('name')} (Durum: {text_or(c.get('status'))}, Bitiş: {format_date(c.get('end_date'))}, "
            f"Bölgeler: {_target_region_names(c, snapshot, 'Tümü')})"
            for _, c in campaigns.head(LIST_LIMIT).iterrows()
        ]
        context = listing_block(
            header=header,
            total_noun="kampanya",
            items=items,
            total=len(campaigns),
            limit=LIST_LIMIT,
            first_label="Kampanya",
            all_label="Kampanyalar",
        )
        return self._resolved(context)


# ---------------------------------------------------------------------------
# Users / team
# ---------------------------------------------------------------------------

USER_DETAIL_KEYWORDS = ("detay", "bilgi", "iletişim", "sorumlu olduğu bölge", "bölgesi")


def _user_in_region(user: pd.Series, region_id: str) -> bool:
    if id_key(user.get("region_id")) == region_id:
        return True
    links = user.get("user_regions")
    if not isinstance(links, list):
        return False
    return any(isinstance(link, dict) and id_key(link.get("region_id")) == region_id for link in links)


class UserListingResolver(Resolver):
    """
    Team listing and contact details. Listing or filtering the team needs a
    manager-level role; anyone may look up a single named colleague.
    """
    name = "user_listing"

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if not contains_any(message, ("kullanıcı", "takım", "ekip")):
            return None

        user = state.current_user
        can_view_all = user is not None and user.role in TEAM_VIEWER_ROLES

        users = snapshot.users
        descriptions: List[str] = []

        region = find_first_by_name(snapshot.regions, message)
        if region is not None:
            region_id = id_key(region.get("id"))
            mask = [_user_in_region(u, region_id) for _, u in users.iterrows()]
            users = users[pd.Series(mask, index=users.index, dtype=bool)]
            descriptions.append(f"Bölge: {region.get('name')}")

        role = None
        if contains_any(message, ("saha", "field")):
            role = "field_user"
        elif contains_any(message, ("yönetici", "manager")):
            role = "manager"
        if role:
            users = rows_with_value(users, "role", role)
            descriptions.append(f"Rol: {role}")

        detail = None
        if contains_any(message, USER_DETAIL_KEYWORDS):
            detail = find_first_by_name(snapshot.users, message)

        if not can_view_all and (region is not None or role is not None or detail is None):
            logger.info("Team listing denied for role %r", user.role if user else None)
            return self._resolved(PERMISSION_DENIED)

        if detail is not None:
            context = "\n".join([
                f"{detail.get('name')} Kullanıcısı Detayları:",
                f"- İsim: {text_or(detail.get('name'), '-')}",
                f"- E-posta: {text_or(detail.get('email'), '-')}",
                f"- Telefon: {text_or(detail.get('phone'), '-')}",
                f"- Rol: {text_or(detail.get('role'), '-')}",
                f"- Bölge: {name_of(snapshot.regions, detail.get('region_id'), default=NOT_SPECIFIED)}",
                f"- Durum: {text_or(detail.get('status'), '-')}",
            ])
            return self._resolved(context, grounded=GroundedReference.single(USER_ENTITY, detail.get("id")))

        header = f"Kullanıcı Bilgileri ({describe_filters(descriptions)}):"
        if users.empty:
            return self._resolved(header + _not_found("kullanıcı", descriptions))

        items = [
            f"{text_or(u.get('name'), text_or(u.get('email'), '-'))} (Rol: {text_or(u.get('role'), '-')}, "
            f"Bölge: {name_of(snapshot.regions, u.get('region_id'), default='-')}, Durum: {text_or(u.get('status'), '-')})"
            for _, u in users.head(LIST_LIMIT).iterrows()
        ]
        context = listing_block(
            header=header,
            total_noun="kullanıcı",
            items=items,
            total=len(users),
            limit=LIST_LIMIT,
            first_label="Kullanıcı",
            all_label="Kullanıcılar",
        )
        return self._resolved(context)
