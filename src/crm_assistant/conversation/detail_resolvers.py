from __future__ import annotations

import logging
import re
from typing import List, Optional

import pandas as pd

from crm_assistant.config import DETAIL_ACTIVITY_LIMIT
from crm_assistant.conversation.resolver_base import (
    Resolver,
    contains_any,
    is_true,
    rows_for,
    rows_in_window,
    rows_with_value,
)
from crm_assistant.conversation.types import (
    CLINIC,
    PROPOSAL,
    USER_ENTITY,
    ConversationState,
    GroundedReference,
    Resolution,
)
from crm_assistant.core.entity_matcher import find_by_id, find_first_by_name, id_key, name_of
from crm_assistant.core.formatters import (
    NOT_SPECIFIED,
    capped_lines,
    format_count_header,
    format_currency,
    format_date,
    is_missing,
    text_or,
)
from crm_assistant.core.snapshot_loader import EntitySnapshot
from crm_assistant.core.time_windows import month_to_date

logger = logging.getLogger(__name__)


def _region_name_for(snapshot: EntitySnapshot, record: pd.Series) -> str:
    """Embedded region name when the record carries one, else a regions lookup."""
    embedded = record.get("region_name")
    if not is_missing(embedded) and str(embedded).strip():
        return str(embedded)
    return name_of(snapshot.regions, record.get("region_id"), default=NOT_SPECIFIED)


def _activity_section(title: str, lines: List[str], noun: str, empty_text: str) -> str:
    block = [format_count_header(title, len(lines))]
    if lines:
        block.extend(capped_lines(lines, DETAIL_ACTIVITY_LIMIT, noun))
    else:
        block.append(f"  - {empty_text}")
    return "\n".join(block)


def _follow_up_tag(visit: pd.Series) -> str:
    return " [Takip Gerekli]" if is_true(visit.get("follow_up_required")) else ""


# ---------------------------------------------------------------------------
# Proposal by identifier
# ---------------------------------------------------------------------------

# "125", "125 detay", "125 bilgileri": only meaningful as a follow-up
BARE_NUMBER_PATTERN = re.compile(r"^(\d+)(\s+(?:detay|bilgi|detaylar|bilgiler)i?)?$")

EXPLICIT_ID_PATTERNS = [
    # "id: 125", "teklif 125", "#125"
    re.compile(r"(?:\bid\s*[:=]?\s*|teklif\s+|#)(\d+)"),
    # "125 numaralı teklif", "125. teklif", "125 id'li teklif", "125 nolu teklif"
    re.compile(r"(\d+)(?:\s+numaral[ıi]|\.|\s+id'?li|\s+no'?lu|\s+nolu)\s+teklif"),
]


class ProposalByIdResolver(Resolver):
    name = "proposal_by_id"

    def implicit_reference(
        self,
        message: str,
        snapshot: EntitySnapshot,
        state: ConversationState,
    ) -> Optional[str]:
        """
        A bare number refers to a proposal only when the previous grounded
        answer showed that proposal and the proposal exists.
        """
        m = BARE_NUMBER_PATTERN.match(message.strip())
        if not m:
            return None
        proposal_id = m.group(1)
        if not state.refers_to(PROPOSAL, proposal_id):
            return None
        if find_by_id(snapshot.proposals, proposal_id) is None:
            return None
        return proposal_id

    def proposal_id(self, message: str, snapshot: EntitySnapshot, state: ConversationState) -> Optional[str]:
        implicit = self.implicit_reference(message, snapshot, state)
        if implicit is not None:
            return implicit
        for pattern in EXPLICIT_ID_PATTERNS:
            m = pattern.search(message)
            if m:
                return m.group(1)
        return None

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        proposal_id = self.proposal_id(message, snapshot, state)
        if proposal_id is None:
            return None

        proposal = find_by_id(snapshot.proposals, proposal_id)
        if proposal is None:
            return self._resolved(f"Teklif #{proposal_id} ile ilgili bilgi bulunamadı.")

        return self._resolved(
            self._format(proposal_id, proposal, snapshot),
            grounded=GroundedReference.single(PROPOSAL, proposal.get("id")),
        )

    @staticmethod
    def _format(proposal_id: str, proposal: pd.Series, snapshot: EntitySnapshot) -> str:
        currency = text_or(proposal.get("currency"), "TRY")
        creator = name_of(snapshot.users, proposal.get("user_id"), default=NOT_SPECIFIED)

        lines = [
            f"Teklif #{proposal_id} Detayları:",
            f"- Teklif Numarası: {id_key(proposal.get('id'))}",
            f"- Durum: {text_or(proposal.get('status'))}",
            f"- Klinik: {name_of(snapshot.clinics, proposal.get('clinic_id'), default=NOT_SPECIFIED)}",
            f"- Oluşturan: {creator}",
            f"- Tarih: {format_date(proposal.get('created_at'))}",
            f"- Toplam Tutar: {format_currency(proposal.get('total_amount'), currency)}",
            f"- Para Birimi: {currency}",
        ]

        items = proposal.get("items")
        if isinstance(items, list) and items:
            lines.append("\nTeklifteki Ürünler:")
            for index, item in enumerate(items, start=1):
                product = name_of(snapshot.products, item.get("product_id"), default="Bilinmeyen Ürün")
                quantity = item.get("quantity") or 0
                unit_price = item.get("unit_price") or 0
                lines.append(f"- {index}. {product}")
                lines.append(f"  Miktar: {quantity}")
                lines.append(f"  Birim Fiyat: {format_currency(unit_price, currency)}")
                lines.append(f"  Toplam: {format_currency(float(quantity) * float(unit_price), currency)}")
        else:
            lines.append("\nBu teklifte ürün bilgisi bulunamadı.")

        installments = proposal.get("installment_count")
        if not is_missing(installments) and installments:
            lines.append(
                f"\nÖdeme Planı: {int(float(installments))} taksit, "
                f"İlk Ödeme Tarihi: {format_date(proposal.get('first_payment_date'))}"
            )

        notes = proposal.get("notes")
        if not is_missing(notes) and str(notes).strip():
            lines.append(f"\nNotlar: {notes}")

        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Clinic detail
# ---------------------------------------------------------------------------

CLINIC_DETAIL_KEYWORDS = ["durum", "veri", "detay", "bilgi", "ziyaret", "teklif", "ameliyat", "hakkında"]


class ClinicDetailResolver(Resolver):
    """Clinic profile plus its visits, surgeries and proposals of the current month."""
    name = "clinic_detail"

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        if not contains_any(message, CLINIC_DETAIL_KEYWORDS):
            return None
        clinic = find_first_by_name(snapshot.clinics, message)
        if clinic is None:
            return None

        window = month_to_date(state.now())
        clinic_id = clinic.get("id")

        lines = [
            f"**{clinic.get('name')} Kliniği Detayları:**",
            f"- **ID:** {id_key(clinic_id)}",
            f"- **Adres:** {text_or(clinic.get('address'))}",
            f"- **İletişim Kişisi:** {text_or(clinic.get('contact_person'))}",
            f"- **İletişim Bilgisi:** {text_or(clinic.get('contact_info'))}",
            f"- **E-posta:** {text_or(clinic.get('email'))}",
            f"- **Durum:** {text_or(clinic.get('status'))}",
            f"- **Bölge:** {_region_name_for(snapshot, clinic)}",
        ]

        visits = rows_in_window(rows_for(snapshot.visits, "clinic_id", clinic_id), "date", window)
        visit_lines = [
            f"{format_date(v.get('date'))}: {text_or(v.get('subject'), '-')} "
            f"(Gerçekleştiren: {name_of(snapshot.users, v.get('user_id'))}){_follow_up_tag(v)}"
            for _, v in visits.iterrows()
        ]

        surgeries = rows_in_window(rows_for(snapshot.surgery_reports, "clinic_id", clinic_id), "date", window)
        surgery_lines = [
            f"{format_date(s.get('date'))}: {text_or(s.get('patient_name'), '-')} "
            f"({text_or(s.get('doctor_name'), 'Doktor belirtilmemiş')}) - Durum: {text_or(s.get('status'))} "
            f"(Raporlayan: {name_of(snapshot.users, s.get('user_id'))})"
            for _, s in surgeries.iterrows()
        ]

        proposals = rows_in_window(rows_for(snapshot.proposals, "clinic_id", clinic_id), "created_at", window)
        proposal_lines = [
            f"#{id_key(p.get('id'))} ({format_date(p.get('created_at'))}): "
            f"{format_currency(p.get('total_amount'), p.get('currency'))} - Durum: {text_or(p.get('status'))} "
            f"(Oluşturan: {name_of(snapshot.users, p.get('user_id'))})"
            for _, p in proposals.iterrows()
        ]

        context = "\n".join(lines)
        context += "\n\n" + _activity_section("Son 1 Ay Ziyaretleri", visit_lines, "ziyaret", "Ziyaret bulunamadı.")
        context += "\n\n" + _activity_section("Son 1 Ay Ameliyatları", surgery_lines, "ameliyat", "Ameliyat bulunamadı.")
        context += "\n\n" + _activity_section("Son 1 Ay Teklifleri", proposal_lines, "teklif", "Teklif bulunamadı.")

        return self._resolved(context, grounded=GroundedReference.single(CLINIC, clinic_id))


# ---------------------------------------------------------------------------
# User detail
# ---------------------------------------------------------------------------

USER_ACTIVITY_KEYWORDS = [
    "aktivite", "performans", "ne yaptı", "yaptıkları", "raporları",
    "teklifleri", "ziyaretleri", "hakkında", "bilgi", "detay",
]

STOCK_ASSIGNED = "assigned"


class UserDetailResolver(Resolver):
    """User profile, current-month activity and stock currently assigned to them."""
    name = "user_detail"

    def try_resolve(self, message, snapshot, state) -> Optional[Resolution]:
        user = find_first_by_name(snapshot.users, message)
        if user is None:
            return None
        if not contains_any(message, USER_ACTIVITY_KEYWORDS):
            return None

        window = month_to_date(state.now())
        user_id = user.get("id")

        lines = [
            f"**{user.get('name')} Kullanıcısı Detayları ve Son Aktiviteleri:**",
            f"- **ID:** {id_key(user_id)}",
            f"- **İsim:** {text_or(user.get('name'), '-')}",
            f"- **E-posta:** {text_or(user.get('email'), '-')}",
            f"- **Rol:** {text_or(user.get('role'), '-')}",
            f"- **Bölge:** {name_of(snapshot.regions, user.get('region_id'), default=NOT_SPECIFIED)}",
            f"- **Durum:** {text_or(user.get('status'), '-')}",
        ]

        proposals = rows_in_window(rows_for(snapshot.proposals, "user_id", user_id), "created_at", window)
        proposal_lines = [
            f"#{id_key(p.get('id'))} ({format_date(p.get('created_at'))}) -> "
            f"Klinik: {name_of(snapshot.clinics, p.get('clinic_id'))}, "
            f"Tutar: {format_currency(p.get('total_amount'), p.get('currency'))}, Durum: {text_or(p.get('status'))}"
            for _, p in proposals.iterrows()
        ]

        visits = rows_in_window(rows_for(snapshot.visits, "user_id", user_id), "date", window)
        visit_lines = [
            f"{format_date(v.get('date'))} -> Klinik: {name_of(snapshot.clinics, v.get('clinic_id'))}, "
            f"Konu: {text_or(v.get('subject'), '-')}{_follow_up_tag(v)}"
            for _, v in visits.iterrows()
        ]

        # Reported surgeries are windowed on the report date, not the surgery date
        surgeries = rows_in_window(rows_for(snapshot.surgery_reports, "user_id", user_id), "created_at", window)
        surgery_lines = [
            f"Rapor #{id_key(s.get('id'))} ({format_date(s.get('created_at'))}): "
            f"Klinik: {name_of(snapshot.clinics, s.get('clinic_id'))}, "
            f"Hasta: {text_or(s.get('patient_name'), '-')}, Durum: {text_or(s.get('status'))}"
            for _, s in surgeries.iterrows()
        ]

        context = "\n".join(lines)
        context += "\n\n" + _activity_section("Son 1 Ay Teklifleri", proposal_lines, "teklif", "Teklif bulunamadı.")
        context += "\n\n" + _activity_section("Son 1 Ay Ziyaretleri", visit_lines, "ziyaret", "Ziyaret bulunamadı.")
        context += "\n\n" + _activity_section(
            "Son 1 Ay Raporlanan Ameliyatlar", surgery_lines, "ameliyat raporu", "Raporlanan ameliyat bulunamadı."
        )
        context += "\n\n" + self._stock_section(snapshot, user_id)

        return self._resolved(context, grounded=GroundedReference.single(USER_ENTITY, user_id))

    @staticmethod
    def _stock_section(snapshot: EntitySnapshot, user_id) -> str:
        assigned = rows_with_value(rows_for(snapshot.stock_assignments, "user_id", user_id), "status", STOCK_ASSIGNED)
        lines = []
        for _, log in assigned.iterrows():
            product = name_of(snapshot.products, log.get("product_id"), default="Bilinmeyen Ürün")
            quantity = log.get("quantity")
            lines.append(f"{product} (Miktar: {text_or(quantity, '-')})")
        return _activity_section("Zimmetli Ürünler", lines, "ürün", "Zimmetli ürün bulunamadı.")
