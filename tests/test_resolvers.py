"""Tests for the retrieval resolvers and their priority order."""

import pytest

from crm_assistant.conversation.cascade import ResolverCascade
from crm_assistant.conversation.counting_resolver import CountingResolver
from crm_assistant.conversation.listing_resolvers import (
    PERMISSION_DENIED,
    ProductListingResolver,
    ProposalListingResolver,
    UserListingResolver,
    VisitListingResolver,
)
from crm_assistant.conversation.types import CLINIC, PROPOSAL, GroundedReference


@pytest.fixture
def cascade():
    return ResolverCascade()


# ============================================================================
# Proposal by identifier
# ============================================================================


class TestProposalById:
    def test_numbered_proposal_detail(self, cascade, snapshot, state):
        resolution = cascade.resolve("125 numaralı teklif", snapshot, state)

        assert resolution.retrieved is True
        assert resolution.resolver == "proposal_by_id"
        assert resolution.context.startswith("Teklif #125 Detayları:")
        assert "- Klinik: Bornova Dental" in resolution.context
        assert "- Oluşturan: Ayşe Yılmaz" in resolution.context
        assert "- Tarih: 20.10.2026" in resolution.context
        assert "- Toplam Tutar: ₺15.000,00" in resolution.context

    def test_items_payment_plan_and_notes(self, cascade, snapshot, state):
        context = cascade.resolve("teklif 125", snapshot, state).context

        assert "Teklifteki Ürünler:" in context
        assert "- 1. Titan İmplant" in context
        assert "  Miktar: 2" in context
        assert "  Toplam: ₺10.000,00" in context
        assert "Ödeme Planı: 3 taksit, İlk Ödeme Tarihi: 01.11.2026" in context
        assert "Notlar: Acil teslimat" in context

    def test_hash_reference_grounds_the_proposal(self, cascade, snapshot, state):
        cascade.resolve("#126 durumu nedir", snapshot, state)
        assert state.last_grounded == GroundedReference.single(PROPOSAL, 126)

    def test_unknown_proposal(self, cascade, snapshot, state):
        resolution = cascade.resolve("teklif 999", snapshot, state)
        assert resolution.retrieved is True
        assert resolution.context == "Teklif #999 ile ilgili bilgi bulunamadı."

    def test_bare_number_follows_previous_listing(self, cascade, snapshot, state):
        listing = cascade.resolve("bekleyen teklifler", snapshot, state)
        assert listing.resolver == "proposal_listing"
        assert state.last_grounded == GroundedReference.many(PROPOSAL, [125])

        assert cascade.refers_to_earlier_answer("125", snapshot, state)
        follow_up = cascade.resolve("125", snapshot, state)
        assert follow_up.context.startswith("Teklif #125 Detayları:")

    def test_bare_number_without_context_is_not_a_reference(self, cascade, snapshot, state):
        assert not cascade.refers_to_earlier_answer("125", snapshot, state)
        assert cascade.resolve("125", snapshot, state).retrieved is False

    def test_bare_number_not_in_previous_answer(self, cascade, snapshot, state):
        state.last_grounded = GroundedReference.many(PROPOSAL, [125])
        assert not cascade.refers_to_earlier_answer("126", snapshot, state)


# ============================================================================
# Clinic and user detail
# ============================================================================


class TestClinicDetail:
    def test_clinic_name_takes_priority_over_proposal_listing(self, cascade, snapshot, state):
        resolution = cascade.resolve("Bornova Dental teklifleri", snapshot, state)

        assert resolution.resolver == "clinic_detail"
        assert resolution.context.startswith("**Bornova Dental Kliniği Detayları:**")
        assert state.last_grounded == GroundedReference.single(CLINIC, 1)

    def test_month_to_date_activity(self, cascade, snapshot, state):
        context = cascade.resolve("bornova dental hakkında bilgi", snapshot, state).context

        assert "- **Bölge:** İzmir Bölgesi" in context
        assert "**Son 1 Ay Ziyaretleri (2 adet):**" in context
        assert "[Takip Gerekli]" in context
        assert "**Son 1 Ay Ameliyatları (1 adet):**" in context
        # 127 was created in August
        assert "**Son 1 Ay Teklifleri (1 adet):**" in context
        assert "#125 (20.10.2026)" in context
        assert "#127" not in context

    def test_clinic_name_alone_is_not_a_detail_request(self, cascade, snapshot, state):
        resolution = cascade.resolve("bornova dental", snapshot, state)
        assert resolution.resolver != "clinic_detail"

    def test_detail_takes_priority_over_clinic_listing(self, cascade, snapshot, state):
        resolution = cascade.resolve("bornova dental kliniği detay listele", snapshot, state)

        assert resolution.resolver == "clinic_detail"
        assert resolution.context.startswith("**Bornova Dental Kliniği Detayları:**")


class TestUserDetail:
    def test_activity_and_assigned_stock(self, cascade, snapshot, state):
        resolution = cascade.resolve("Ayşe Yılmaz performans", snapshot, state)
        context = resolution.context

        assert resolution.resolver == "user_detail"
        assert context.startswith("**Ayşe Yılmaz Kullanıcısı Detayları ve Son Aktiviteleri:**")
        assert "- **Bölge:** İzmir Bölgesi" in context
        assert "**Son 1 Ay Teklifleri (1 adet):**" in context
        assert "**Son 1 Ay Ziyaretleri (2 adet):**" in context
        assert "**Son 1 Ay Raporlanan Ameliyatlar (2 adet):**" in context
        assert "**Zimmetli Ürünler (1 adet):**" in context
        assert "Titan İmplant (Miktar: 4)" in context
        assert "Abutment Set" not in context


# ============================================================================
# Listings
# ============================================================================


class TestClinicListing:
    def test_active_clinics_in_region(self, cascade, snapshot, state):
        resolution = cascade.resolve("İzmir bölgesindeki aktif klinikler", snapshot, state)
        lines = resolution.context.split("\n")

        assert resolution.resolver == "clinic_listing"
        assert lines[0] == "Klinik Bilgileri (Aktif İzmir Bölgesi):"
        assert lines[1] == "Toplam 12 klinik bulundu."
        assert lines[2] == "İlk 10 Klinik:"
        assert len(lines) == 13
        assert lines[3] == "- Bornova Dental (İzmir Bölgesi)"

    def test_bare_plural_lists_everything(self, cascade, snapshot, state):
        context = cascade.resolve("klinikler", snapshot, state).context
        assert context.startswith("Klinik Bilgileri (Tümü):\nToplam 14 klinik bulundu.")

    def test_passive_clinics(self, cascade, snapshot, state):
        context = cascade.resolve("pasif klinikleri listele", snapshot, state).context
        assert "Toplam 1 klinik bulundu.\nKlinikler:\n- Şirinyer Dental (İzmir Bölgesi)" in context

    def test_no_matching_clinic(self, cascade, snapshot, state):
        context = cascade.resolve("marmara pasif klinikleri listele", snapshot, state).context
        assert context.endswith("Sistemde 'Pasif Marmara Bölgesi' kriterlerine uygun klinik bulunmuyor.")

    def test_province_without_region_record_only_labels(self, cascade, snapshot, state):
        context = cascade.resolve("trabzon klinikleri", snapshot, state).context
        assert context.startswith("Klinik Bilgileri (Karadeniz Bölgesi):\nToplam 14 klinik bulundu.")

    def test_plural_inside_proposal_question(self, cascade, snapshot, state):
        resolution = cascade.resolve("bu ay kliniklere verilen teklifler", snapshot, state)

        assert resolution.resolver == "proposal_listing"
        assert resolution.context.startswith("Teklif Bilgileri (Zaman: bu ay):\nToplam 3 teklif bulundu.")

    def test_plural_inside_surgery_question(self, cascade, snapshot, state):
        resolution = cascade.resolve("kliniklerdeki planlanmış ameliyatlar", snapshot, state)

        assert resolution.resolver == "surgery_listing"
        assert resolution.context.startswith("Ameliyat Rapor Bilgileri (Durum: planned):")

    def test_plural_inside_visit_question(self, cascade, snapshot, state):
        resolution = cascade.resolve("kliniklere yapılan ziyaretler bu hafta", snapshot, state)

        assert resolution.resolver == "visit_listing"
        assert resolution.context.startswith("Ziyaret Rapor Bilgileri (Zaman: bu hafta):")

    def test_list_verb_still_wins_over_other_nouns(self, cascade, snapshot, state):
        resolution = cascade.resolve("teklif veren klinikleri listele", snapshot, state)
        assert resolution.resolver == "clinic_listing"


class TestProposalListing:
    def test_recent_proposals_newest_first(self, cascade, snapshot, state):
        resolution = cascade.resolve("son 1 ay teklifleri", snapshot, state)

        assert resolution.resolver == "recent_proposals"
        assert resolution.context.startswith("Teklif Bilgileri (Son 1 Ay):\nToplam 3 teklif bulundu.")
        assert state.last_grounded.ids == ("125", "128", "126")
        assert "ID: 125, Tarih: 20.10.2026" in resolution.context

    def test_recent_proposals_default_window(self, cascade, snapshot, state):
        context = cascade.resolve("son teklifler", snapshot, state).context
        assert context.startswith("Teklif Bilgileri (Son 1 Hafta):\nToplam 1 teklif bulundu.")

    def test_recent_proposals_empty_window(self, cascade, snapshot, state):
        context = cascade.resolve("son 1 gün teklifleri", snapshot, state).context
        assert context == "Teklif Bilgileri (Son 1 Gün):\nSon 1 Gün içinde oluşturulmuş teklif bulunamadı."

    def test_own_proposals(self, cascade, snapshot, state):
        resolution = cascade.resolve("benim tekliflerim", snapshot, state)

        assert resolution.context.startswith("Teklif Bilgileri (Oluşturan: Siz):\nToplam 2 teklif bulundu.")
        assert state.last_grounded.ids == ("125", "127")

    def test_campaign_filter(self, cascade, snapshot, state):
        context = cascade.resolve("sonbahar fırsatı teklifleri", snapshot, state).context
        assert "Kampanya: Sonbahar Fırsatı" in context
        assert "- ID: 126," in context

    def test_status_and_time_filters(self, cascade, snapshot, state):
        context = cascade.resolve("bu ay onaylanan teklifler", snapshot, state).context
        assert context.startswith("Teklif Bilgileri (Durum: approved, Zaman: bu ay):\nToplam 1 teklif bulundu.")

    def test_nothing_matches(self, cascade, snapshot, state):
        context = cascade.resolve("reddedilen teklifler bu hafta", snapshot, state).context
        assert context.endswith(
            "\nBelirtilen kriterlere (Durum: rejected, Zaman: bu hafta) uygun teklif bulunamadı."
        )

    def test_clinic_filter(self, snapshot, state):
        resolution = ProposalListingResolver().try_resolve("bornova dental teklifleri", snapshot, state)
        assert "Klinik: Bornova Dental" in resolution.context
        assert resolution.grounded.ids == ("125", "127")


class TestVisitListing:
    def test_visits_this_week(self, cascade, snapshot, state):
        resolution = cascade.resolve("bu hafta kaç ziyaret yapıldı", snapshot, state)

        assert resolution.resolver == "visit_listing"
        assert resolution.context.startswith(
            "Ziyaret Rapor Bilgileri (Zaman: bu hafta):\nToplam 2 ziyaret raporu bulundu."
        )

    def test_overdue_follow_ups(self, cascade, snapshot, state):
        context = cascade.resolve("takip tarihi geçmiş ziyaretler", snapshot, state).context

        assert "(Takip Gerekiyor, Takip Tarihi Geçmiş)" in context
        assert "Toplam 1 ziyaret raporu bulundu." in context
        assert "ID: v1," in context
        assert "(Takip: 18.10.2026)" in context

    def test_last_visit_of_clinic(self, snapshot, state):
        resolution = VisitListingResolver().try_resolve("bornova dental son ziyaret", snapshot, state)

        assert resolution.context.startswith("Bornova Dental kliniğine yapılan son ziyaret:")
        assert "ID: v1," in resolution.context
        assert "Tarih: 20.10.2026" in resolution.context

    def test_own_visits_include_undated_reports(self, snapshot, state):
        context = VisitListingResolver().try_resolve("benim ziyaretlerim", snapshot, state).context
        assert "Toplam 3 ziyaret raporu bulundu." in context
        assert "Tarih: Belirtilmemiş" in context


class TestSurgeryListing:
    def test_planned_surgeries(self, cascade, snapshot, state):
        resolution = cascade.resolve("planlanmış ameliyatlar", snapshot, state)

        assert resolution.resolver == "surgery_listing"
        assert "Toplam 1 ameliyat raporu bulundu." in resolution.context
        assert "ID: s2, Klinik: Karşıyaka Ağız Sağlığı, Doktor: -" in resolution.context


class TestProductListing:
    def test_price_of_named_product(self, cascade, snapshot, state):
        context = cascade.resolve("Titan İmplant ürününün fiyatı nedir", snapshot, state).context
        assert context == "Titan İmplant ürününün fiyatı: ₺2.500,00"

    def test_currency_filter(self, snapshot, state):
        context = ProductListingResolver().try_resolve("usd ürünleri", snapshot, state).context
        assert context.startswith("Ürün Bilgileri (Para Birimi: USD):\nToplam 1 ürün bulundu.")
        assert "Abutment Set (Kategori: accessory, Fiyat: $100,00)" in context

    def test_category_filter(self, snapshot, state):
        context = ProductListingResolver().try_resolve("tool ürünleri", snapshot, state).context
        assert "- Frez Seti (Kategori: tool, Fiyat: €300,00)" in context

    def test_product_usage_question_is_left_to_counting(self, snapshot, state):
        message = "titan implant ürünü kaç teklifte kullanıldı"
        assert ProductListingResolver().try_resolve(message, snapshot, state) is None


class TestCampaignListing:
    def test_campaign_detail(self, cascade, snapshot, state):
        context = cascade.resolve("Sonbahar Fırsatı kampanyası detayları", snapshot, state).context

        assert context.startswith("Sonbahar Fırsatı Kampanyası Detayları:")
        assert "- Hedef Bölgeler: İzmir Bölgesi" in context
        assert "- Bitiş: 30.11.2026" in context

    def test_active_campaigns(self, cascade, snapshot, state):
        context = cascade.resolve("aktif kampanyalar", snapshot, state).context
        assert "Toplam 1 kampanya bulundu." in context
        assert "Sonbahar Fırsatı" in context

    def test_campaigns_targeting_region(self, cascade, snapshot, state):
        context = cascade.resolve("marmara kampanyaları", snapshot, state).context
        assert "Bölge: Marmara" in context
        assert "- Yaz Paketi" in context


class TestUserListing:
    def test_field_user_cannot_list_team(self, snapshot, state):
        resolution = UserListingResolver().try_resolve("kullanıcıları listele", snapshot, state)
        assert resolution.context == PERMISSION_DENIED

    def test_manager_lists_team(self, cascade, snapshot, manager_state):
        context = cascade.resolve("takım üyelerini listele", snapshot, manager_state).context
        assert context.startswith("Kullanıcı Bilgileri (Tümü):\nToplam 3 kullanıcı bulundu.")

    def test_region_filter_includes_assigned_regions(self, snapshot, manager_state):
        context = UserListingResolver().try_resolve(
            "izmir bölgesi saha kullanıcıları", snapshot, manager_state
        ).context

        assert "Toplam 2 kullanıcı bulundu." in context
        assert "Ayşe Yılmaz" in context
        assert "Can Öztürk" in context

    def test_anyone_may_look_up_a_colleague(self, snapshot, state):
        resolution = UserListingResolver().try_resolve(
            "mehmet demir kullanıcı iletişim bilgileri", snapshot, state
        )
        assert resolution.context.startswith("Mehmet Demir Kullanıcısı Detayları:")
        assert "- Bölge: Marmara" in resolution.context


# ============================================================================
# Counting
# ============================================================================


class TestCounting:
    def test_total_clinics(self, cascade, snapshot, state):
        resolution = cascade.resolve("toplam kaç klinik var", snapshot, state)
        assert resolution.resolver == "counting"
        assert resolution.context == "Toplam klinik sayısı: 14."

    def test_clinics_in_region(self, cascade, snapshot, state):
        context = cascade.resolve("marmara bölgesinde kaç klinik var", snapshot, state).context
        assert context == "Marmara bölgesindeki klinik sayısı: 1."

    def test_visits_this_week(self, snapshot, state):
        resolution = CountingResolver().try_resolve("bu hafta kaç ziyaret yapıldı", snapshot, state)
        assert resolution.context == "Bu hafta yapılan ziyaret sayısı: 2."

    def test_proposals_in_window(self, snapshot, state):
        resolution = CountingResolver().try_resolve("geçen hafta kaç teklif oluşturuldu", snapshot, state)
        assert resolution.context == "Geçen hafta oluşturulan yeni teklif sayısı: 1."

    def test_proposals_by_status(self, snapshot, state):
        resolution = CountingResolver().try_resolve("kaç bekleyen teklif var", snapshot, state)
        assert resolution.context == "Bekleyen teklif sayısı: 1."

    def test_approved_total_per_currency(self, snapshot, state):
        resolution = CountingResolver().try_resolve(
            "onaylanan tekliflerin toplam değeri ne kadar", snapshot, state
        )
        assert resolution.context == "Onaylanan tekliflerin toplam değeri:\n- $2.000,00\n- ₺3.000,00"

    def test_product_usage(self, snapshot, state):
        resolution = CountingResolver().try_resolve(
            "titan implant ürünü kaç teklifte kullanıldı", snapshot, state
        )
        assert resolution.context == "Titan İmplant ürünü 2 teklifte kullanılmış."

    def test_product_usage_without_product(self, snapshot, state):
        resolution = CountingResolver().try_resolve("kaç ürün teklifte kullanıldı", snapshot, state)
        assert resolution.context == "Sorgulanacak ürün adı belirtilmedi veya bulunamadı."

    def test_unknown_counting_question_falls_back(self, snapshot, state):
        resolution = CountingResolver().try_resolve("kaç kişi geldi", snapshot, state)
        assert resolution.retrieved is False
        assert resolution.resolver == "counting"

    def test_not_a_counting_question(self, snapshot, state):
        assert CountingResolver().try_resolve("merhaba", snapshot, state) is None
