"""Pytest configuration and fixtures."""

import os

import pandas as pd
import pytest

from crm_assistant.conversation.types import ConversationState
from crm_assistant.core.snapshot_loader import CurrentUser, snapshot_from_records

# Wednesday; the current week runs Mon 2026-10-19 .. Sun 2026-10-25
FIXED_NOW = pd.Timestamp("2026-10-21 12:00:00")


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
    os.environ.setdefault("SUPABASE_API_KEY", "test-key")
    os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")


def _clinics():
    izmir_names = [
        "Bornova Dental", "Karşıyaka Ağız Sağlığı", "Alsancak Gülüş", "Konak Diş",
        "Buca Merkez", "Çiğli Estetik", "Gaziemir Dent", "Balçova Smile",
        "Narlıdere Dental", "Urla Diş", "Menemen Ağız", "Torbalı Dent",
    ]
    clinics = [
        {
            "id": i,
            "name": name,
            "region_id": 1,
            "status": "active",
            "address": f"{name} Cad. No:{i}",
            "contact_person": "Dr. Ece",
            "contact_info": "0232 000 00 00",
            "email": f"info{i}@example.com",
        }
        for i, name in enumerate(izmir_names, start=1)
    ]
    clinics.append({"id": 20, "name": "Nişantaşı Klinik", "region_id": 2, "status": "active"})
    clinics.append({"id": 21, "name": "Şirinyer Dental", "region_id": 1, "status": "inactive"})
    return clinics


SNAPSHOT_RECORDS = {
    "regions": [
        {"id": 1, "name": "İzmir Bölgesi"},
        {"id": 2, "name": "Marmara"},
    ],
    "clinics": _clinics(),
    "users": [
        {"id": "u1", "name": "Ayşe Yılmaz", "role": "field_user", "region_id": 1,
         "email": "ayse@example.com", "phone": "0555 111 11 11", "status": "active"},
        {"id": "u2", "name": "Mehmet Demir", "role": "manager", "region_id": 2,
         "email": "mehmet@example.com", "status": "active"},
        {"id": "u3", "name": "Can Öztürk", "role": "field_user", "region_id": 2,
         "user_regions": [{"region_id": 1}], "status": "active"},
    ],
    "proposals": [
        {"id": 125, "clinic_id": 1, "user_id": "u1", "status": "pending", "total_amount": 15000,
         "currency": "TRY", "created_at": "2026-10-20T09:00:00+03:00",
         "items": [{"product_id": "p1", "quantity": 2, "unit_price": 5000}],
         "installment_count": 3, "first_payment_date": "2026-11-01", "notes": "Acil teslimat"},
        {"id": 126, "clinic_id": 2, "user_id": "u2", "status": "approved", "total_amount": 2000,
         "currency": "USD", "created_at": "2026-10-05T10:00:00Z", "campaign_id": "c1",
         "items": [{"product_id": "p1", "quantity": 1, "unit_price": 2000}]},
        {"id": 127, "clinic_id": 1, "user_id": "u1", "status": "approved", "total_amount": 3000,
         "currency": "TRY", "created_at": "2026-08-15T10:00:00", "items": []},
        {"id": 128, "clinic_id": 20, "user_id": "u2", "status": "rejected", "total_amount": 1000,
         "currency": "EUR", "created_at": "2026-10-13T10:00:00", "items": []},
    ],
    "visits": [
        {"id": "v1", "clinic_id": 1, "user_id": "u1", "date": "2026-10-20", "subject": "Tanıtım",
         "follow_up_required": True, "follow_up_date": "2026-10-18"},
        {"id": "v2", "clinic_id": 1, "user_id": "u1", "date": "2026-10-07", "subject": "Eğitim",
         "follow_up_required": False},
        {"id": "v3", "clinic_id": 2, "user_id": "u2", "date": "2026-10-25", "subject": "Demo",
         "follow_up_required": True, "follow_up_date": "2026-11-02"},
        {"id": "v4", "clinic_id": 20, "user_id": "u2", "date": "2026-10-18", "subject": "Ziyaret",
         "follow_up_required": False},
        {"id": "v5", "clinic_id": 2, "user_id": "u1", "date": None, "subject": "Tarihsiz",
         "follow_up_required": False},
    ],
    "surgery_reports": [
        {"id": "s1", "clinic_id": 1, "user_id": "u1", "date": "2026-10-10", "created_at": "2026-10-10T12:00:00",
         "patient_name": "Hasta A", "doctor_name": "Dr. Kaya", "status": "completed"},
        {"id": "s2", "clinic_id": 2, "user_id": "u1", "date": "2026-10-30", "created_at": "2026-10-15T08:00:00",
         "patient_name": "Hasta B", "doctor_name": None, "status": "planned"},
    ],
    "products": [
        {"id": "p1", "name": "Titan İmplant", "category": {"name": "implant"}, "price": 2500, "currency": "TRY"},
        {"id": "p2", "name": "Abutment Set", "category": {"name": "accessory"}, "price": 100, "currency": "USD"},
        {"id": "p3", "name": "Frez Seti", "category": {"name": "tool"}, "price": 300, "currency": "EUR"},
    ],
    "campaigns": [
        {"id": "c1", "name": "Sonbahar Fırsatı", "description": "Implant indirimi", "status": "active",
         "start_date": "2026-09-01", "end_date": "2026-11-30", "target_regions": [1]},
        {"id": "c2", "name": "Yaz Paketi", "status": "inactive",
         "start_date": "2026-06-01", "end_date": "2026-08-31", "target_regions": [2]},
    ],
    "stock_assignments": [
        {"id": 1, "user_id": "u1", "product_id": "p1", "quantity": 4, "status": "assigned"},
        {"id": 2, "user_id": "u1", "product_id": "p2", "quantity": 1, "status": "returned"},
    ],
}


@pytest.fixture
def snapshot():
    return snapshot_from_records(SNAPSHOT_RECORDS)


@pytest.fixture
def field_user():
    return CurrentUser(id="u1", name="Ayşe Yılmaz", role="field_user", region_id="1")


@pytest.fixture
def manager_user():
    return CurrentUser(id="u2", name="Mehmet Demir", role="manager", region_id="2")


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def state(field_user, fixed_clock):
    return ConversationState(current_user=field_user, clock=fixed_clock)


@pytest.fixture
def manager_state(manager_user, fixed_clock):
    return ConversationState(current_user=manager_user, clock=fixed_clock)
