from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------

# Root of the project (repo root)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Optional local configuration files (region keyword overrides, etc.)
CONFIG_DIR = PROJECT_ROOT / "config"

# ---------------------------------------------------------------------------
# App identity
# ---------------------------------------------------------------------------

APP_NAME = "ART AI CRM Asistanı"
APP_VERSION = "0.1.0"
ASSISTANT_NAME = "ART AI"

# Local timezone used to compute "now" and to convert timezone-aware record
# timestamps into naive local timestamps before window comparisons.
TIMEZONE = os.getenv("CRM_TIMEZONE", "Europe/Istanbul").strip()

# ---------------------------------------------------------------------------
# Supabase / PostgREST configuration for the entity snapshot
#
# The snapshot is fetched once per session through the PostgREST endpoint:
#   {SUPABASE_URL}/rest/v1/{table}?select=...
#
# The anon or service key goes in SUPABASE_API_KEY. You can override both via
# environment variables or Streamlit secrets (exported as env vars).
# ---------------------------------------------------------------------------

SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
SUPABASE_API_KEY = os.getenv("SUPABASE_API_KEY", "").strip()
SUPABASE_REST_URL = f"{SUPABASE_URL}/rest/v1" if SUPABASE_URL else ""

# collection name -> (table, select expression)
# Embedded relations (region, category, items) are flattened by the loader.
SNAPSHOT_TABLES = {
    "clinics": ("clinics", "*,region:regions(name)"),
    "users": ("users", "*,user_regions(region_id)"),
    "proposals": ("proposals", "*,items:proposal_items(*)"),
    "visits": ("visit_reports", "*"),
    "surgery_reports": ("surgery_reports", "*"),
    "products": ("products", "*,category:product_categories(name)"),
    "campaigns": ("campaigns", "*"),
    "regions": ("regions", "*"),
    "stock_assignments": ("stock_logs", "*"),
}

# Signed-in user for the Streamlit page (users.id). Empty = anonymous viewer.
CURRENT_USER_ID = os.getenv("CRM_CURRENT_USER_ID", "").strip()

# ---------------------------------------------------------------------------
# Generative-language backend (Gemini REST API)
# ---------------------------------------------------------------------------

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash").strip()
GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL",
    "https://generativelanguage.googleapis.com/v1beta",
).strip().rstrip("/")
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.7"))
GEMINI_MAX_OUTPUT_TOKENS = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "1500"))
LLM_TIMEOUT_SECONDS = int(os.getenv("LLM_TIMEOUT_SECONDS", "60"))

# ---------------------------------------------------------------------------
# Retrieval limits
# ---------------------------------------------------------------------------

DETAIL_ACTIVITY_LIMIT = 5   # visits / surgeries / proposals per detail section
CLINIC_LIST_LIMIT = 10      # clinic listing
LIST_LIMIT = 15             # every other listing

# ---------------------------------------------------------------------------
# Province -> macro region keywords
#
# Used when a message names a city instead of a region. Override with a JSON
# file ({"ege": ["izmir", ...], ...}) named by CRM_REGION_KEYWORDS_FILE.
# ---------------------------------------------------------------------------

REGION_KEYWORDS_FILE = os.getenv(
    "CRM_REGION_KEYWORDS_FILE",
    str(CONFIG_DIR / "region_keywords.json"),
).strip()

DEFAULT_REGION_KEYWORDS = {
    "ege": ["ege", "izmir", "aydın", "aydin", "muğla", "denizli", "manisa", "uşak", "afyon"],
    "marmara": ["marmara", "istanbul", "bursa", "kocaeli", "balıkesir", "tekirdağ", "edirne"],
    "akdeniz": ["akdeniz", "antalya", "mersin", "adana", "hatay", "osmaniye", "burdur"],
    "iç anadolu": ["iç anadolu", "ankara", "konya", "kayseri", "eskişehir", "sivas"],
    "karadeniz": ["karadeniz", "samsun", "trabzon", "rize", "ordu", "giresun"],
    "doğu anadolu": ["doğu anadolu", "erzurum", "malatya", "van", "kars", "ağrı"],
    "güneydoğu anadolu": ["güneydoğu anadolu", "diyarbakır", "gaziantep", "şanlıurfa", "mardin"],
}
