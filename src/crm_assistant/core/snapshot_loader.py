from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from crm_assistant.config import (
    SNAPSHOT_TABLES,
    SUPABASE_API_KEY,
    SUPABASE_REST_URL,
)

logger = logging.getLogger(__name__)


class SnapshotLoaderError(Exception):
    """Raised when PostgREST calls fail or return unexpected shapes."""


def _empty_frame() -> pd.DataFrame:
    return pd.DataFrame()


@dataclass(frozen=True)
class EntitySnapshot:
    """
    Read-only, pre-fetched record collections for one conversation.

    Each collection is a DataFrame in the order the backend returned it
    ("snapshot order"). Lookups across collections are find-first scans.
    """
    clinics: pd.DataFrame = field(default_factory=_empty_frame)
    users: pd.DataFrame = field(default_factory=_empty_frame)
    proposals: pd.DataFrame = field(default_factory=_empty_frame)
    visits: pd.DataFrame = field(default_factory=_empty_frame)
    surgery_reports: pd.DataFrame = field(default_factory=_empty_frame)
    products: pd.DataFrame = field(default_factory=_empty_frame)
    campaigns: pd.DataFrame = field(default_factory=_empty_frame)
    regions: pd.DataFrame = field(default_factory=_empty_frame)
    stock_assignments: pd.DataFrame = field(default_factory=_empty_frame)

    def counts(self) -> Dict[str, int]:
        return {f.name: len(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class CurrentUser:
    id: str
    name: str
    role: str
    region_id: Optional[str] = None
    email: Optional[str] = None


# Roles allowed to list and filter the whole team
TEAM_VIEWER_ROLES = frozenset({"admin", "manager", "regional_manager"})


# ---------------------------------------------------------------------------
# Record shaping
# ---------------------------------------------------------------------------

def _flatten_embedded(df: pd.DataFrame, column: str, key: str, target: str) -> pd.DataFrame:
    """
    Turn an embedded PostgREST relation ({"name": ...}) into a flat column.
    Plain string values are kept as-is.
    """
    if column not in df.columns:
        return df

    def pick(value: Any) -> Any:
        if isinstance(value, dict):
            return value.get(key)
        if isinstance(value, str):
            return value
        return None

    df[target] = df[column].apply(pick)
    return df


def _ensure_list_column(df: pd.DataFrame, column: str) -> pd.DataFrame:
    if column not in df.columns:
        df[column] = [[] for _ in range(len(df))]
    else:
        df[column] = df[column].apply(lambda v: list(v) if isinstance(v, (list, tuple)) else [])
    return df


def _shape_collection(name: str, df: pd.DataFrame) -> pd.DataFrame:
    df = df.reset_index(drop=True).copy()
    if name == "clinics":
        df = _flatten_embedded(df, "region", "name", "region_name")
    elif name == "products":
        df = _flatten_embedded(df, "category", "name", "category_name")
    elif name == "proposals":
        # Legacy rows carry the creator as created_by_id
        if "user_id" not in df.columns and "created_by_id" in df.columns:
            df["user_id"] = df["created_by_id"]
        df = _ensure_list_column(df, "items")
    elif name == "campaigns":
        df = _ensure_list_column(df, "target_regions")
    elif name == "users":
        df = _ensure_list_column(df, "user_regions")
    return df


def snapshot_from_records(collections: Dict[str, Iterable[Dict[str, Any]]]) -> EntitySnapshot:
    """
    Build a snapshot from plain record lists (one list per collection name).
    Unknown collection names are rejected; missing ones are empty.
    """
    known = {f.name for f in fields(EntitySnapshot)}
    unknown = set(collections) - known
    if unknown:
        raise SnapshotLoaderError(f"Unknown snapshot collections: {sorted(unknown)}")

    frames: Dict[str, pd.DataFrame] = {}
    for name in known:
        records = list(collections.get(name) or [])
        df = pd.DataFrame.from_records(records) if records else pd.DataFrame()
        frames[name] = _shape_collection(name, df)
    return EntitySnapshot(**frames)


def current_user_from_record(record: Dict[str, Any]) -> CurrentUser:
    if not record or record.get("id") is None:
        raise SnapshotLoaderError("User record has no id.")
    region_id = record.get("region_id")
    return CurrentUser(
        id=str(record["id"]),
        name=str(record.get("name") or "Kullanıcı"),
        role=str(record.get("role") or ""),
        region_id=str(region_id) if region_id is not None else None,
        email=record.get("email"),
    )


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

def _build_retry_session() -> requests.Session:
    """
    Build a requests Session with conservative retries.
    Only GET is retried; the snapshot is a bulk read.
    """
    session = requests.Session()

    retry = Retry(
        total=5,
        connect=5,
        read=5,
        status=5,
        backoff_factor=0.6,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    return session


_SESSION: Optional[requests.Session] = None


def _get_session() -> requests.Session:
    global _SESSION
    if _SESSION is None:
        _SESSION = _build_retry_session()
    return _SESSION


def _auth_headers() -> Dict[str, str]:
    if not SUPABASE_API_KEY:
        raise SnapshotLoaderError("Missing SUPABASE_API_KEY in the environment.")
    return {
        "apikey": SUPABASE_API_KEY,
        "Authorization": f"Bearer {SUPABASE_API_KEY}",
        "Accept": "application/json",
    }


def _postgrest_select(
    *,
    table: str,
    select: str,
    filters: Optional[Dict[str, str]],
    offset: int,
    limit: int,
    timeout_seconds: int,
) -> List[Dict[str, Any]]:
    """
    Calls PostgREST GET /rest/v1/{table}. Filters use PostgREST syntax,
    e.g. {"id": "eq.42"}.
    """
    if not SUPABASE_REST_URL:
        raise SnapshotLoaderError("Missing SUPABASE_URL in the environment.")

    params: Dict[str, Any] = {
        "select": select,
        "offset": int(offset),
        "limit": int(limit),
    }
    if filters:
        params.update(filters)

    url = f"{SUPABASE_REST_URL}/{table}"
    try:
        resp = _get_session().get(url, params=params, headers=_auth_headers(), timeout=timeout_seconds)
    except requests.RequestException as exc:
        raise SnapshotLoaderError(f"HTTP error while reading {table}: {exc}") from exc

    try:
        data = resp.json()
    except ValueError as exc:
        preview = (resp.text or "")[:200]
        raise SnapshotLoaderError(f"Non-JSON response for {table} (status={resp.status_code}). Preview: {preview}") from exc

    if resp.status_code >= 400:
        msg = data.get("message") if isinstance(data, dict) else data
        raise SnapshotLoaderError(f"PostgREST returned status={resp.status_code} for {table}. Detail={msg}")

    if not isinstance(data, list):
        raise SnapshotLoaderError(f"Unexpected PostgREST response type for {table}: {type(data)}")

    return data


def fetch_table(
    table: str,
    *,
    select: str = "*",
    filters: Optional[Dict[str, str]] = None,
    page_size: int = 1_000,
    max_rows: int = 50_000,
    timeout_seconds: int = 60,
) -> List[Dict[str, Any]]:
    """
    Read a whole table page by page, preserving backend order.

    Parameters:
      - page_size: per-request limit
      - max_rows: absolute safety cap on rows returned
    """
    page_size = int(page_size) if page_size > 0 else 1_000
    records: List[Dict[str, Any]] = []
    offset = 0

    # Hard cap to avoid runaway loops in case the backend misbehaves
    hard_page_cap = max(1, (max_rows // page_size) + 5)

    for _ in range(hard_page_cap):
        limit = min(page_size, max_rows - len(records))
        if limit <= 0:
            break

        page = _postgrest_select(
            table=table,
            select=select,
            filters=filters,
            offset=offset,
            limit=limit,
            timeout_seconds=timeout_seconds,
        )
        if not page:
            break

        records.extend(page)
        offset += len(page)

        # Fewer than requested: we reached the end
        if len(page) < limit:
            break

    return records


def fetch_snapshot(*, timeout_seconds: int = 60) -> EntitySnapshot:
    """
    Bulk-read every collection into an EntitySnapshot.
    Called once per session and again on explicit refresh.
    """
    collections: Dict[str, List[Dict[str, Any]]] = {}
    for name, (table, select) in SNAPSHOT_TABLES.items():
        collections[name] = fetch_table(table, select=select, timeout_seconds=timeout_seconds)
        logger.info("Fetched %s: %d rows", name, len(collections[name]))
    return snapshot_from_records(collections)


def fetch_current_user(user_id: str, *, timeout_seconds: int = 30) -> CurrentUser:
    rows = _postgrest_select(
        table=SNAPSHOT_TABLES["users"][0],
        select="id,name,email,role,region_id",
        filters={"id": f"eq.{user_id}"},
        offset=0,
        limit=1,
        timeout_seconds=timeout_seconds,
    )
    if not rows:
        raise SnapshotLoaderError(f"User {user_id} not found.")
    return current_user_from_record(rows[0])
