from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from crm_assistant.config import DEFAULT_REGION_KEYWORDS, REGION_KEYWORDS_FILE
from crm_assistant.core.text_utils import capitalize_first, normalize_text

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Column / id helpers
# ---------------------------------------------------------------------------

def column(df: pd.DataFrame, name: str) -> pd.Series:
    """Column by name, or an all-None series when the collection lacks it."""
    if name in df.columns:
        return df[name]
    return pd.Series([None] * len(df), index=df.index, dtype=object)


def id_key(value: Any) -> str:
    """String form of an identifier so integer and string ids compare equal."""
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def id_mask(df: pd.DataFrame, name: str, value: Any) -> pd.Series:
    key = id_key(value)
    if not key:
        return pd.Series([False] * len(df), index=df.index, dtype=bool)
    return column(df, name).map(id_key) == key


def find_by_id(df: pd.DataFrame, value: Any, id_column: str = "id") -> Optional[pd.Series]:
    """First row whose identifier equals `value` (linear scan)."""
    matched = df[id_mask(df, id_column, value)]
    if matched.empty:
        return None
    return matched.iloc[0]


def name_of(df: pd.DataFrame, value: Any, default: str = "Bilinmiyor", name_column: str = "name") -> str:
    row = find_by_id(df, value)
    if row is None:
        return default
    name = row.get(name_column)
    return str(name) if name is not None and not pd.isna(name) and str(name).strip() else default


# ---------------------------------------------------------------------------
# Name matching
# ---------------------------------------------------------------------------

def find_first_by_name(collection: pd.DataFrame, message: str, name_column: str = "name") -> Optional[pd.Series]:
    """
    First record, in snapshot order, whose normalized name is a substring of
    the normalized message.

    Ambiguous messages resolve to the first matching record, not the longest
    or most specific one.
    """
    if collection.empty or name_column not in collection.columns:
        return None

    text = normalize_text(message)
    if not text:
        return None

    for _, row in collection.iterrows():
        name = normalize_text(row.get(name_column))
        if name and name in text:
            return row
    return None


# ---------------------------------------------------------------------------
# Region lookup (province -> macro region)
# ---------------------------------------------------------------------------

@dataclass
class RegionMatch:
    """Region resolved from a message; `row` is None when only a macro name matched."""
    row: Optional[pd.Series]
    label: str

    @property
    def region_id(self) -> Optional[Any]:
        return None if self.row is None else self.row.get("id")


class RegionLookup:
    """
    Resolves a region from a message: literal region name first, then the
    province keyword table (e.g. "izmir" -> "ege").
    """

    def __init__(self, keywords: Optional[Mapping[str, Sequence[str]]] = None):
        source = keywords if keywords is not None else DEFAULT_REGION_KEYWORDS
        self.keywords: Dict[str, List[str]] = {
            normalize_text(macro): [normalize_text(k) for k in provinces]
            for macro, provinces in source.items()
        }

    @classmethod
    def from_file(cls, path: Optional[str] = None) -> "RegionLookup":
        """Load the keyword table from JSON, falling back to the defaults."""
        file_path = Path(path or REGION_KEYWORDS_FILE)
        if not file_path.exists():
            return cls()
        with file_path.open(encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"Region keyword file {file_path} must contain a JSON object.")
        logger.info("Loaded region keywords from %s (%d regions)", file_path, len(data))
        return cls(data)

    def macro_region_for(self, message: str) -> Optional[str]:
        text = normalize_text(message)
        for macro, provinces in self.keywords.items():
            if any(k and k in text for k in provinces):
                return macro
        return None

    def resolve(self, message: str, regions: pd.DataFrame) -> Optional[RegionMatch]:
        row = find_first_by_name(regions, message)
        if row is not None:
            return RegionMatch(row=row, label=str(row.get("name")))

        macro = self.macro_region_for(message)
        if macro is None:
            return None

        if not regions.empty and "name" in regions.columns:
            for _, region in regions.iterrows():
                name = normalize_text(region.get("name"))
                if name and (macro in name or name in macro):
                    return RegionMatch(row=region, label=str(region.get("name")))

        # No region record for this macro name: keep the label for display only
        return RegionMatch(row=None, label=capitalize_first(macro))


def region_label(label: str) -> str:
    """'Ege' -> 'Ege Bölgesi', but leave 'İzmir Bölgesi' as it is."""
    if normalize_text(label).endswith("bölgesi"):
        return label
    return f"{label} Bölgesi"
