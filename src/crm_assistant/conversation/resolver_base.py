from __future__ import annotations

from typing import Any, Iterable, Optional

import pandas as pd

from crm_assistant.conversation.types import ConversationState, GroundedReference, Resolution
from crm_assistant.core.entity_matcher import column, id_mask
from crm_assistant.core.formatters import is_missing
from crm_assistant.core.snapshot_loader import EntitySnapshot
from crm_assistant.core.time_windows import TimeWindow, in_window_mask


class Resolver:
    """
    One intent handler of the cascade.

    try_resolve() returns None when its preconditions do not hold, so the
    cascade moves on; any Resolution (including "nothing found") ends the
    cascade for this message. `message` is already normalized.
    """
    name = "resolver"

    def try_resolve(
        self,
        message: str,
        snapshot: EntitySnapshot,
        state: ConversationState,
    ) -> Optional[Resolution]:
        raise NotImplementedError

    def _resolved(self, context: str, grounded: Optional[GroundedReference] = None) -> Resolution:
        return Resolution(retrieved=True, context=context, grounded=grounded, resolver=self.name)


# ---------------------------------------------------------------------------
# Shared filters
# ---------------------------------------------------------------------------

SELF_KEYWORDS = ("benim", "bana ait")


def contains_any(message: str, keywords: Iterable[str]) -> bool:
    return any(k in message for k in keywords)


def is_self_request(message: str) -> bool:
    return contains_any(message, SELF_KEYWORDS)


def rows_for(df: pd.DataFrame, fk_column: str, value: Any) -> pd.DataFrame:
    return df[id_mask(df, fk_column, value)]


def rows_in_window(df: pd.DataFrame, date_column: str, window: TimeWindow) -> pd.DataFrame:
    """Rows whose date falls in the window; missing or bad dates are dropped."""
    if df.empty:
        return df
    return df[in_window_mask(column(df, date_column), window)]


def rows_with_value(df: pd.DataFrame, column_name: str, value: str) -> pd.DataFrame:
    return df[column(df, column_name).map(lambda v: not is_missing(v) and str(v) == value).astype(bool)]


def is_true(value: Any) -> bool:
    if is_missing(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "evet"}
    return bool(value)
