from __future__ import annotations

from typing import Any, Iterable, List, Optional

import pandas as pd

from crm_assistant.core.time_windows import parse_timestamp

NOT_SPECIFIED = "Belirtilmemiş"

_CURRENCY_SYMBOLS = {
    "TRY": "₺",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, dict)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def text_or(value: Any, default: str = NOT_SPECIFIED) -> str:
    if is_missing(value):
        return default
    s = str(value).strip()
    return s if s else default


def format_currency(amount: Any, currency: Optional[str] = "TRY") -> str:
    """Turkish-locale money: 1234.5 TRY -> '₺1.234,50'. Missing amounts -> '-'."""
    if is_missing(amount):
        return "-"
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return "-"

    code = (text_or(currency, "TRY") or "TRY").upper()
    sign = "-" if value < 0 else ""
    # 1,234.50 -> 1.234,50
    body = f"{abs(value):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    symbol = _CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{sign}{symbol}{body}"
    return f"{sign}{code} {body}"


def format_date(value: Any) -> str:
    """dd.MM.yyyy, or 'Belirtilmemiş' for missing / invalid dates."""
    ts = parse_timestamp(value)
    if ts is None:
        return NOT_SPECIFIED
    return ts.strftime("%d.%m.%Y")


def format_count_header(title: str, count: int) -> str:
    return f"**{title} ({count} adet):**"


def capped_lines(lines: List[str], limit: int, noun: str, indent: str = "  ") -> List[str]:
    """
    First `limit` lines in their given order plus a '...ve N diğer <noun>.'
    suffix when truncated.
    """
    out = [f"{indent}- {line}" for line in lines[:limit]]
    if len(lines) > limit:
        out.append(f"{indent}- ...ve {len(lines) - limit} diğer {noun}.")
    return out


def listing_block(
    *,
    header: str,
    total_noun: str,
    items: Iterable[str],
    total: int,
    limit: int,
    first_label: str,
    all_label: str,
) -> str:
    """
    Standard listing layout:

        <header>
        Toplam N <noun> bulundu.
        İlk 15 Teklif:        (or 'Teklifler:' when not truncated)
        - ...
    """
    lines = [f"- {item}" for item in items]
    block = f"{header}\nToplam {total} {total_noun} bulundu."
    label = f"İlk {limit} {first_label}" if total > limit else all_label
    block += f"\n{label}:\n" + "\n".join(lines)
    return block


def describe_filters(descriptions: List[str]) -> str:
    return ", ".join(descriptions) if descriptions else "Tümü"
