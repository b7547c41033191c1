from __future__ import annotations

import re


_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

# Broker shorthands that Yahoo spells differently.
_YAHOO_ALIASES: dict[str, str] = {
    "BRKA": "BRK-A",
    "BRKB": "BRK-B",
}


def normalize_symbol(symbol: str | None) -> str:
    """
    Canonical cache/lookup key for a symbol: trimmed and upper-cased.

    Returns "" for blank input so callers can short-circuit without a provider call.
    """
    return (symbol or "").strip().upper()


def yahoo_symbol(symbol: str | None) -> str:
    """
    Map a normalized symbol to the spelling Yahoo Finance expects.

    - "BRKB" -> "BRK-B"
    - "BRK.B" -> "BRK-B" (class shares use a dash)
    - "PETR4.SA", "BTC-USD" and plain tickers pass through unchanged.
    """
    t = normalize_symbol(symbol)
    if not t:
        return t
    if t in _YAHOO_ALIASES:
        return _YAHOO_ALIASES[t]
    # Exchange suffixes (".SA", ".TO") are two letters or more; class shares are a single letter.
    if re.match(r"^[A-Z]+\.[A-Z]$", t):
        return t.replace(".", "-")
    return t


def normalize_currency(code: str | None) -> str:
    c = (code or "").strip().upper()
    if not _CURRENCY_RE.match(c):
        raise ValueError(f"Invalid currency code: {code!r}")
    return c


def fx_pair_symbol(from_ccy: str, to_ccy: str) -> str:
    """Yahoo FX pair ticker, e.g. ("USD", "BRL") -> "USDBRL=X"."""
    return f"{normalize_currency(from_ccy)}{normalize_currency(to_ccy)}=X"
