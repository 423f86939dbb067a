from __future__ import annotations

import re
from enum import StrEnum


class AssetType(StrEnum):
    STOCK = "STOCK"
    ETF = "ETF"
    MUTUAL_FUND = "MUTUAL_FUND"
    BOND = "BOND"
    CRYPTO = "CRYPTO"
    CASH = "CASH"
    REAL_ESTATE = "REAL_ESTATE"
    COMMODITY = "COMMODITY"
    OTHER = "OTHER"


CRYPTO_SYMBOLS = frozenset({"BTC", "ETH", "SOL", "DOGE", "ADA", "XRP", "DOT", "LINK"})
_ETF_PATTERN = re.compile(r"^(SPY|QQQ|IWM|DIA|VTI|VOO|VGT|VUG|VTV|BND|TIP|SCHD|XL[A-Z]|IJ[A-Z]|EW[A-Z])$")


def classify_asset_type(symbol: str) -> AssetType:
    code = symbol.upper()
    if code in CRYPTO_SYMBOLS:
        return AssetType.CRYPTO
    if code.startswith("CASH."):
        return AssetType.CASH
    if _ETF_PATTERN.match(code):
        return AssetType.ETF
    return AssetType.STOCK
