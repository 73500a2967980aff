"""Provider protocols and registry for external price/FX data.

The engine never fetches anything itself. A caller that owns a live quote
source registers it here; ``core.ledger_analysis`` asks it only for the
price keys and currencies the ledger snapshot is missing.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Protocol, runtime_checkable


@runtime_checkable
class PriceProvider(Protocol):
    def get_prices(self, price_keys: Iterable[str]) -> Dict[str, float]: ...


@runtime_checkable
class FXProvider(Protocol):
    def get_fx_rate(self, currency: str, reporting_currency: str) -> Optional[float]: ...


_price_provider: Optional[PriceProvider] = None
_fx_provider: Optional[FXProvider] = None


def set_price_provider(provider: Optional[PriceProvider]) -> None:
    global _price_provider
    _price_provider = provider


def get_price_provider() -> Optional[PriceProvider]:
    return _price_provider


def set_fx_provider(provider: Optional[FXProvider]) -> None:
    global _fx_provider
    _fx_provider = provider


def get_fx_provider() -> Optional[FXProvider]:
    return _fx_provider
