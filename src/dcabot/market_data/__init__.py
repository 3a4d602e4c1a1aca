"""Market data services shared by live markets."""

from dcabot.market_data.price_cache import PriceCache

__all__ = ["PriceCache"]
