"""Fiat prices: an explicit TTL cache in front of the CoinGecko adapter."""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from coingecko_adapter import CoinGeckoError, MarketChart, SimplePrice

from payoova.models.wallet import Network
from payoova.services.networks import NETWORKS, TokenConfig

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class PriceSource(Protocol):
    """What the price service needs from an upstream API."""

    async def get_simple_prices(self, coin_ids: Iterable[str], vs_currency: str = "usd") -> Dict[str, SimplePrice]:
        ...

    async def get_market_chart(self, coin_id: str, days: int = 7, vs_currency: str = "usd") -> MarketChart:
        ...


@dataclass(frozen=True)
class PriceQuote:
    coin_id: str
    currency: str
    price: Decimal
    fetched_at: datetime
    change_24h: Optional[Decimal] = None
    market_cap: Optional[Decimal] = None
    volume_24h: Optional[Decimal] = None
    stale: bool = False


def _to_quote(price: SimplePrice, fetched_at: datetime) -> PriceQuote:
    return PriceQuote(
        coin_id=price.coin_id,
        currency=price.currency,
        price=price.price,
        fetched_at=fetched_at,
        change_24h=price.change_24h,
        market_cap=price.market_cap,
        volume_24h=price.volume_24h,
    )


class PriceCache:
    """(coin id, currency) -> quote, fresh for ``ttl_seconds``.

    Expired entries are kept so they can be served when the upstream fails.
    """

    def __init__(self, ttl_seconds: float, clock: Clock = datetime.utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: Dict[Tuple[str, str], PriceQuote] = {}

    @staticmethod
    def _key(coin_id: str, currency: str) -> Tuple[str, str]:
        return coin_id.lower(), currency.lower()

    def get(self, coin_id: str, currency: str) -> Optional[PriceQuote]:
        """Fresh quote or None."""
        quote = self._entries.get(self._key(coin_id, currency))
        if quote is None or self.clock() - quote.fetched_at > self.ttl:
            return None
        return quote

    def get_stale(self, coin_id: str, currency: str) -> Optional[PriceQuote]:
        """Any cached quote, flagged stale."""
        quote = self._entries.get(self._key(coin_id, currency))
        if quote is None:
            return None
        return replace(quote, stale=True)

    def put(self, quote: PriceQuote) -> None:
        self._entries[self._key(quote.coin_id, quote.currency)] = quote

    def clear(self) -> None:
        self._entries.clear()


class PriceService:
    """Price lookups that degrade to stale data or None instead of failing."""

    def __init__(self, source: PriceSource, cache: PriceCache, default_currency: str = "usd"):
        self.source = source
        self.cache = cache
        self.default_currency = default_currency.lower()

    async def get_prices(
        self,
        coin_ids: Iterable[str],
        currency: Optional[str] = None,
    ) -> Dict[str, Optional[PriceQuote]]:
        """Quotes for every coin id; one upstream call covers all cache misses."""
        currency = (currency or self.default_currency).lower()
        ids = list(dict.fromkeys(coin_id.lower() for coin_id in coin_ids if coin_id))

        quotes: Dict[str, Optional[PriceQuote]] = {}
        missing: List[str] = []
        for coin_id in ids:
            cached = self.cache.get(coin_id, currency)
            if cached:
                quotes[coin_id] = cached
            else:
                missing.append(coin_id)

        if missing:
            fetched: Dict[str, SimplePrice] = {}
            try:
                fetched = await self.source.get_simple_prices(missing, currency)
            except CoinGeckoError as e:
                logger.warning(f"Price fetch failed for {', '.join(missing)} ({currency}): {e}")

            now = self.cache.clock()
            for coin_id in missing:
                price = fetched.get(coin_id)
                if price is not None:
                    quote = _to_quote(price, now)
                    self.cache.put(quote)
                    quotes[coin_id] = quote
                else:
                    quotes[coin_id] = self.cache.get_stale(coin_id, currency)

        return quotes

    async def get_price(self, coin_id: str, currency: Optional[str] = None) -> Optional[PriceQuote]:
        quotes = await self.get_prices([coin_id], currency)
        return quotes.get(coin_id.lower())

    @staticmethod
    def coin_id_for(network: Network, token: Optional[TokenConfig] = None) -> str:
        """CoinGecko id of a network's native currency or of a token."""
        if token:
            return token.coin_id
        return NETWORKS[network].coin_id

    async def to_fiat(
        self,
        amount: Decimal,
        coin_id: str,
        currency: Optional[str] = None,
    ) -> Optional[Decimal]:
        """``amount`` valued in fiat, rounded to cents; None without a price."""
        quote = await self.get_price(coin_id, currency)
        if quote is None:
            return None
        return (amount * quote.price).quantize(Decimal("0.01"))

    async def refresh(self, coin_ids: Optional[Iterable[str]] = None, currency: Optional[str] = None) -> int:
        """Force-refresh quotes; defaults to every network's native coin. Returns quotes cached."""
        currency = (currency or self.default_currency).lower()
        ids = list(coin_ids) if coin_ids is not None else sorted({c.coin_id for c in NETWORKS.values()})
        try:
            fetched = await self.source.get_simple_prices(ids, currency)
        except CoinGeckoError as e:
            logger.warning(f"Price refresh failed: {e}")
            return 0

        now = self.cache.clock()
        for price in fetched.values():
            self.cache.put(_to_quote(price, now))
        logger.info(f"Refreshed {len(fetched)} prices ({currency})")
        return len(fetched)

    async def get_history(self, coin_id: str, days: int = 7, currency: Optional[str] = None) -> Optional[MarketChart]:
        """Historical chart; None when the upstream is unavailable."""
        try:
            return await self.source.get_market_chart(coin_id, days, (currency or self.default_currency).lower())
        except CoinGeckoError as e:
            logger.warning(f"Price history for {coin_id} unavailable: {e}")
            return None
