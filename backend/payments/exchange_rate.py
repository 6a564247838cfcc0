"""
Cache du taux de change devise de base -> devise d'affichage/règlement.
- Un emplacement par paire de devises, remplacé en bloc à chaque rafraîchissement (jamais fusionné).
- Valide pendant `ttl` à partir de fetched_at; au-delà, on interroge à nouveau la source.
- Si la source échoue (réseau, JSON invalide, champ absent), on renvoie la constante de secours
  SANS toucher au cache: l'appel suivant retentera la source.
- Ne lève jamais d'exception vers l'appelant.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional, Tuple

import httpx

from backend.config import EXCHANGE_RATE_URL, EXCHANGE_RATE_TTL_SECONDS, EXCHANGE_RATE_FALLBACK
from .models import ExchangeRate, utcnow

logger = logging.getLogger(__name__)

RateSource = Callable[[str, str], Awaitable[Decimal]]


class RateSourceError(ValueError):
    pass


class JsDelivrRateSource:
    """
    Source de taux publique (currency-api servie par jsDelivr), sans authentification.
    Format attendu: {"date": "...", "<base>": {"<display>": <float>, ...}}
    """

    def __init__(self, url_template: str = EXCHANGE_RATE_URL, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url_template = url_template
        self.timeout = timeout
        self.transport = transport

    async def __call__(self, base: str, display: str) -> Decimal:
        base_key, display_key = base.lower(), display.lower()
        url = self.url_template.format(base=base_key)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            data = resp.json()
        rates = data.get(base_key) if isinstance(data, dict) else None
        if not isinstance(rates, dict) or rates.get(display_key) is None:
            raise RateSourceError(f"champ {base_key}.{display_key} absent de la réponse")
        raw = rates[display_key]
        if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
            raise RateSourceError(f"taux non numérique: {raw!r}")
        rate = Decimal(str(raw))
        if not rate.is_finite() or rate <= 0:
            raise RateSourceError(f"taux invalide: {raw!r}")
        return rate


class ExchangeRateCache:
    """
    Cache explicite (injecté) plutôt qu'une variable de module: TTL et secours sont des attributs,
    l'horloge est injectable pour tester les bornes du TTL.
    """

    def __init__(
        self,
        source: RateSource,
        *,
        ttl: timedelta = timedelta(seconds=EXCHANGE_RATE_TTL_SECONDS),
        fallback_rate: Decimal = EXCHANGE_RATE_FALLBACK,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.source = source
        self.ttl = ttl
        self.fallback_rate = Decimal(fallback_rate)
        self.clock = clock
        self._entries: Dict[Tuple[str, str], ExchangeRate] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def peek(self, base: str, display: str) -> Optional[ExchangeRate]:
        return self._entries.get((base.upper(), display.upper()))

    def _is_fresh(self, entry: Optional[ExchangeRate], now: datetime) -> bool:
        return bool(entry and entry.fetched_at and now - entry.fetched_at < self.ttl)

    async def quote(self, base: str, display: str) -> ExchangeRate:
        """
        Retourne l'entrée de cache fraîche, une entrée nouvellement récupérée,
        ou la constante de secours (fetched_at=None).
        Un verrou par paire: à l'expiration, un seul appelant interroge la source,
        les autres relisent l'entrée qu'il vient de remplacer.
        """
        key = (base.upper(), display.upper())
        if key[0] == key[1]:
            return ExchangeRate(base=key[0], display=key[1], rate=Decimal(1), fetched_at=self.clock())

        entry = self._entries.get(key)
        if self._is_fresh(entry, self.clock()):
            return entry

        async with self._locks.setdefault(key, asyncio.Lock()):
            now = self.clock()
            entry = self._entries.get(key)
            if self._is_fresh(entry, now):
                return entry

            try:
                rate = await self.source(key[0], key[1])
            except Exception as e:
                logger.warning("exchange_rate.source_failed pair=%s/%s error=%s fallback=%s", key[0], key[1], e, self.fallback_rate)
                return ExchangeRate(base=key[0], display=key[1], rate=self.fallback_rate, fetched_at=None)

            fresh = ExchangeRate(base=key[0], display=key[1], rate=rate, fetched_at=now)
            self._entries[key] = fresh
            logger.info("exchange_rate.refreshed pair=%s/%s rate=%s", key[0], key[1], rate)
            return fresh

    async def get_rate(self, base: str, display: str) -> Decimal:
        return (await self.quote(base, display)).rate
