"""
Exchange rates quoted in KRW, with static defaults when the upstream is down.
"""
import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional

import requests
from requests.exceptions import RequestException

import config
from cache_store import CacheStore

logger = logging.getLogger('newsfeed.currency')

CACHE_KEY = 'currency:rates'
CACHE_TTL_SECONDS = 600

DEFAULT_RATES = {
    'USD': {'rate': 1250, 'change': 0, 'changePercent': '0.00', 'trend': 'neutral'},
    'JPY': {'rate': 920, 'change': 0, 'changePercent': '0.00', 'trend': 'neutral'},
    'EUR': {'rate': 1350, 'change': 0, 'changePercent': '0.00', 'trend': 'neutral'},
}


def quote(rate: float, previous: Optional[float]) -> Dict:
    change = round(rate - previous, 2) if previous else 0
    percent = (change / previous * 100) if previous else 0.0
    trend = 'up' if change > 0 else 'down' if change < 0 else 'neutral'
    return {'rate': rate, 'change': change, 'changePercent': f"{percent:.2f}", 'trend': trend}


def krw_quotes(usd_rates: Dict[str, float]) -> Dict[str, float]:
    """USD-based table -> KRW per 1 USD, per 100 JPY and per 1 EUR."""
    krw = usd_rates.get('KRW') or 1250
    jpy = usd_rates.get('JPY') or 100
    eur = usd_rates.get('EUR') or 0.85
    return {
        'USD': round(krw),
        'JPY': round(krw / jpy * 100),
        'EUR': round(krw / eur),
    }


class CurrencyService:

    def __init__(self, api_key: Optional[str] = config.EXCHANGE_RATE_API_KEY,
                 url: str = config.EXCHANGE_RATE_URL,
                 cache: Optional[CacheStore] = None,
                 session: Optional[requests.Session] = None,
                 timeout: float = 5.0):
        self.api_key = api_key
        self.url = url
        self.cache = cache
        self.session = session or requests.Session()
        self.timeout = timeout
        self._lock = threading.Lock()
        self._previous: Dict[str, float] = {}

    def _defaults(self, source: str) -> Dict:
        return {
            'rates': copy.deepcopy(DEFAULT_RATES),
            'source': source,
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }

    def get_rates(self) -> Dict:
        if not self.api_key:
            return self._defaults('default')

        if self.cache is not None:
            cached = self.cache.get_json(CACHE_KEY)
            if isinstance(cached, dict) and cached.get('rates'):
                return dict(cached, source='cache')

        try:
            response = self.session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (RequestException, ValueError) as e:
            logger.error("Currency upstream failed: %s", e, extra={'error_type': 'upstream_error'})
            return self._defaults('error')

        usd_rates = data.get('rates') if isinstance(data, dict) else None
        if not isinstance(usd_rates, dict):
            logger.warning("Currency upstream returned no rates table")
            return self._defaults('fallback')

        current = krw_quotes(usd_rates)
        with self._lock:
            rates = {code: quote(rate, self._previous.get(code)) for code, rate in current.items()}
            self._previous = current

        result = {
            'rates': rates,
            'source': 'exchangerate-api',
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
        if self.cache is not None:
            self.cache.set_json(CACHE_KEY, result, ttl=CACHE_TTL_SECONDS)
        return result
