"""
Source Fetcher: one bounded-time fetch against one upstream.

A fetch never raises. It returns a FetchResult whose ``items`` list is empty
on failure and whose ``error`` carries the typed failure for logging.
"""
import os
import time
import logging
from typing import Callable, Dict, List, NamedTuple, Optional

import feedparser
import requests
from requests.exceptions import Timeout, RequestException, HTTPError, SSLError, ConnectionError as ReqConnectionError

import config
from errors import NewsFeedError, UpstreamTimeout, UpstreamError, ParseError
from observability import Metrics

logger = logging.getLogger('newsfeed.fetcher')


class FetchResult(NamedTuple):
    source: Dict
    items: List[Dict]
    error: Optional[NewsFeedError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_session(pool_size: int = 20) -> requests.Session:
    """Create a requests session with connection pooling."""
    session = requests.Session()
    session.headers.update({
        'User-Agent': config.USER_AGENT,
        'Accept': 'application/rss+xml, application/xml, application/atom+xml, application/json, text/xml, */*',
        'Accept-Language': 'en-US,en;q=0.9,ko;q=0.8',
        'Accept-Encoding': 'gzip, deflate',
    })
    adapter = requests.adapters.HTTPAdapter(
        pool_connections=10,
        pool_maxsize=pool_size,
        max_retries=0  # a slow source should fail fast, not retry
    )
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    return session


class SourceFetcher:
    """Fetches and parses one RSS feed or REST news endpoint."""

    def __init__(self, session: Optional[requests.Session] = None,
                 metrics: Optional[Metrics] = None,
                 timeout_ms: int = config.SOURCE_TIMEOUT_MS,
                 items_per_source: int = config.ITEMS_PER_SOURCE,
                 getenv: Callable[[str], Optional[str]] = os.environ.get):
        self.session = session or build_session()
        self.metrics = metrics or Metrics()
        self.timeout_ms = timeout_ms
        self.items_per_source = items_per_source
        self._getenv = getenv

    def timeout_for(self, source: Dict) -> float:
        return source.get('timeout_ms', self.timeout_ms) / 1000

    def api_key_for(self, source: Dict) -> Optional[str]:
        env_name = source.get('api_key_env')
        if not env_name:
            return None
        return self._getenv(env_name) or None

    def is_available(self, source: Dict) -> bool:
        """A source that needs a key nobody configured is skipped entirely."""
        return not source.get('api_key_env') or bool(self.api_key_for(source))

    def fetch(self, source: Dict) -> FetchResult:
        start_time = time.time()
        name = source.get('name', 'unknown')

        try:
            response = self._get(source)
            if source.get('kind', 'rss') == 'rest':
                items = parse_rest_response(response)
            else:
                items = parse_rss_feed(response.content, name)
        except NewsFeedError as e:
            duration_ms = (time.time() - start_time) * 1000
            self.metrics.increment('fetch_' + e.error_type)
            self.metrics.record_duration('fetch_failed_duration_ms', duration_ms)
            logger.warning("Source %s failed: %s", name, e,
                           extra={'source': name, 'error_type': e.error_type,
                                  'duration_ms': round(duration_ms, 1)})
            return FetchResult(source, [], e)

        items = items[:self.items_per_source]
        duration_ms = (time.time() - start_time) * 1000
        self.metrics.increment('fetch_success')
        self.metrics.record_duration('fetch_duration_ms', duration_ms)
        logger.debug("Fetched %d items from %s in %.1fms", len(items), name, duration_ms,
                     extra={'source': name, 'article_count': len(items),
                            'duration_ms': round(duration_ms, 1)})
        return FetchResult(source, items)

    def _get(self, source: Dict) -> requests.Response:
        url = source['url']
        headers = {}
        api_key = self.api_key_for(source)
        if api_key:
            headers['X-Api-Key'] = api_key

        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout_for(source),
                                        allow_redirects=True)
            response.raise_for_status()
            return response
        except Timeout:
            raise UpstreamTimeout(f"timed out after {self.timeout_for(source):.1f}s: {url}")
        except HTTPError as e:
            status = e.response.status_code if e.response is not None else 'unknown'
            raise UpstreamError(f"HTTP {status} from {url}")
        except SSLError as e:
            raise UpstreamError(f"SSL error for {url}: {e}")
        except ReqConnectionError as e:
            raise UpstreamError(f"connection error for {url}: {e}")
        except RequestException as e:
            raise UpstreamError(f"request error for {url}: {e}")


def parse_rss_feed(content: bytes, name: str = '') -> List[Dict]:
    """Parse RSS/Atom bytes into feedparser entries (dict-like)."""
    try:
        feed = feedparser.parse(content)
    except Exception as e:
        raise ParseError(f"failed to parse feed {name}: {e}")

    if feed.bozo and not feed.entries:
        raise ParseError(f"malformed feed {name}: {getattr(feed, 'bozo_exception', 'unknown error')}")

    return list(feed.entries)


def parse_rest_response(response: requests.Response) -> List[Dict]:
    """Parse a NewsAPI-style JSON body: {status, articles: [...]}."""
    try:
        data = response.json()
    except ValueError as e:
        raise ParseError(f"invalid JSON: {e}")

    if not isinstance(data, dict):
        raise ParseError("JSON body is not an object")
    if data.get('status') == 'error':
        raise UpstreamError(data.get('message') or data.get('code') or 'upstream reported an error')

    articles = data.get('articles')
    if not isinstance(articles, list):
        raise ParseError("JSON body has no articles list")
    return [a for a in articles if isinstance(a, dict)]
