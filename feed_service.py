"""
Feed Service: the per-section entry point.

CACHE_LOOKUP -> AGGREGATE -> ENRICH -> RESPOND. A failed refresh falls back
to a fresh cached envelope, then to a static sample envelope. A valid section always gets a renderable
envelope back; only an unknown section raises (InvalidSection).
"""
import time
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

import config
from aggregator import Aggregator
from cache_store import CacheStore
from enrichment import EnrichmentService, EnrichmentWorker
from errors import InvalidSection
from normalizer import Normalizer, to_datetime
from observability import Metrics
from rating import rate_articles

logger = logging.getLogger('newsfeed.feed')

SOURCE_LIVE = 'live-aggregation'
SOURCE_SAMPLE = 'sample-data'
SOURCE_CACHE = 'cache'

ENRICH_MODES = ('background', 'sync', 'off')

SAMPLE_ARTICLES = {
    'world': [
        {
            'title': 'Global economy at a turning point',
            'description': 'The world economy is entering a new phase, and analysts are divided on what comes next.',
            'url': 'https://example.com/world-news-1',
            'image': 'https://via.placeholder.com/400x200?text=World+News',
        },
        {
            'title': 'Leaders agree on new climate framework',
            'description': 'Heads of state reached a new agreement on responding to climate change.',
            'url': 'https://example.com/world-news-2',
            'image': 'https://via.placeholder.com/400x200?text=Climate+News',
        },
    ],
    'kr': [
        {
            'title': 'Growth outlook for the Korean economy revised upward',
            'description': 'Korea is now expected to grow faster this year than previously forecast.',
            'url': 'https://example.com/kr-news-1',
            'image': 'https://via.placeholder.com/400x200?text=Korea+Economy',
        },
    ],
    'japan': [
        {
            'title': 'Japan announces technology innovation program',
            'description': 'The government unveiled a large investment plan for new technology.',
            'url': 'https://example.com/jp-news-1',
            'image': 'https://via.placeholder.com/400x200?text=Japan+Tech',
        },
    ],
    'tech': [
        {
            'title': 'A new breakthrough in AI research',
            'description': 'Artificial intelligence is moving into a new stage across many industries.',
            'url': 'https://example.com/tech-news-1',
            'image': 'https://via.placeholder.com/400x200?text=AI+Technology',
        },
    ],
}


def cache_key(section: str) -> str:
    return f"feed:{section}"


def build_envelope(section: str, articles: List[Dict], source: str, timestamp: str) -> Dict:
    return {
        'section': section,
        'articles': articles,
        'total': len(articles),
        'timestamp': timestamp,
        'source': source,
    }


class FeedService:

    def __init__(self, aggregator: Aggregator, normalizer: Normalizer,
                 enrichment: EnrichmentService, cache: CacheStore,
                 worker: Optional[EnrichmentWorker] = None,
                 metrics: Optional[Metrics] = None,
                 cache_ttl: int = config.CACHE_TTL_SECONDS,
                 enrich_mode: str = config.ENRICH_MODE,
                 enrich_timeout: float = config.ENRICH_TIMEOUT_SECONDS,
                 quality_sources: Iterable[str] = config.QUALITY_SOURCES,
                 sort_by_rating: bool = config.SORT_BY_RATING,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.aggregator = aggregator
        self.normalizer = normalizer
        self.enrichment = enrichment
        self.cache = cache
        self.worker = worker
        self.metrics = metrics or Metrics()
        self.cache_ttl = cache_ttl
        self.enrich_mode = enrich_mode if enrich_mode in ENRICH_MODES else 'background'
        self.enrich_timeout = enrich_timeout
        self.quality_sources = list(quality_sources)
        self.sort_by_rating = sort_by_rating
        self._clock = clock

    def sections(self) -> List[str]:
        return sorted(self.aggregator.sections)

    def validate_section(self, section: Optional[str]) -> str:
        section = (section or '').strip().lower()
        if not self.aggregator.has_section(section):
            raise InvalidSection(section)
        return section

    def get_news_data(self, section: str = config.DEFAULT_SECTION,
                      enrich_mode: Optional[str] = None,
                      force_refresh: bool = False) -> Dict:
        section = self.validate_section(section)
        start_time = time.time()
        self.metrics.increment('feed_requests')

        if not force_refresh:
            cached = self._lookup(section)
            if cached is not None:
                self.metrics.increment('feed_cache_hits')
                logger.info("Cache hit for %s", section, extra={'section': section})
                return dict(cached, source=SOURCE_CACHE)

        try:
            envelope = self._build_live(section, enrich_mode or self.enrich_mode)
        except Exception:
            logger.exception("Feed pipeline failed for %s", section, extra={'section': section})
            envelope = None

        if envelope is None:
            cached = self._lookup(section)
            if cached is not None:
                self.metrics.increment('feed_cache_fallback')
                logger.info("Live refresh failed for %s, serving cached envelope", section,
                            extra={'section': section})
                return dict(cached, source=SOURCE_CACHE)

        if envelope is None:
            self.metrics.increment('feed_sample_fallback')
            envelope = self.sample_envelope(section)

        duration_ms = (time.time() - start_time) * 1000
        self.metrics.record_duration('feed_duration_ms', duration_ms)
        logger.info("Served %s for %s in %.1fms", envelope['source'], section, duration_ms,
                    extra={'section': section, 'article_count': envelope['total'],
                           'duration_ms': round(duration_ms, 1)})
        return envelope

    def _lookup(self, section: str) -> Optional[Dict]:
        envelope = self.cache.get_json(cache_key(section))
        if not isinstance(envelope, dict) or not isinstance(envelope.get('articles'), list):
            return None

        if self._age_seconds(envelope) >= self.cache_ttl:
            return None
        return envelope

    def _age_seconds(self, envelope: Dict) -> float:
        written = to_datetime(envelope.get('timestamp'))
        if written is None:
            return float('inf')
        return (self._clock() - written).total_seconds()

    def _build_live(self, section: str, mode: str) -> Optional[Dict]:
        result = self.aggregator.aggregate(section)
        if not result.items:
            logger.warning("No source delivered articles for %s (failed: %s)",
                           section, ', '.join(result.failed) or 'none',
                           extra={'section': section})
            return None

        now = self._clock()
        articles = self.normalizer.normalize_batch(result.items, fetched_at=now.timestamp())
        articles = rate_articles(articles, self.quality_sources, now)
        if self.sort_by_rating:
            articles.sort(key=lambda a: a['rating'], reverse=True)

        if mode == 'sync':
            articles = self.enrichment.enrich_articles(articles, timeout=self.enrich_timeout)

        envelope = build_envelope(section, articles, SOURCE_LIVE, now.isoformat())
        self.cache.set_json(cache_key(section), envelope, ttl=self.cache_ttl)

        if mode == 'background' and self.worker is not None and self.enrichment.configured:
            self.worker.submit(self._enrich_cached, section, envelope, name=f'enrich:{section}')

        return envelope

    def _enrich_cached(self, section: str, envelope: Dict) -> None:
        """Background job: enrich a served envelope and replace its cache entry."""
        articles = self.enrichment.enrich_articles(envelope['articles'], timeout=self.enrich_timeout)

        remaining = int(self.cache_ttl - self._age_seconds(envelope))
        if remaining <= 0:
            return

        current = self.cache.get_json(cache_key(section))
        if isinstance(current, dict) and current.get('timestamp') != envelope['timestamp']:
            logger.debug("Newer envelope cached for %s, discarding enrichment", section,
                         extra={'section': section})
            return

        enriched = dict(envelope, articles=articles)
        self.cache.set_json(cache_key(section), enriched, ttl=remaining)
        logger.info("Cached enriched envelope for %s", section, extra={'section': section})

    def sample_envelope(self, section: str) -> Dict:
        now = self._clock()
        samples = SAMPLE_ARTICLES.get(section) or SAMPLE_ARTICLES[config.DEFAULT_SECTION]
        articles = [
            dict(sample, id=f'sample_{section}_{i}', sourceName='EmarkNews',
                 publishedAt=now.isoformat(), rating=3.0, tags=[])
            for i, sample in enumerate(samples, 1)
        ]
        articles = rate_articles(articles, self.quality_sources, now)
        envelope = build_envelope(section, articles, SOURCE_SAMPLE, now.isoformat())
        envelope['message'] = 'Live sources are unavailable; showing sample articles'
        return envelope
