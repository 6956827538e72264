"""
Aggregator: concurrent fan-out over a section's sources.

Partial failure is not failure. Every source is fetched at once on a pool
sized to the section, the aggregator waits until all have settled (or the
deadline passed), and whatever succeeded is merged in configuration order.
"""
import re
import time
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List, NamedTuple, Optional, Tuple

import config
from fetcher import SourceFetcher
from observability import Metrics

logger = logging.getLogger('newsfeed.aggregator')

# Extra time on top of the slowest per-source timeout before stragglers are abandoned
DEADLINE_GRACE_SECONDS = 1.0


class AggregationResult(NamedTuple):
    section: str
    items: List[Tuple[Dict, Dict]]
    succeeded: List[str]
    failed: List[str]
    skipped: List[str]
    duration_ms: float


def _dedup_key(value) -> str:
    return re.sub(r'\s+', ' ', str(value or '').lower().strip()).rstrip('/')


class Aggregator:

    def __init__(self, sections: Dict[str, List[Dict]], fetcher: SourceFetcher,
                 max_articles: int = config.MAX_ARTICLES,
                 metrics: Optional[Metrics] = None):
        self.sections = sections
        self.fetcher = fetcher
        self.max_articles = max_articles
        self.metrics = metrics or Metrics()

    def has_section(self, section: str) -> bool:
        return section in self.sections

    def sources_for(self, section: str) -> List[Dict]:
        """A section without dedicated sources reads the world list."""
        return self.sections.get(section) or self.sections.get(config.DEFAULT_SECTION, [])

    def aggregate(self, section: str) -> AggregationResult:
        start_time = time.time()
        sources = self.sources_for(section)

        available = [s for s in sources if self.fetcher.is_available(s)]
        skipped = [s['name'] for s in sources if s not in available]
        if skipped:
            logger.debug("Skipping sources without credentials: %s", ', '.join(skipped),
                         extra={'section': section})

        deadline = max([self.fetcher.timeout_for(s) for s in available] or [0]) + DEADLINE_GRACE_SECONDS
        futures, done = [], set()
        if available:
            # One thread per source, so no fetch queues behind another request's
            executor = ThreadPoolExecutor(max_workers=len(available), thread_name_prefix='fetch')
            try:
                futures = [executor.submit(self.fetcher.fetch, source) for source in available]
                done, _ = wait(futures, timeout=deadline)
            finally:
                executor.shutdown(wait=False)

        per_source = []
        succeeded, failed = [], []
        for source, future in zip(available, futures):
            if future not in done:
                future.cancel()
                failed.append(source['name'])
                self.metrics.increment('aggregate_source_abandoned')
                logger.warning("Abandoning %s after %.1fs deadline", source['name'], deadline,
                               extra={'section': section, 'source': source['name'],
                                      'error_type': 'timeout'})
                continue
            try:
                result = future.result()
            except Exception:
                logger.exception("Fetcher raised for %s", source['name'],
                                 extra={'section': section, 'source': source['name']})
                failed.append(source['name'])
                continue
            if result.ok:
                succeeded.append(source['name'])
                per_source.append((source, result.items))
            else:
                failed.append(source['name'])

        items = self._merge(per_source)
        duration_ms = (time.time() - start_time) * 1000
        self.metrics.record_duration('aggregate_duration_ms', duration_ms)

        logger.info("Aggregated %d items for %s (%d ok, %d failed, %d skipped)",
                    len(items), section, len(succeeded), len(failed), len(skipped),
                    extra={'section': section, 'article_count': len(items),
                           'duration_ms': round(duration_ms, 1)})

        return AggregationResult(section, items, succeeded, failed, skipped, round(duration_ms, 2))

    def _merge(self, per_source: List[Tuple[Dict, List[Dict]]]) -> List[Tuple[Dict, Dict]]:
        """Concatenate in configuration order, drop repeats, truncate."""
        merged = []
        seen_urls = set()
        seen_titles = set()

        for source, items in per_source:
            for item in items:
                if not isinstance(item, dict):
                    continue
                url = _dedup_key(item.get('link') or item.get('url'))
                if url and url != '#':
                    if url in seen_urls:
                        continue
                    seen_urls.add(url)

                title = _dedup_key(item.get('title'))
                if title:
                    if title in seen_titles:
                        continue
                    seen_titles.add(title)

                merged.append((source, item))
                if len(merged) >= self.max_articles:
                    return merged

        return merged
