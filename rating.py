"""
Deterministic article scoring and keyword labels.

Everything here is synchronous and cannot fail, so every article carries a
rating even when AI enrichment is unavailable.
"""
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

import config
from normalizer import to_datetime

BASE_RATING = 3.0
MIN_RATING = 1.0
MAX_RATING = 5.0

QUALITY_SOURCE_BONUS = 0.5
LONG_DESCRIPTION_BONUS = 0.3
LONG_DESCRIPTION_CHARS = 200
FRESHNESS_BONUS = 0.5
FRESHNESS_HOURS = 6

LABEL_RULES = {
    'urgent': re.compile(r'breaking|urgent|속보|긴급', re.I),
    'important': re.compile(r'important|major|중요|주요', re.I),
    'hot': re.compile(r'viral|trending|\bhot\b|화제', re.I),
}


def is_quality_source(article: Dict, quality_sources: Iterable[str]) -> bool:
    """
    Match the source name against the allow-list.

    An entry matches the name exactly or as its first word ("BBC" matches
    "BBC World"). Entries that look like domains ("reuters.com") match the
    article URL host instead.
    """
    name = (article.get('sourceName') or '').strip().lower()
    host = urlparse(article.get('url') or '').netloc.lower()

    for entry in quality_sources:
        entry = entry.strip().lower()
        if not entry:
            continue
        if '.' in entry:
            if host == entry or host.endswith('.' + entry):
                return True
        elif name == entry or name.startswith(entry + ' '):
            return True
    return False


def calculate_rating(article: Dict, quality_sources: Iterable[str] = config.QUALITY_SOURCES,
                     now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    rating = BASE_RATING

    if is_quality_source(article, quality_sources):
        rating += QUALITY_SOURCE_BONUS

    if len(article.get('description') or '') > LONG_DESCRIPTION_CHARS:
        rating += LONG_DESCRIPTION_BONUS

    published = to_datetime(article.get('publishedAt'))
    if published is not None:
        hours_ago = (now - published).total_seconds() / 3600
        if hours_ago < FRESHNESS_HOURS:
            rating += FRESHNESS_BONUS

    return round(min(MAX_RATING, max(MIN_RATING, rating)), 2)


def assign_tags(article: Dict) -> List[str]:
    """Keyword labels from title and description, merged with existing tags."""
    text = f"{article.get('title', '')} {article.get('description', '')}"
    tags = list(article.get('tags') or [])
    for label, pattern in LABEL_RULES.items():
        if label not in tags and pattern.search(text):
            tags.append(label)
    return tags


def rate_articles(articles: List[Dict], quality_sources: Iterable[str] = config.QUALITY_SOURCES,
                  now: Optional[datetime] = None) -> List[Dict]:
    """Return rated copies; the input dicts are left untouched."""
    now = now or datetime.now(timezone.utc)
    quality_sources = list(quality_sources)
    return [
        dict(article,
             rating=calculate_rating(article, quality_sources, now),
             tags=assign_tags(article))
        for article in articles
    ]
