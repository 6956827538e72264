"""
Normalizer: maps heterogeneous upstream items onto one Article dict.

Pure mapping functions. No article is dropped for missing optional fields;
missing values get placeholders instead of None. An item that cannot be
mapped at all is logged and skipped without affecting the rest of its batch.
"""
import re
import time
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup

from errors import ParseError

logger = logging.getLogger('newsfeed.normalizer')

NO_TITLE = 'No title'
NO_URL = '#'
UNKNOWN_SOURCE = 'Unknown'
DEFAULT_RATING = 3.0

TITLE_MAX_LENGTH = 300
DESCRIPTION_MAX_LENGTH = 2000

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]')

# Comprehensive date formats
DATE_FORMATS = [
    '%Y-%m-%dT%H:%M:%S%z',
    '%Y-%m-%dT%H:%M:%SZ',
    '%Y-%m-%dT%H:%M:%S.%f%z',
    '%Y-%m-%dT%H:%M:%S.%fZ',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%d %H:%M:%S%z',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d',
    '%d %b %Y %H:%M:%S %z',
    '%d %b %Y %H:%M:%S',
    '%a, %d %b %Y %H:%M:%S %z',  # RFC 2822
    '%a, %d %b %Y %H:%M:%S %Z',
]


def clean_text(value, max_length: int = 500) -> str:
    """Strip markup and control characters, collapse whitespace, truncate."""
    if value is None:
        return ''

    if not isinstance(value, str):
        value = str(value)

    if '<' in value and '>' in value:
        value = BeautifulSoup(value, 'html.parser').get_text(' ')

    value = _CONTROL_CHARS.sub('', value)
    value = ' '.join(value.split())

    return value[:max_length].strip()


@lru_cache(maxsize=1000)
def parse_date(date_str: str) -> Optional[str]:
    """Parse various date formats to ISO format with caching."""
    if not date_str:
        return None

    date_str = date_str.strip()

    # Handle common timezone abbreviations
    date_str = date_str.replace('GMT', '+0000').replace('UTC', '+0000')

    for fmt in DATE_FORMATS:
        try:
            dt = datetime.strptime(date_str, fmt)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc).isoformat()
        except ValueError:
            continue

    # Try fromisoformat as fallback
    try:
        dt = datetime.fromisoformat(date_str.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).isoformat()
    except ValueError:
        pass

    return None


def to_datetime(iso_str: Optional[str]) -> Optional[datetime]:
    """Inverse of parse_date for strings we produced ourselves."""
    if not iso_str:
        return None
    try:
        dt = datetime.fromisoformat(str(iso_str).replace('Z', '+00:00'))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _as_text(value) -> str:
    """Upstream scalars arrive with any JSON type; treat them as strings."""
    if value is None:
        return ''
    return str(value).strip()


def make_article_id(source_name: str, fetched_at: float, seq: int) -> str:
    return f"{source_name}_{int(fetched_at * 1000)}_{seq}"


def _struct_to_iso(parsed) -> Optional[str]:
    try:
        return datetime(*parsed[:6], tzinfo=timezone.utc).isoformat()
    except (ValueError, TypeError, IndexError):
        return None


def _rss_published(entry: Dict) -> Optional[str]:
    for key in ('published_parsed', 'updated_parsed'):
        parsed = entry.get(key)
        if parsed:
            published = _struct_to_iso(parsed)
            if published:
                return published

    for key in ('published', 'updated', 'created'):
        raw = entry.get(key)
        if raw:
            published = parse_date(str(raw))
            if published:
                return published
    return None


def _rss_body(entry: Dict) -> str:
    content = entry.get('content')
    if content:
        first = content[0]
        value = first.get('value') if isinstance(first, dict) else first
        if value:
            return value
    return entry.get('summary') or entry.get('description') or ''


def _rss_image(entry: Dict) -> Optional[str]:
    for key in ('media_thumbnail', 'media_content'):
        media = entry.get(key)
        if media and isinstance(media, list) and media[0].get('url'):
            return media[0]['url']
    for enclosure in entry.get('enclosures', []) or []:
        if str(enclosure.get('type', '')).startswith('image/') and enclosure.get('href'):
            return enclosure['href']
    return None


def _base_article(article_id: str, now_iso: str) -> Dict:
    return {
        'id': article_id,
        'title': NO_TITLE,
        'description': '',
        'url': NO_URL,
        'image': None,
        'sourceName': UNKNOWN_SOURCE,
        'publishedAt': now_iso,
        'rating': DEFAULT_RATING,
        'tags': [],
    }


def normalize_rss_item(entry: Dict, source: Dict, article_id: str, now_iso: str) -> Dict:
    """RSS entry -> Article. The source name comes from configuration, not the item."""
    article = _base_article(article_id, now_iso)
    article['title'] = clean_text(entry.get('title'), TITLE_MAX_LENGTH) or NO_TITLE
    article['description'] = clean_text(_rss_body(entry), DESCRIPTION_MAX_LENGTH)
    article['url'] = _as_text(entry.get('link')) or NO_URL
    article['image'] = _rss_image(entry)
    article['sourceName'] = source.get('name') or UNKNOWN_SOURCE
    article['publishedAt'] = _rss_published(entry) or now_iso
    return article


def normalize_rest_item(item: Dict, source: Dict, article_id: str, now_iso: str) -> Dict:
    """NewsAPI-style item -> Article."""
    article = _base_article(article_id, now_iso)
    article['title'] = clean_text(item.get('title'), TITLE_MAX_LENGTH) or NO_TITLE
    article['description'] = clean_text(item.get('description'), DESCRIPTION_MAX_LENGTH)
    article['url'] = _as_text(item.get('url')) or NO_URL
    article['image'] = _as_text(item.get('urlToImage') or item.get('image')) or None

    nested = item.get('source')
    if isinstance(nested, dict) and nested.get('name'):
        article['sourceName'] = clean_text(nested['name'], 100)

    article['publishedAt'] = parse_date(str(item.get('publishedAt') or '')) or now_iso
    return article


class Normalizer:
    """Batch front end over the per-kind mapping functions."""

    def normalize(self, source: Dict, item: Dict, seq: int = 0,
                  fetched_at: Optional[float] = None) -> Dict:
        fetched_at = time.time() if fetched_at is None else fetched_at
        now_iso = datetime.fromtimestamp(fetched_at, tz=timezone.utc).isoformat()
        article_id = make_article_id(source.get('name') or UNKNOWN_SOURCE, fetched_at, seq)

        if source.get('kind', 'rss') == 'rest':
            return normalize_rest_item(item, source, article_id, now_iso)
        return normalize_rss_item(item, source, article_id, now_iso)

    def normalize_batch(self, pairs: Iterable[Tuple[Dict, Dict]],
                        fetched_at: Optional[float] = None) -> List[Dict]:
        """Normalize (source, raw item) pairs; ids are unique within the batch."""
        fetched_at = time.time() if fetched_at is None else fetched_at
        articles = []
        for seq, (source, item) in enumerate(pairs):
            try:
                articles.append(self.normalize(source, item, seq, fetched_at))
            except Exception as e:
                logger.warning("Skipping malformed item from %s: %s", source.get('name'), e,
                               extra={'source': source.get('name'),
                                      'error_type': ParseError.error_type})
        return articles
