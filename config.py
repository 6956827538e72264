"""
Runtime configuration for the EmarkNews feed backend.

Scalar settings come from environment variables with defaults. The per-section
source lists are static data kept here, optionally replaced by a JSON file
named in NEWSFEED_SECTIONS_PATH.
"""
import os
import json
import logging
from typing import Dict, List, Optional

logger = logging.getLogger('newsfeed.config')

# =============================================================================
# ENVIRONMENT
# =============================================================================

LOG_LEVEL = os.environ.get('NEWSFEED_LOG_LEVEL', 'INFO')
MAX_ARTICLES = int(os.environ.get('NEWSFEED_MAX_ARTICLES', '20'))
ITEMS_PER_SOURCE = int(os.environ.get('NEWSFEED_ITEMS_PER_SOURCE', '10'))
SOURCE_TIMEOUT_MS = int(os.environ.get('NEWSFEED_SOURCE_TIMEOUT_MS', '5000'))
CACHE_TTL_SECONDS = int(os.environ.get('NEWSFEED_CACHE_TTL', '600'))
SORT_BY_RATING = os.environ.get('NEWSFEED_SORT_BY_RATING', 'false').lower() == 'true'

# Enrichment
ENRICH_MODE = os.environ.get('NEWSFEED_ENRICH_MODE', 'background').lower()
ENRICH_MAX_ARTICLES = int(os.environ.get('NEWSFEED_ENRICH_MAX', '10'))
ENRICH_WORKERS = int(os.environ.get('NEWSFEED_ENRICH_WORKERS', '2'))
ENRICH_QUEUE_SIZE = int(os.environ.get('NEWSFEED_ENRICH_QUEUE', '50'))
ENRICH_TIMEOUT_SECONDS = float(os.environ.get('NEWSFEED_ENRICH_TIMEOUT', '20'))
TRANSLATE_TO = os.environ.get('NEWSFEED_TRANSLATE_TO', 'ko')
ENRICH_FEATURES = [
    f.strip() for f in os.environ.get('NEWSFEED_ENRICH_FEATURES', 'translate,summarize,sentiment').split(',')
    if f.strip()
]

QUALITY_SOURCES = [
    s.strip() for s in os.environ.get('NEWSFEED_QUALITY_SOURCES', 'BBC,CNN,Reuters').split(',')
    if s.strip()
]

# Upstream credentials
REDIS_URL = os.environ.get('REDIS_URL')
OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY')
OPENAI_BASE_URL = os.environ.get('OPENAI_BASE_URL', 'https://api.openai.com/v1')
OPENAI_MODEL = os.environ.get('OPENAI_MODEL', 'gpt-4o-mini')
OPENAI_TIMEOUT_SECONDS = float(os.environ.get('OPENAI_TIMEOUT', '15'))
EXCHANGE_RATE_API_KEY = os.environ.get('EXCHANGE_RATE_API_KEY')
EXCHANGE_RATE_URL = os.environ.get('EXCHANGE_RATE_URL', 'https://api.exchangerate-api.com/v4/latest/USD')

# Cache store reconnect policy
CACHE_CONNECT_ATTEMPTS = 10
CACHE_CONNECT_BASE_DELAY = 0.1
CACHE_CONNECT_MAX_DELAY = 3.0

PORT = int(os.environ.get('PORT', '8080'))
VERSION = '6.0.0'
USER_AGENT = 'Mozilla/5.0 (compatible; EmarkNews/6.0; +https://emarknews.com)'

# Optional override file in the same [{section, sources}] JSON shape
SECTIONS_PATH = os.environ.get('NEWSFEED_SECTIONS_PATH') or None

DEFAULT_SECTION = 'world'
SOURCE_KINDS = ('rss', 'rest')

# =============================================================================
# SECTIONS
# =============================================================================

DEFAULT_SECTIONS = [
    {
        "section": "world",
        "sources": [
            {"name": "BBC", "url": "https://feeds.bbci.co.uk/news/world/rss.xml", "kind": "rss"},
            {"name": "CNN", "url": "http://rss.cnn.com/rss/edition_world.rss", "kind": "rss"},
            {"name": "Reuters", "url": "https://feeds.reuters.com/reuters/topNews", "kind": "rss"},
            {"name": "NewsAPI World", "url": "https://newsapi.org/v2/top-headlines?country=us",
             "kind": "rest", "api_key_env": "NEWS_API_KEY"},
        ],
    },
    {
        "section": "kr",
        "sources": [
            {"name": "JTBC", "url": "https://fs.jtbc.co.kr/RSS/newsflash.xml", "kind": "rss"},
            {"name": "Donga", "url": "https://rss.donga.com/total.xml", "kind": "rss"},
            {"name": "NewsAPI Korea", "url": "https://newsapi.org/v2/top-headlines?country=kr",
             "kind": "rest", "api_key_env": "NEWS_API_KEY"},
        ],
    },
    {
        "section": "japan",
        "sources": [
            {"name": "NHK", "url": "https://www3.nhk.or.jp/rss/news/cat0.xml", "kind": "rss"},
            {"name": "NewsAPI Japan", "url": "https://newsapi.org/v2/top-headlines?country=jp",
             "kind": "rest", "api_key_env": "NEWS_API_KEY"},
        ],
    },
    {
        "section": "tech",
        "sources": [
            {"name": "TechCrunch", "url": "https://feeds.feedburner.com/TechCrunch/", "kind": "rss"},
            {"name": "The Verge", "url": "https://www.theverge.com/rss/index.xml", "kind": "rss"},
            {"name": "NewsAPI Technology",
             "url": "https://newsapi.org/v2/top-headlines?country=us&category=technology",
             "kind": "rest", "api_key_env": "NEWS_API_KEY"},
        ],
    },
    {
        "section": "business",
        "sources": [
            {"name": "BBC Business", "url": "https://feeds.bbci.co.uk/news/business/rss.xml", "kind": "rss"},
            {"name": "NewsAPI Business",
             "url": "https://newsapi.org/v2/top-headlines?country=us&category=business",
             "kind": "rest", "api_key_env": "NEWS_API_KEY"},
        ],
    },
    {
        "section": "buzz",
        "sources": [],
    },
]


def _valid_source(source) -> bool:
    if not isinstance(source, dict):
        return False
    if not source.get('name') or not source.get('url'):
        logger.warning("Skipping source without name or url: %r", source)
        return False
    if source.get('kind', 'rss') not in SOURCE_KINDS:
        logger.warning("Skipping source %s with unknown kind %r", source.get('name'), source.get('kind'))
        return False
    return True


def parse_sections(data) -> Dict[str, List[Dict]]:
    """Validate a [{section, sources}] list into the section -> source list mapping."""
    if not isinstance(data, list):
        logger.error("Sections config must be a JSON array")
        return {}

    sections = {}
    for entry in data:
        if not isinstance(entry, dict) or not entry.get('section'):
            logger.warning("Skipping invalid section entry: missing section key")
            continue
        sources = entry.get('sources', [])
        if not isinstance(sources, list):
            continue
        sections[entry['section'].lower()] = [
            dict(source, kind=source.get('kind', 'rss'))
            for source in sources if _valid_source(source)
        ]

    if DEFAULT_SECTION not in sections:
        logger.warning("Sections config has no '%s' entry; fallback lookups will be empty", DEFAULT_SECTION)
    return sections


def load_sections(path: Optional[str] = SECTIONS_PATH) -> Dict[str, List[Dict]]:
    """Built-in sections, or the JSON file at ``path`` when one is configured."""
    if path is None:
        return parse_sections(DEFAULT_SECTIONS)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.error("Sections file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in sections file: %s", str(e))
        return {}
    except PermissionError:
        logger.error("Permission denied reading sections: %s", path)
        return {}

    sections = parse_sections(data)
    logger.info("Loaded %d sections from %s", len(sections), path)
    return sections
