"""
Unit tests for article normalization and rating.
Run with: pytest tests/test_normalizer.py -v
"""
import pytest
from datetime import datetime, timezone, timedelta
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from normalizer import (
    Normalizer,
    clean_text,
    parse_date,
    to_datetime,
    make_article_id,
    NO_TITLE,
    NO_URL,
    UNKNOWN_SOURCE,
)
from rating import calculate_rating, assign_tags, rate_articles, is_quality_source
from observability import Metrics

ARTICLE_KEYS = {'id', 'title', 'description', 'url', 'image', 'sourceName',
                'publishedAt', 'rating', 'tags'}

FETCHED_AT = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc).timestamp()


class TestCleanText:

    def test_strips_markup(self):
        assert clean_text("<p>Hello <b>world</b></p>") == "Hello world"

    def test_control_characters(self):
        assert clean_text("Hello\x00\x1fWorld") == "HelloWorld"

    def test_collapses_whitespace(self):
        assert clean_text("  a \n\t b  ") == "a b"

    def test_length_limit(self):
        assert len(clean_text("x" * 1000, max_length=100)) == 100

    def test_none(self):
        assert clean_text(None) == ''


class TestParseDate:

    def test_rfc2822(self):
        assert parse_date("Mon, 15 Jan 2024 10:30:00 GMT") == "2024-01-15T10:30:00+00:00"

    def test_iso_with_z(self):
        assert parse_date("2024-01-15T10:30:00Z") == "2024-01-15T10:30:00+00:00"

    def test_offset_converted_to_utc(self):
        assert parse_date("2024-01-15T19:30:00+09:00") == "2024-01-15T10:30:00+00:00"

    def test_invalid_dates(self):
        assert parse_date("") is None
        assert parse_date("not a date") is None

    def test_to_datetime_roundtrip(self):
        dt = to_datetime(parse_date("2024-01-15"))
        assert dt == datetime(2024, 1, 15, tzinfo=timezone.utc)
        assert to_datetime("garbage") is None


class TestNormalizer:

    @pytest.fixture
    def normalizer(self):
        return Normalizer()

    def test_rss_item(self, normalizer):
        source = {"name": "BBC", "url": "https://feeds.bbci.co.uk/news/world/rss.xml", "kind": "rss"}
        entry = {
            "title": "Election results",
            "link": "https://bbc.com/a",
            "summary": "<p>Votes are being counted.</p>",
            "published": "Mon, 15 Jan 2024 10:30:00 GMT",
            "media_thumbnail": [{"url": "https://bbc.com/a.jpg"}],
        }

        article = normalizer.normalize(source, entry, seq=0, fetched_at=FETCHED_AT)

        assert set(article) == ARTICLE_KEYS
        assert article['title'] == "Election results"
        assert article['description'] == "Votes are being counted."
        assert article['url'] == "https://bbc.com/a"
        assert article['image'] == "https://bbc.com/a.jpg"
        assert article['sourceName'] == "BBC"
        assert article['publishedAt'] == "2024-01-15T10:30:00+00:00"
        assert article['rating'] == 3.0
        assert article['tags'] == []

    def test_rest_item_uses_nested_source_name(self, normalizer):
        source = {"name": "NewsAPI World", "url": "https://newsapi.org/v2/top-headlines", "kind": "rest"}
        item = {
            "title": "Markets rally",
            "description": "Stocks rose sharply.",
            "url": "https://reuters.com/markets",
            "urlToImage": "https://reuters.com/img.jpg",
            "publishedAt": "2024-01-15T09:00:00Z",
            "source": {"id": None, "name": "Reuters"},
        }

        article = normalizer.normalize(source, item, seq=3, fetched_at=FETCHED_AT)

        assert article['sourceName'] == "Reuters"
        assert article['image'] == "https://reuters.com/img.jpg"
        assert article['publishedAt'] == "2024-01-15T09:00:00+00:00"

    def test_missing_fields_get_placeholders(self, normalizer):
        source = {"name": "", "url": "https://x.test/rss", "kind": "rss"}

        article = normalizer.normalize(source, {}, seq=0, fetched_at=FETCHED_AT)

        assert article['title'] == NO_TITLE
        assert article['url'] == NO_URL
        assert article['sourceName'] == UNKNOWN_SOURCE
        assert article['description'] == ''
        assert article['image'] is None
        assert to_datetime(article['publishedAt']).timestamp() == FETCHED_AT

    def test_rest_item_with_non_string_fields(self, normalizer):
        source = {"name": "NewsAPI", "url": "https://newsapi.test/v2", "kind": "rest"}
        item = {"title": "odd", "url": 12345, "urlToImage": 7, "publishedAt": 0}

        article = normalizer.normalize(source, item, seq=0, fetched_at=FETCHED_AT)

        assert article['title'] == "odd"
        assert article['url'] == "12345"
        assert article['image'] == "7"
        assert to_datetime(article['publishedAt']).timestamp() == FETCHED_AT

    def test_batch_skips_unmappable_item(self, normalizer):
        rss = {"name": "BBC", "url": "https://bbc.test/rss", "kind": "rss"}
        rest = {"name": "NewsAPI", "url": "https://newsapi.test/v2", "kind": "rest"}
        pairs = [(rss, {"title": "Good one", "link": "https://bbc.test/1"}),
                 (rest, None),
                 (rest, {"title": "Good two", "url": "https://x.test/2"})]

        articles = normalizer.normalize_batch(pairs, fetched_at=FETCHED_AT)

        assert [a['title'] for a in articles] == ["Good one", "Good two"]
        assert len({a['id'] for a in articles}) == 2

    def test_batch_ids_unique(self, normalizer):
        source = {"name": "CNN", "url": "https://cnn.test/rss", "kind": "rss"}
        pairs = [(source, {"title": "same"}), (source, {"title": "same"})]

        articles = normalizer.normalize_batch(pairs, fetched_at=FETCHED_AT)

        assert len({a['id'] for a in articles}) == 2
        assert articles[0]['id'] == make_article_id("CNN", FETCHED_AT, 0)


class TestRating:

    NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

    def article(self, **overrides):
        article = {
            'title': 'Headline',
            'description': '',
            'url': 'https://example.com/a',
            'sourceName': 'Local Gazette',
            'publishedAt': (self.NOW - timedelta(days=2)).isoformat(),
            'rating': 3.0,
            'tags': [],
        }
        article.update(overrides)
        return article

    def test_base_rating(self):
        assert calculate_rating(self.article(), ['BBC'], self.NOW) == 3.0

    def test_all_bonuses(self):
        article = self.article(sourceName='BBC', description='x' * 250,
                               publishedAt=self.NOW.isoformat())
        assert calculate_rating(article, ['BBC', 'CNN', 'Reuters'], self.NOW) == 4.3

    def test_quality_source_matching(self):
        assert is_quality_source(self.article(sourceName='BBC World'), ['BBC'])
        assert not is_quality_source(self.article(sourceName='BBCX'), ['BBC'])
        assert is_quality_source(self.article(url='https://www.reuters.com/x'), ['reuters.com'])

    def test_clamped_to_range(self):
        article = self.article(sourceName='BBC', description='x' * 250,
                               publishedAt=self.NOW.isoformat())
        ratings = [a['rating'] for a in rate_articles([article, self.article()], ['BBC'], self.NOW)]
        assert all(1.0 <= r <= 5.0 for r in ratings)

    def test_rate_articles_leaves_input_untouched(self):
        original = self.article(sourceName='CNN', publishedAt=self.NOW.isoformat())
        rated = rate_articles([original], ['CNN'], self.NOW)
        assert original['rating'] == 3.0
        assert rated[0]['rating'] == 4.0


class TestAssignTags:

    def test_keyword_labels(self):
        tags = assign_tags({'title': 'BREAKING: major storm', 'description': 'trending now'})
        assert tags == ['urgent', 'important', 'hot']

    def test_korean_keywords(self):
        assert assign_tags({'title': '속보 지진 발생', 'description': ''}) == ['urgent']

    def test_hot_is_whole_word(self):
        assert assign_tags({'title': 'Photographer wins award', 'description': ''}) == []

    def test_existing_tags_kept(self):
        assert assign_tags({'title': 'urgent', 'description': '', 'tags': ['urgent']}) == ['urgent']


class TestMetrics:

    def test_increment(self):
        m = Metrics()
        m.increment("test_counter")
        m.increment("test_counter", 2)
        assert m.get_stats()['counters']['test_counter'] == 3

    def test_duration_recording(self):
        m = Metrics()
        m.record_duration("test_duration", 100.5)
        m.record_duration("test_duration", 200.5)
        stats = m.get_stats()
        assert stats['histograms']['test_duration']['count'] == 2
        assert stats['histograms']['test_duration']['max'] == 200.5
