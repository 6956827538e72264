"""
Unit tests for AI enrichment and the background worker.
Run with: pytest tests/test_enrichment.py -v
"""
import pytest
import json
import time
import threading
from unittest.mock import Mock
import sys
import os

import requests

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from enrichment import (
    LLMClient,
    EnrichmentService,
    EnrichmentWorker,
    extract_json,
    generate_summary,
    NOT_CONFIGURED,
)
from errors import ProviderAuthError, UpstreamTimeout, UpstreamError, ParseError
from observability import Metrics


def chat_response(content, status=200):
    response = Mock()
    response.status_code = status
    response.json.return_value = {"choices": [{"message": {"content": content}}]}
    return response


def make_llm(content=None, status=200, side_effect=None):
    session = Mock()
    if side_effect is not None:
        session.post.side_effect = side_effect
    else:
        session.post.return_value = chat_response(content, status)
    return LLMClient("sk-test", base_url="https://llm.test/v1", model="test-model",
                     timeout=5, session=session)


def service(llm=None, **kwargs):
    return EnrichmentService(llm, translate_to='ko', metrics=Metrics(), **kwargs)


class TestExtractJson:

    def test_plain(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_code_fence_and_prose(self):
        text = 'Sure!\n```json\n{"summary": "x", "keyPoints": ["a",],}\n```'
        assert extract_json(text) == {"summary": "x", "keyPoints": ["a"]}

    def test_not_json(self):
        assert extract_json("no braces here") is None
        assert extract_json("") is None


class TestGenerateSummary:

    def test_short_content_unchanged(self):
        assert generate_summary("One sentence.") == "One sentence."

    def test_respects_max_length(self):
        content = "First sentence here. " * 40
        assert len(generate_summary(content, max_length=100)) <= 100


class TestLLMClient:

    def test_request_shape(self):
        llm = make_llm("hello")
        assert llm.complete([{"role": "user", "content": "hi"}], max_tokens=10) == "hello"

        args, kwargs = llm.session.post.call_args
        assert args[0] == "https://llm.test/v1/chat/completions"
        assert kwargs['headers']['Authorization'] == "Bearer sk-test"
        assert kwargs['json']['model'] == "test-model"
        assert kwargs['json']['max_tokens'] == 10

    def test_no_key(self):
        with pytest.raises(ProviderAuthError):
            LLMClient(None).complete([])

    def test_rejected_key(self):
        with pytest.raises(ProviderAuthError):
            make_llm("x", status=401).complete([])

    def test_server_error(self):
        with pytest.raises(UpstreamError):
            make_llm("x", status=500).complete([])

    def test_timeout(self):
        with pytest.raises(UpstreamTimeout):
            make_llm(side_effect=requests.exceptions.Timeout()).complete([])

    def test_malformed_body(self):
        llm = make_llm("x")
        llm.session.post.return_value.json.return_value = {"unexpected": True}
        with pytest.raises(ParseError):
            llm.complete([])


class TestWithoutCredential:

    def test_translate_passes_through(self):
        result = service().translate("T", "D")
        assert result == {
            'success': True,
            'translatedTitle': 'T',
            'translatedDescription': 'D',
            'targetLanguage': 'ko',
            'message': NOT_CONFIGURED,
        }

    def test_summarize_extractive(self):
        result = service().summarize("T", "Short body.")
        assert result['success'] is True
        assert result['summary'] == "Short body."
        assert result['keyPoints'] == []

    def test_sentiment_defaults(self):
        result = service().analyze_sentiment("T", "D")
        assert result['sentiment'] == 'neutral'
        assert result['confidence'] == 0.5
        assert result['emotions'] == []
        assert result['tone'] == 'objective'

    def test_enrich_articles_is_noop(self):
        articles = [{'title': 'T', 'description': 'D'}]
        assert service().enrich_articles(articles) == articles

    def test_health_degraded(self):
        assert service().health_check()['status'] == 'degraded'


class TestWithCredential:

    def test_translate_json_reply(self):
        reply = json.dumps({"translatedTitle": "제목", "translatedDescription": "본문"})
        result = service(make_llm(reply)).translate("Title", "Body")
        assert result['success'] is True
        assert result['translatedTitle'] == "제목"
        assert result['translatedDescription'] == "본문"

    def test_translate_plain_text_reply(self):
        result = service(make_llm("제목\n본문 내용")).translate("Title", "Body")
        assert result['translatedTitle'] == "제목"
        assert result['translatedDescription'] == "제목\n본문 내용"

    def test_translate_provider_failure(self):
        result = service(make_llm("x", status=500)).translate("Title", "Body")
        assert result['success'] is False
        assert 'error' in result

    def test_summarize_json_reply(self):
        reply = '{"summary": "Short.", "keyPoints": ["one", "two", null]}'
        result = service(make_llm(reply)).summarize("Title", "Body")
        assert result['summary'] == "Short."
        assert result['keyPoints'] == ["one", "two"]

    def test_sentiment_normalized(self):
        reply = '{"sentiment": "POSITIVE", "confidence": 7, "emotions": ["joy"], "tone": "positive"}'
        result = service(make_llm(reply)).analyze_sentiment("Title", "Body")
        assert result['sentiment'] == 'positive'
        assert result['confidence'] == 1.0
        assert result['emotions'] == ['joy']

    def test_sentiment_unknown_label(self):
        reply = '{"sentiment": "ecstatic", "confidence": "n/a"}'
        result = service(make_llm(reply)).analyze_sentiment("Title", "Body")
        assert result['sentiment'] == 'neutral'
        assert result['confidence'] == 0.5

    def test_enrich_article_adds_fields(self):
        reply = json.dumps({"translatedTitle": "제목", "translatedDescription": "본문"})
        enriched = service(make_llm(reply), features=['translate']).enrich_article(
            {'id': '1', 'title': 'Title', 'description': 'Body'})
        assert enriched['translatedTitle'] == "제목"
        assert 'summary' not in enriched

    def test_enrich_articles_timeout_returns_unenriched(self):
        def slow_post(*args, **kwargs):
            time.sleep(1.0)
            return chat_response('{"translatedTitle": "late"}')

        svc = service(make_llm(side_effect=slow_post), features=['translate'], max_articles=2)
        articles = [{'id': str(i), 'title': f'T{i}', 'description': ''} for i in range(3)]

        result = svc.enrich_articles(articles, timeout=0.1)
        svc.shutdown()

        assert result == articles

    def test_process_articles(self):
        reply = '{"translatedTitle": "제목", "translatedDescription": "본문", "summary": "S", "keyPoints": []}'
        processed = service(make_llm(reply)).process_articles(
            [{'id': 'a1', 'title': 'Title', 'description': 'Body'}], action='both')
        assert processed == [{
            'id': 'a1',
            'translatedTitle': '제목',
            'translatedContent': '본문',
            'summary': 'S',
            'keyPoints': [],
        }]

    def test_process_articles_reports_errors(self):
        processed = service(make_llm("x", status=502)).process_articles(
            [{'id': 'a1', 'title': 'Title', 'description': 'Body'}], action='summarize')
        assert processed[0]['id'] == 'a1'
        assert 'summarizeError' in processed[0]
        assert 'translatedTitle' not in processed[0]


class TestEnrichmentWorker:

    def test_runs_job(self):
        worker = EnrichmentWorker(workers=1, queue_size=2, metrics=Metrics())
        done = threading.Event()
        assert worker.submit(done.set, name='ok') is True
        assert done.wait(2)
        worker.shutdown(wait=True)
        assert worker.metrics.get_stats()['counters']['background_jobs_completed'] == 1

    def test_job_error_is_contained(self):
        worker = EnrichmentWorker(workers=1, queue_size=2, metrics=Metrics())

        def explode():
            raise RuntimeError("boom")

        worker.submit(explode, name='bad')
        worker.shutdown(wait=True)
        assert worker.metrics.get_stats()['counters']['background_jobs_failed'] == 1

    def test_drops_when_full(self):
        worker = EnrichmentWorker(workers=1, queue_size=1, metrics=Metrics())
        release = threading.Event()

        assert worker.submit(release.wait, 2, name='blocker') is True
        assert worker.submit(lambda: None, name='extra') is False

        release.set()
        worker.shutdown(wait=True)
        assert worker.metrics.get_stats()['counters']['background_jobs_dropped'] == 1
