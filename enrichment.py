"""
AI enrichment: translation, summary and sentiment from a hosted chat model.

Every public call returns a result dict and never raises. Provider failures
become ``{'success': False, 'error': ...}``; a missing credential degrades to
pass-through or default values with ``success`` still True.
"""
import re
import json
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, List, Optional

import requests
from requests.exceptions import Timeout, RequestException

import config
from errors import NewsFeedError, ProviderAuthError, UpstreamTimeout, UpstreamError, ParseError
from observability import Metrics

logger = logging.getLogger('newsfeed.enrichment')

LANGUAGE_NAMES = {
    'ko': 'Korean',
    'en': 'English',
    'ja': 'Japanese',
    'zh': 'Chinese',
    'es': 'Spanish',
    'fr': 'French',
}

SENTIMENTS = ('positive', 'negative', 'neutral')
DEFAULT_TONE = 'objective'
NOT_CONFIGURED = 'API key not configured'

FEATURES = ('translate', 'summarize', 'sentiment')


# =============================================================================
# PROVIDER CLIENT
# =============================================================================

class LLMClient:
    """Minimal chat-completions client over requests."""

    def __init__(self, api_key: Optional[str], base_url: str = config.OPENAI_BASE_URL,
                 model: str = config.OPENAI_MODEL, timeout: float = config.OPENAI_TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def complete(self, messages: List[Dict], max_tokens: int = 1000, temperature: float = 0.3) -> str:
        if not self.api_key:
            raise ProviderAuthError(NOT_CONFIGURED)

        try:
            response = self.session.post(
                f"{self.base_url}/chat/completions",
                json={
                    'model': self.model,
                    'messages': messages,
                    'max_tokens': max_tokens,
                    'temperature': temperature,
                },
                headers={
                    'Authorization': f"Bearer {self.api_key}",
                    'Content-Type': 'application/json',
                },
                timeout=self.timeout,
            )
        except Timeout:
            raise UpstreamTimeout(f"AI provider timed out after {self.timeout:.0f}s")
        except RequestException as e:
            raise UpstreamError(f"AI provider request failed: {e}")

        if response.status_code in (401, 403):
            raise ProviderAuthError(f"AI provider rejected credential (HTTP {response.status_code})")
        if response.status_code >= 400:
            raise UpstreamError(f"AI provider returned HTTP {response.status_code}")

        try:
            return response.json()['choices'][0]['message']['content'] or ''
        except (ValueError, KeyError, IndexError, TypeError):
            raise ParseError("AI provider response has no message content")


def extract_json(text: str) -> Optional[Dict]:
    """Best-effort: pull the first {...} block out of a model reply."""
    if not text:
        return None
    candidate = re.sub(r'^```(?:json)?\s*|\s*```$', '', text.strip())
    match = re.search(r'\{.*\}', candidate, flags=re.DOTALL)
    if match:
        candidate = match.group(0)
    candidate = re.sub(r',\s*([}\]])', r'\1', candidate)
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def generate_summary(content: str, max_length: int = 300) -> str:
    """Extractive summary: leading sentences up to max_length characters."""
    if not content:
        return ''

    content = re.sub(r'\s+', ' ', content).strip()
    sentences = re.split(r'(?<=[.!?。])\s+', content)

    summary_parts = []
    current_length = 0

    for sentence in sentences:
        sentence = sentence.strip()
        if not sentence:
            continue

        if current_length + len(sentence) + 1 <= max_length:
            summary_parts.append(sentence)
            current_length += len(sentence) + 1
        else:
            remaining = max_length - current_length
            if not summary_parts or remaining > 50:
                truncated = sentence[:max(remaining, 20) - 3].rsplit(' ', 1)[0] + '...'
                summary_parts.append(truncated)
            break

    return ' '.join(summary_parts)


def _as_confidence(value) -> float:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return 0.5


def _as_string_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


# =============================================================================
# ENRICHMENT SERVICE
# =============================================================================

class EnrichmentService:

    def __init__(self, llm: Optional[LLMClient] = None,
                 translate_to: str = config.TRANSLATE_TO,
                 features: Iterable[str] = config.ENRICH_FEATURES,
                 max_articles: int = config.ENRICH_MAX_ARTICLES,
                 workers: int = config.ENRICH_WORKERS,
                 metrics: Optional[Metrics] = None):
        self.llm = llm
        self.translate_to = translate_to
        self.features = [f for f in features if f in FEATURES]
        self.max_articles = max_articles
        self.metrics = metrics or Metrics()
        self.executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix='enrich')

    @property
    def configured(self) -> bool:
        return bool(self.llm and self.llm.api_key)

    def _call(self, feature: str, messages: List[Dict], max_tokens: int) -> str:
        start_time = time.time()
        try:
            return self.llm.complete(messages, max_tokens=max_tokens)
        except NewsFeedError as e:
            self.metrics.increment(f'ai_{feature}_{e.error_type}')
            logger.warning("AI %s failed: %s", feature, e, extra={'error_type': e.error_type})
            raise
        finally:
            self.metrics.record_duration(f'ai_{feature}_duration_ms', (time.time() - start_time) * 1000)

    def translate(self, title: str, description: str, target_language: Optional[str] = None) -> Dict:
        target_language = target_language or self.translate_to
        if not self.configured:
            return {
                'success': True,
                'translatedTitle': title,
                'translatedDescription': description,
                'targetLanguage': target_language,
                'message': NOT_CONFIGURED,
            }

        language = LANGUAGE_NAMES.get(target_language, target_language)
        messages = [
            {'role': 'system',
             'content': f"You are a professional news translator. Translate news headlines and "
                        f"bodies into natural {language}, keeping the tone and nuance of the original."},
            {'role': 'user',
             'content': f"Translate this article into {language}.\n\n"
                        f"Title: {title}\n\nBody: {description}\n\n"
                        'Reply with JSON only: {"translatedTitle": "...", "translatedDescription": "..."}'},
        ]
        try:
            reply = self._call('translate', messages, 1500)
        except NewsFeedError as e:
            return {'success': False, 'error': str(e)}

        parsed = extract_json(reply)
        if parsed is None:
            return {
                'success': True,
                'translatedTitle': reply.split('\n')[0].strip() or title,
                'translatedDescription': reply,
                'targetLanguage': target_language,
            }
        return {
            'success': True,
            'translatedTitle': parsed.get('translatedTitle') or title,
            'translatedDescription': parsed.get('translatedDescription') or description,
            'targetLanguage': target_language,
        }

    def summarize(self, title: str, description: str) -> Dict:
        if not self.configured:
            return {
                'success': True,
                'summary': generate_summary(description) or title,
                'keyPoints': [],
                'message': NOT_CONFIGURED,
            }

        messages = [
            {'role': 'system',
             'content': "You summarize news articles. Keep every important fact and stay neutral."},
            {'role': 'user',
             'content': f"Summarize this article in 3-4 sentences.\n\n"
                        f"Title: {title}\n\nBody: {description}\n\n"
                        'Reply with JSON only: {"summary": "...", "keyPoints": ["...", "...", "..."]}'},
        ]
        try:
            reply = self._call('summarize', messages, 800)
        except NewsFeedError as e:
            return {'success': False, 'error': str(e)}

        parsed = extract_json(reply)
        if parsed is None:
            return {'success': True, 'summary': reply.strip(), 'keyPoints': []}
        return {
            'success': True,
            'summary': parsed.get('summary') or reply.strip(),
            'keyPoints': _as_string_list(parsed.get('keyPoints')),
        }

    def analyze_sentiment(self, title: str, description: str) -> Dict:
        if not self.configured:
            return {
                'success': True,
                'sentiment': 'neutral',
                'confidence': 0.5,
                'emotions': [],
                'tone': DEFAULT_TONE,
                'message': NOT_CONFIGURED,
            }

        messages = [
            {'role': 'system',
             'content': "You analyze the overall sentiment and tone of news articles."},
            {'role': 'user',
             'content': f"Analyze the sentiment of this article.\n\n"
                        f"Title: {title}\n\nBody: {description}\n\n"
                        'Reply with JSON only: {"sentiment": "positive|negative|neutral", '
                        '"confidence": 0.85, "emotions": ["..."], "tone": "objective|subjective|critical|positive"}'},
        ]
        try:
            reply = self._call('sentiment', messages, 500)
        except NewsFeedError as e:
            return {'success': False, 'error': str(e)}

        parsed = extract_json(reply)
        if parsed is None:
            return {
                'success': True,
                'sentiment': 'neutral',
                'confidence': 0.5,
                'emotions': [],
                'tone': DEFAULT_TONE,
                'analysis': reply.strip(),
            }

        sentiment = str(parsed.get('sentiment', '')).lower().strip()
        return {
            'success': True,
            'sentiment': sentiment if sentiment in SENTIMENTS else 'neutral',
            'confidence': _as_confidence(parsed.get('confidence', 0.5)),
            'emotions': _as_string_list(parsed.get('emotions')),
            'tone': str(parsed.get('tone') or DEFAULT_TONE),
        }

    def enrich_article(self, article: Dict, features: Optional[Iterable[str]] = None) -> Dict:
        """Copy of the article with the enrichment fields that succeeded."""
        features = self.features if features is None else list(features)
        enriched = dict(article)
        title, description = article.get('title', ''), article.get('description', '')

        if 'translate' in features:
            result = self.translate(title, description)
            if result['success']:
                enriched['translatedTitle'] = result['translatedTitle']
                enriched['translatedDescription'] = result['translatedDescription']

        if 'summarize' in features:
            result = self.summarize(title, description)
            if result['success']:
                enriched['summary'] = result['summary']
                enriched['keyPoints'] = result['keyPoints']

        if 'sentiment' in features:
            result = self.analyze_sentiment(title, description)
            if result['success']:
                enriched['sentiment'] = result['sentiment']
                enriched['sentimentConfidence'] = result['confidence']
                enriched['tone'] = result['tone']

        return enriched

    def enrich_articles(self, articles: List[Dict], timeout: float = config.ENRICH_TIMEOUT_SECONDS) -> List[Dict]:
        """
        Enrich the first max_articles articles, waiting at most ``timeout``.

        Articles whose enrichment did not finish in time are returned as-is.
        Does nothing without a provider credential.
        """
        if not self.configured or not self.features or not articles:
            return list(articles)

        head = articles[:self.max_articles]
        futures = [self.executor.submit(self.enrich_article, article) for article in head]
        done, not_done = wait(futures, timeout=timeout)

        results = []
        for article, future in zip(head, futures):
            if future in done and future.exception() is None:
                results.append(future.result())
            else:
                future.cancel()
                results.append(article)

        if not_done:
            logger.warning("Enrichment timed out for %d of %d articles", len(not_done), len(head),
                           extra={'error_type': 'timeout'})
        self.metrics.increment('ai_articles_enriched', len(head) - len(not_done))
        return results + list(articles[self.max_articles:])

    def process_articles(self, articles: List[Dict], action: str = 'both') -> List[Dict]:
        """Batch translate and/or summarize articles sent by the front end."""
        def process(article):
            title = article.get('title', '')
            body = article.get('description') or article.get('content') or ''
            out = {'id': article.get('id')}
            if action in ('translate', 'both'):
                result = self.translate(title, body)
                if result['success']:
                    out['translatedTitle'] = result['translatedTitle']
                    out['translatedContent'] = result['translatedDescription']
                else:
                    out['translateError'] = result['error']
            if action in ('summarize', 'both'):
                result = self.summarize(title, body)
                if result['success']:
                    out['summary'] = result['summary']
                    out['keyPoints'] = result['keyPoints']
                else:
                    out['summarizeError'] = result['error']
            return out

        return list(self.executor.map(process, articles))

    def health_check(self) -> Dict:
        return {
            'status': 'healthy' if self.configured else 'degraded',
            'model': self.llm.model if self.llm else None,
            'features': self.features,
        }

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)


# =============================================================================
# BACKGROUND WORKER
# =============================================================================

class EnrichmentWorker:
    """
    Bounded fire-and-forget job runner.

    At most ``queue_size`` jobs may be pending; further submissions are
    dropped. Job errors are logged and never propagate.
    """

    def __init__(self, workers: int = 1, queue_size: int = config.ENRICH_QUEUE_SIZE,
                 metrics: Optional[Metrics] = None):
        self.executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix='enrich-bg')
        self._slots = threading.BoundedSemaphore(max(1, queue_size))
        self.metrics = metrics or Metrics()

    def submit(self, job: Callable, *args, name: str = 'job') -> bool:
        if not self._slots.acquire(blocking=False):
            self.metrics.increment('background_jobs_dropped')
            logger.warning("Background queue full, dropping %s", name)
            return False

        def run():
            try:
                job(*args)
                self.metrics.increment('background_jobs_completed')
            except Exception:
                self.metrics.increment('background_jobs_failed')
                logger.exception("Background job %s failed", name)
            finally:
                self._slots.release()

        try:
            self.executor.submit(run)
        except RuntimeError:
            # executor already shut down
            self._slots.release()
            return False
        return True

    def shutdown(self, wait: bool = False) -> None:
        self.executor.shutdown(wait=wait, cancel_futures=not wait)
