"""
EmarkNews Client - Fetch a Section Feed
Runs the feed pipeline in-process and prints the envelope, without starting
the HTTP server.

Usage:
    python news_client.py                    # world section
    python news_client.py --section tech     # another section
    python news_client.py --refresh --json   # bypass cache, raw JSON
"""
import argparse
import json
import logging
import sys

import config
from errors import InvalidSection
from http_server import build_services, shutdown_services


def print_article(article, index):
    """Pretty print a single article."""
    print(f"\n{'='*80}")
    print(f"Article #{index}")
    print(f"{'='*80}")
    print(f"Title:        {article.get('title', 'N/A')}")
    print(f"URL:          {article.get('url', 'N/A')}")
    print(f"Published:    {article.get('publishedAt', 'N/A')}")
    print(f"Source:       {article.get('sourceName', 'N/A')}")
    print(f"Rating:       {article.get('rating', 'N/A')}")

    description = article.get('description', '')
    if description:
        # Truncate description to 150 characters for readability
        preview = description[:150] + "..." if len(description) > 150 else description
        print(f"Description:  {preview}")

    translated = article.get('translatedTitle')
    if translated:
        print(f"Translated:   {translated}")

    tags = article.get('tags', [])
    if tags:
        print(f"Tags:         {', '.join(tags)}")


def main(argv=None):
    """Main entry point for the feed client."""
    parser = argparse.ArgumentParser(description="EmarkNews feed client")
    parser.add_argument("--section", default=config.DEFAULT_SECTION, help="Section key")
    parser.add_argument("--refresh", action="store_true", help="Ignore the cached envelope")
    parser.add_argument("--json", action="store_true", help="Print the raw envelope as JSON")
    args = parser.parse_args(argv)

    # Keep output clean
    logging.getLogger('newsfeed').setLevel(logging.WARNING)

    services = build_services(start_cache=False)
    try:
        envelope = services.feed.get_news_data(args.section, enrich_mode='off',
                                               force_refresh=args.refresh)
    except InvalidSection:
        print(f"Error: unknown section '{args.section}'. "
              f"Available: {', '.join(services.feed.sections())}")
        return 1
    finally:
        shutdown_services(services)

    if args.json:
        print(json.dumps(envelope, ensure_ascii=False, indent=2))
        return 0

    print("\n" + "="*80)
    print(f" EmarkNews - {envelope['section']} ".center(80, "="))
    print("="*80 + "\n")
    print(f"Source:   {envelope['source']}")
    print(f"Fetched:  {envelope['timestamp']}")
    print(f"Articles: {envelope['total']}")
    if envelope.get('message'):
        print(f"Note:     {envelope['message']}")

    for i, article in enumerate(envelope['articles'], 1):
        print_article(article, i)
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
