#!/usr/bin/env python3

"""
CareerBuilder Scraper - Main Entry Point
Collects job postings through API -> HTML -> BROWSER phases until the quota is met
"""

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

import yaml

from blocking import BlockingDetector
from browser_fetcher import BrowserFetcher
from config_loader import ConfigLoader, load_config
from dedupe_store import DedupeStore
from errors import FatalConfigError, NoJobsScrapedError
from http_fetcher import HttpFetcher
from models import Phase, PostedWithin, SearchQuery
from normalizer import Normalizer
from orchestrator import PhaseOrchestrator
from output_writer import OutputWriter
from phases import ApiPhase, CrawlPhase
from proxy_manager import ProxyManager, SessionPool
from run_metrics import RunMetrics
from run_state import RunState
from stealth import PageStealth
from throttle import RequestScheduler

EXIT_OK = 0
EXIT_NO_JOBS = 1
EXIT_FATAL = 2


def setup_logging(config: ConfigLoader) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, config.get_log_level(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info("Logging initialized: %s", log_file)


def display_config(config: ConfigLoader, query: SearchQuery) -> None:
    """Display loaded configuration"""
    logger = logging.getLogger(__name__)

    print("\n" + "="*60)
    print("🏗️  CAREERBUILDER SCRAPER - Configuration Loaded")
    print("="*60)

    print("\n📋 SEARCH PARAMETERS:")
    print(f"  Search: {query}")
    print(f"  Posted within: {query.posted_within.value}")
    print(f"  Results wanted: {query.results_wanted}")
    print(f"  Max pages per phase: {query.max_pages}")
    print(f"  Cookies: {'provided' if query.cookie_header else 'none'}")

    print(f"\n⚙️  CRAWL SETTINGS:")
    print(f"  API phase: {'enabled' if config.is_api_enabled() else 'disabled'}")
    print(f"  HTTP concurrency: {config.get_http_concurrency()}")
    print(f"  Delay range: {config.get_min_delay()}s - {config.get_max_delay()}s")
    print(f"  Max requests/minute: {config.get_max_requests_per_minute()}")

    print(f"\n🌐 BROWSER:")
    if config.is_browser_enabled():
        print(f"  ✓ Enabled (headless={config.is_headless()}, stealth={config.use_stealth()})")
        print(f"  Page timeout: {config.get_page_timeout()/1000}s")
    else:
        print(f"  ✗ Disabled")

    print(f"\n🛡️  PROXY:")
    if config.is_proxy_enabled():
        settings = config.get_proxy_manager_settings()
        print(f"  ✓ Enabled ({settings.provider}) {settings.server}")
    else:
        print(f"  ✗ Disabled")

    print(f"\n💾 OUTPUT:")
    print(f"  JSONL: {config.get_output_path('jsonl')}")
    if config.is_markdown_enabled():
        print(f"  Markdown: {config.get_output_path('markdown')}")

    print("\n" + "="*60 + "\n")

    logger.info("Config validated: %s", query)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CareerBuilder job scraper")
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    parser.add_argument("--keyword", help="Search keyword (overrides search.keyword)")
    parser.add_argument("--location", help="Search location (overrides search.location)")
    parser.add_argument(
        "--posted-within",
        choices=[p.value for p in PostedWithin],
        help="Only jobs posted within this window",
    )
    parser.add_argument("--results-wanted", type=int, help="Stop after this many jobs")
    parser.add_argument("--max-pages", type=int, help="Listing page budget per phase")
    parser.add_argument("--start-url", help="CareerBuilder search URL to crawl instead of keyword/location")
    parser.add_argument(
        "--headless",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run the browser phase headless",
    )
    return parser.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map CLI flags onto dotted config keys; unset flags are skipped."""
    return {
        "search.keyword": args.keyword,
        "search.location": args.location,
        "search.posted_within": args.posted_within,
        "search.results_wanted": args.results_wanted,
        "search.max_pages": args.max_pages,
        "search.start_url": args.start_url,
        "browser.headless": args.headless,
    }


def run(config: ConfigLoader) -> int:
    """Wire the components, run the phases and write outputs"""
    logger = logging.getLogger(__name__)

    query = config.build_search_query()
    display_config(config, query)

    metrics = RunMetrics(site="careerbuilder")
    scheduler = RequestScheduler(
        min_delay=config.get_min_delay(),
        max_delay=config.get_max_delay(),
        max_requests_per_minute=config.get_max_requests_per_minute(),
    )
    proxy_manager = ProxyManager(config.get_proxy_manager_settings())
    pool = SessionPool(
        proxy_manager,
        pool_size=config.get_session_pool_size(),
        max_usage_count=config.get_session_max_usage(),
        max_error_score=config.get_session_max_error_score(),
        cookie_header=query.cookie_header,
    )
    dedupe = DedupeStore(config.get_dedupe_path() if config.is_dedupe_enabled() else None)
    writer = OutputWriter.from_config(config)
    state = RunState(query.results_wanted, query.max_pages, dedupe, writer, metrics)
    detector = BlockingDetector(config.get_min_body_bytes())
    normalizer = Normalizer()
    listing_url = config.get_listing_url(query)

    http = HttpFetcher(scheduler, proxy_manager, timeout=config.get_request_timeout(), metrics=metrics)
    runners: Dict[Phase, Any] = {}
    if config.is_api_enabled():
        runners[Phase.API] = ApiPhase(
            http, pool, detector, normalizer, query,
            templates=config.get_api_templates(),
            page_size=config.get_api_page_size(),
            max_consecutive_failures=config.get_max_consecutive_failures(),
            metrics=metrics,
        )
    runners[Phase.HTML] = CrawlPhase(
        Phase.HTML, http, pool, detector, normalizer, query, listing_url,
        concurrency=config.get_http_concurrency(),
        max_item_attempts=config.get_max_item_attempts(),
        max_consecutive_failures=config.get_max_consecutive_failures(),
        metrics=metrics,
    )

    browser: Optional[BrowserFetcher] = None
    if config.is_browser_enabled():
        browser = BrowserFetcher(
            scheduler,
            proxy_manager,
            stealth=PageStealth(use_stealth=config.use_stealth()),
            headless=config.is_headless(),
            navigation_timeout_ms=config.get_navigation_timeout(),
            page_timeout_ms=config.get_page_timeout(),
            channel=config.get_browser_channel(),
            metrics=metrics,
        )
        # the sync Playwright API is single-threaded
        runners[Phase.BROWSER] = CrawlPhase(
            Phase.BROWSER, browser, pool, detector, normalizer, query, listing_url,
            concurrency=1,
            max_item_attempts=config.get_max_item_attempts(),
            max_consecutive_failures=config.get_max_consecutive_failures(),
            metrics=metrics,
        )

    orchestrator = PhaseOrchestrator(runners, metrics)
    try:
        summary = orchestrator.run(state)
    finally:
        if browser is not None:
            browser.stop()
        metrics.finish()

    phases_run = [phase.value for phase in summary.phases_run]
    metrics.set_gauge("jobs_scraped", summary.jobs_scraped)
    metrics.set_gauge("sessions", pool.stats())
    metrics_path = metrics.write_json(
        template=config.get_metrics_template(),
        extra={"query": str(query), "phases": phases_run},
    )
    markdown_path = writer.write_markdown(query, phases_run)

    # Summary
    print("\n" + "="*60)
    print("✅ SCRAPE COMPLETE" if summary.jobs_scraped else "⚠️  SCRAPE FINISHED WITHOUT JOBS")
    print("="*60)
    print(f"\n📊 Results: {summary.jobs_scraped}/{query.results_wanted} jobs")
    print(f"🔁 Phases: {' -> '.join(phases_run) or 'none'}")
    print(f"🧹 Duplicates skipped: {metrics.get('duplicates')}")
    print(f"🚫 Blocked responses: {metrics.get('blocked')}")
    print(f"📁 Files:")
    print(f"   JSONL: {writer.jsonl_path}")
    if markdown_path:
        print(f"   Markdown: {markdown_path}")
    print(f"   Metrics: {metrics_path}")
    print("\n" + "="*60 + "\n")

    logger.info("Scrape complete: %s jobs saved", summary.jobs_scraped)
    if summary.jobs_scraped == 0:
        last = summary.last_outcome
        raise NoJobsScrapedError(str(last) if last else "")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function"""
    print("\n🚀 Starting CareerBuilder Scraper...")
    args = parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config, overrides=cli_overrides(args))
    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        print("Make sure config/settings.yaml exists!")
        return EXIT_FATAL
    except (FatalConfigError, yaml.YAMLError) as e:
        print(f"❌ Error loading config: {e}")
        return EXIT_FATAL

    # Setup logging
    setup_logging(config)
    logger = logging.getLogger(__name__)

    try:
        return run(config)
    except FatalConfigError as e:
        logger.error("Fatal configuration error: %s", e)
        print(f"❌ {e}")
        return EXIT_FATAL
    except NoJobsScrapedError as e:
        logger.warning("No jobs scraped")
        print(f"⚠️  {e}")
        return EXIT_NO_JOBS


if __name__ == "__main__":
    sys.exit(main())
