"""
ReviewSight Orchestrator CLI
============================

Command-line interface for collection and analysis.

Commands:
    collect     - Run a full collection session against a review file
    analyze     - Sample and analyze a review file (no harvesting)
    extract     - Pattern-based extraction from a raw page text file
    config      - Show the default collection config

Usage:
    python -m src.orchestrator.cli collect --source https://example.com/place/1 --file reviews.json
    python -m src.orchestrator.cli analyze --file reviews.json --fallback
    python -m src.orchestrator.cli extract --file page.txt --language hebrew
    python -m src.orchestrator.cli config
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from ..ai.review_analyzer import BatchedAnalysisEngine
from ..cache.result_store import ResultStore
from ..data.config import get_settings
from ..data.harvester import FileHarvester
from ..notifications.webhook_notifier import WebhookNotifier
from ..reviews.content_extractor import ContentBasedExtractor
from ..reviews.errors import CollectionError
from ..reviews.review_models import reviews_from_dicts
from ..reviews.sampling import SamplingEngine, generate_sampling_report
from ..reviews.verdict import TrustVerdictGenerator
from .collection_orchestrator import CollectionOrchestrator
from .session_models import CollectionConfig
from .logging_config import setup_logging


def _engine(args) -> BatchedAnalysisEngine:
    analysis = get_settings().analysis
    return BatchedAnalysisEngine(
        use_fallback=args.fallback or analysis.use_fallback,
        provider=analysis.provider,
        model=analysis.model,
    )


def _print_verdict(verdict):
    print(f"Verdict: score {verdict['overallScore']}/100  trust {verdict['trustworthiness']}/100  "
          f"red flags {verdict['redFlags']}/100")


def cmd_collect(args):
    """Run a collection session end to end."""
    overrides = {}
    targets = {k: v for k, v in (("recent", args.recent), ("worst", args.worst), ("best", args.best)) if v is not None}
    if targets:
        overrides["targetCounts"] = targets

    async def run():
        orchestrator = CollectionOrchestrator(
            harvester=FileHarvester(args.file, language=args.language),
            analysis_engine=_engine(args),
            notifier=WebhookNotifier(),
            result_store=ResultStore() if args.store else None,
        )
        try:
            session_id = await orchestrator.start_collection(args.source, overrides)
            print(f"Session: {session_id}")
            return await orchestrator.wait_for(session_id)
        finally:
            await orchestrator.close()

    try:
        status = asyncio.run(run())
    except CollectionError as e:
        print(f"ERROR: {e.message}")
        return 1

    if args.json:
        print(json.dumps(status, indent=2, default=str, ensure_ascii=False))
        return 0 if status["status"] == "complete" else 1

    print("=" * 60)
    print(f"COLLECTION {status['status'].upper()}")
    print("=" * 60)
    for phase, result in status["phaseResults"].items():
        print(f"  {phase:<8} {result['collected']}/{result['target']} ({result['stoppedReason']})")

    if status["status"] != "complete":
        print(f"\nERROR ({status['error']['type']}): {status['error']['message']}")
        return 1

    results = status["results"]
    summary = results["summary"]
    print()
    print(f"Collected: {summary['totalCollected']}  Unique: {summary['totalUnique']}  "
          f"Duplicates removed: {summary['duplicatesRemoved']}")
    print(f"Sentiment: {summary['sentimentDistribution']}")
    print(f"Mismatches: {summary['mismatches']}  Suspected fakes: {summary['suspectedFakes']}")
    if "overallScore" in summary:
        _print_verdict(summary)
    print()
    print(results["metadata"]["samplingReport"])
    return 0


def cmd_analyze(args):
    """Sample and analyze a JSON review file."""
    try:
        reviews = reviews_from_dicts(json.loads(Path(args.file).read_text(encoding="utf-8")))
    except (OSError, ValueError, TypeError) as e:
        print(f"ERROR: Cannot load reviews from {args.file}: {e}")
        return 1

    sampled = SamplingEngine().sample(reviews)
    try:
        result = asyncio.run(_engine(args).analyze_screened(sampled.reviews))
    except CollectionError as e:
        print(f"ERROR: {e.message}")
        return 1

    report = TrustVerdictGenerator().generate(sampled.reviews, result, sampled, len(reviews))

    if args.json:
        print(json.dumps({**result.to_dict(), "verdict": report.to_dict()}, indent=2, ensure_ascii=False))
        return 0

    summary = result.get_summary()
    print("=" * 60)
    print(f"ANALYSIS ({'fallback' if result.fallback_only else 'scoring service'})")
    print("=" * 60)
    print(generate_sampling_report(len(reviews), sampled))
    print()
    print(f"Sentiment: {summary['sentimentDistribution']}")
    print(f"Mismatches: {summary['mismatches']}  Suspected fakes: {summary['suspectedFakes']}")
    _print_verdict(report.verdict.to_dict())
    for fake in result.fake_reviews:
        if fake.is_fake:
            print(f"  - {fake.review_id} ({fake.confidence:.2f}): {', '.join(fake.reasons)}")
    return 0


def cmd_extract(args):
    """Run the pattern-based extractor over a page text file."""
    try:
        content = Path(args.file).read_text(encoding="utf-8")
    except OSError as e:
        print(f"ERROR: {e}")
        return 1

    extractor = ContentBasedExtractor()
    result = extractor.extract_by_content(content, args.language)

    if args.json:
        print(json.dumps({
            "method": result.extraction_method,
            "confidence": result.confidence,
            "valid": extractor.validate_content_extraction(result.reviews),
            "reviews": [r.to_dict() for r in result.reviews],
        }, indent=2, ensure_ascii=False))
        return 0

    print(f"Method: {result.extraction_method}")
    print(f"Confidence: {result.confidence * 100:.1f}%")
    print(f"Blocks: {result.debug_info.total_text_blocks}  Candidates: {result.debug_info.review_candidates}  "
          f"Kept: {result.debug_info.successful_extractions}")
    for review in result.reviews:
        print(f"  {'*' * review.rating:<5} {review.author}: {review.text[:60]}")
    return 0 if result.reviews else 1


def cmd_config(args):
    """Show the default collection config."""
    settings = get_settings()
    print(json.dumps({
        "collection": CollectionConfig.from_defaults(settings.collection).to_dict(),
        "analysis": {
            "provider": settings.analysis.provider or "auto",
            "model": settings.analysis.model or "default",
            "useFallback": settings.analysis.use_fallback,
        },
        "sessions": {
            "retentionSeconds": settings.sessions.retention_seconds,
            "reaperInterval": settings.sessions.reaper_interval,
            "allowedSourceDomains": settings.sessions.allowed_source_domains,
        },
    }, indent=2))
    return 0


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="reviewsight",
        description="ReviewSight collection & analysis CLI",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # collect command
    collect_parser = subparsers.add_parser("collect", help="Run a full collection session")
    collect_parser.add_argument("--source", required=True, help="Source URL of the reviewed place")
    collect_parser.add_argument("--file", required=True, help="Review file (.json list or raw page text)")
    collect_parser.add_argument("--language", default="english", help="Page language for text files (default: english)")
    collect_parser.add_argument("--recent", type=int, help="Target for the recent phase")
    collect_parser.add_argument("--worst", type=int, help="Target for the worst phase")
    collect_parser.add_argument("--best", type=int, help="Target for the best phase")
    collect_parser.add_argument("--fallback", action="store_true", help="Deterministic analysis only")
    collect_parser.add_argument("--store", action="store_true", help="Persist results in the result store")
    collect_parser.add_argument("--json", action="store_true", help="Output full status as JSON")

    # analyze command
    analyze_parser = subparsers.add_parser("analyze", help="Sample and analyze a review file")
    analyze_parser.add_argument("--file", required=True, help="JSON list of reviews")
    analyze_parser.add_argument("--fallback", action="store_true", help="Deterministic analysis only")
    analyze_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # extract command
    extract_parser = subparsers.add_parser("extract", help="Extract reviews from raw page text")
    extract_parser.add_argument("--file", required=True, help="Page text file")
    extract_parser.add_argument("--language", default="english", help="english | hebrew | generic")
    extract_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # config command
    subparsers.add_parser("config", help="Show the default collection config")

    args = parser.parse_args(argv)

    log_config = get_settings().logging
    setup_logging(
        level="DEBUG" if args.verbose else log_config.level,
        json_output=log_config.json_logs,
        log_file=log_config.log_file,
    )

    if args.command is None:
        parser.print_help()
        return 1

    # Dispatch to command handler
    commands = {
        "collect": cmd_collect,
        "analyze": cmd_analyze,
        "extract": cmd_extract,
        "config": cmd_config,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
