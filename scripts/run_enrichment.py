#!/usr/bin/env python3
"""Deduplicate catalog search results and enrich a paper from the command line."""

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from biblink.core.identifiers import IdentifierType, Identifiers
from biblink.core.settings import Settings, load_settings
from biblink.enrichment.errors import EnrichmentError
from biblink.enrichment.service import EnrichmentService
from biblink.enrichment.sources import default_plugins
from biblink.search.dedup import deduplicate
from biblink.search.models import SearchResult

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("enrichment")

DEFAULT_SETTINGS = PROJECT_ROOT / "config" / "settings.yaml"


# ── Stages ───────────────────────────────────────────────────────────


def run_dedup(results_path: str, settings: Settings) -> list[dict]:
    """Group the results in a JSON array file and return one dict per work."""
    t = time.time()
    with open(results_path) as f:
        raw = json.load(f)
    results = [SearchResult.model_validate(item) for item in raw]
    logger.info("Loaded %d search results from %s", len(results), results_path)

    groups = deduplicate(results, config=settings.deduplication)
    logger.info("Dedup complete in %.1fs", time.time() - t)

    return [
        {
            "primary": g.primary.model_dump(mode="json"),
            "sources": g.source_ids,
            "identifiers": {k.value: v for k, v in g.identifiers.items()},
        }
        for g in groups
    ]


async def run_enrich(identifiers: Identifiers, settings: Settings, retry: bool) -> dict:
    """Enrich one paper with every built-in source."""
    t = time.time()
    plugins = default_plugins(settings.enrichment)
    service = EnrichmentService(plugins, settings.enrichment)

    if retry:
        result = await service.enrich_with_retry(identifiers)
    else:
        result = await service.enrich_now(identifiers)

    logger.info("Enrichment complete in %.1fs", time.time() - t)
    for source_id, error in result.failures.items():
        logger.warning("  %s: %s", source_id, error)

    return {
        "data": result.data.model_dump(mode="json", exclude_none=True),
        "identifiers": {k.value: v for k, v in result.resolved_identifiers.items()},
        "failures": {k: str(v) for k, v in result.failures.items()},
    }


# ── CLI ──────────────────────────────────────────────────────────────


def main():
    parser = argparse.ArgumentParser(description="Deduplicate and enrich bibliographic records")
    parser.add_argument(
        "--settings",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml if present)",
    )
    parser.add_argument("--results", default=None, help="JSON file of search results to deduplicate")
    parser.add_argument("--doi", default=None, help="DOI of the paper to enrich")
    parser.add_argument("--arxiv", default=None, help="arXiv ID of the paper to enrich")
    parser.add_argument("--bibcode", default=None, help="ADS bibcode of the paper to enrich")
    parser.add_argument("--pmid", default=None, help="PubMed ID of the paper to enrich")
    parser.add_argument(
        "--retry",
        action="store_true",
        help="Retry with backoff while failures are transient",
    )
    args = parser.parse_args()

    settings_path = args.settings or (DEFAULT_SETTINGS if DEFAULT_SETTINGS.exists() else None)
    settings = load_settings(settings_path) if settings_path else Settings()
    logger.info("Settings hash: %s", settings.settings_hash()[:12])

    identifiers: Identifiers = {}
    for kind, value in (
        (IdentifierType.DOI, args.doi),
        (IdentifierType.ARXIV, args.arxiv),
        (IdentifierType.BIBCODE, args.bibcode),
        (IdentifierType.PMID, args.pmid),
    ):
        if value:
            identifiers[kind] = value

    if not args.results and not identifiers:
        parser.error("nothing to do: pass --results and/or an identifier")

    output = {}
    if args.results:
        output["deduplicated"] = run_dedup(args.results, settings)

    if identifiers:
        try:
            output["enrichment"] = asyncio.run(run_enrich(identifiers, settings, args.retry))
        except EnrichmentError as exc:
            logger.error("Enrichment failed: %s", exc)
            sys.exit(1)

    print(json.dumps(output, indent=2))


if __name__ == "__main__":
    main()
