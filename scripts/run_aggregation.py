#!/usr/bin/env python3
"""CLI entry point for a one-off metrics aggregation.

Usage:
    # Last 7 days for a brand from the brand store
    PULSE_BRAND_STORE_PATH=data/brands.json python scripts/run_aggregation.py --brand-id acme

    # Explicit accounts with tokens from a JSON file ({"ga4": {"access_token": ...}, ...})
    python scripts/run_aggregation.py --ga4-property-id 123456 --meta-account-id 987 \\
        --tokens tokens.json --from 2024-12-01 --to 2024-12-07
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pulse_core.aggregation.credentials import StaticCredentialResolver
from pulse_core.aggregation.request import resolve_request
from pulse_core.api.services import open_services
from pulse_core.config import Settings
from pulse_core.exceptions import ConfigError


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _load_tokens(path: str) -> dict:
    token_file = Path(path)
    if not token_file.exists():
        raise FileNotFoundError(f"Token file not found: {path}")
    with open(token_file, encoding="utf-8") as handle:
        return json.load(handle)


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Pulse metrics aggregation")
    parser.add_argument("--brand-id", type=str, help="Brand whose stored connections to use")
    parser.add_argument("--ga4-property-id", type=str, help="GA4 property id")
    parser.add_argument("--meta-account-id", type=str, help="Meta ad account id")
    parser.add_argument(
        "--sales-source", type=str, choices=["ga4", "tossdown", "square"], help="Sales source"
    )
    parser.add_argument("--sales-source-id", type=str, help="Account id for the sales source")
    parser.add_argument("--from", dest="date_from", type=str, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--to", dest="date_to", type=str, help="End date (YYYY-MM-DD)")
    parser.add_argument("--status", type=str, help="Campaign status filter")
    parser.add_argument("--objective", type=str, help="Campaign objective filter")
    parser.add_argument(
        "--tokens",
        type=str,
        help="JSON file with tokens per source (used when no brand is given)",
    )
    parser.add_argument(
        "--namespace",
        choices=["overview", "combined"],
        default="overview",
        help="Endpoint category (cache namespace and TTL)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    params = {
        "brand_id": args.brand_id,
        "ga4_property_id": args.ga4_property_id,
        "meta_account_id": args.meta_account_id,
        "sales_source": args.sales_source,
        "sales_source_id": args.sales_source_id,
        "from": args.date_from,
        "to": args.date_to,
        "status": args.status,
        "objective": args.objective,
    }

    settings = Settings.from_env()
    async with open_services(settings) as services:
        try:
            resolved = await resolve_request(
                params,
                services.brand_store,
                sales_source="ga4" if args.namespace == "combined" else None,
            )
            resolver = resolved.resolver or StaticCredentialResolver(
                _load_tokens(args.tokens) if args.tokens else {}
            )
            result = await services.engine(args.namespace).aggregate(resolved.spec, resolver)
        except ConfigError as exc:
            logging.getLogger(__name__).error("Invalid request: %s", exc)
            return 2

    print(result.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
