"""
Off-chain fetcher - DeFiLlama TVL used by the cross-reference check.

A missing or failed lookup returns 0, which the risk engine scores as
missing reference data instead of aborting the cycle.
"""

import logging
from typing import Dict

import requests

from sentinel.config.settings import DEFILLAMA_BASE_URL, HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


def fetch_reference_tvl(slug: str, session: requests.Session = None,
                        base_url: str = DEFILLAMA_BASE_URL, timeout: int = HTTP_TIMEOUT_SECONDS) -> int:
    """
    Fetch current TVL in whole USD for a DeFiLlama protocol slug.

    Args:
        slug: DeFiLlama protocol slug (e.g. "aave-v3")
        session: Optional requests session to reuse connections

    Returns:
        TVL in USD (integer), 0 if unavailable
    """
    if not slug:
        return 0

    url = f"{base_url.rstrip('/')}/tvl/{slug}"
    try:
        response = (session or requests).get(url, timeout=timeout)
        response.raise_for_status()
        value = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("DeFiLlama TVL unavailable for %s: %s", slug, e)
        return 0

    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        logger.warning("DeFiLlama returned no usable TVL for %s: %r", slug, value)
        return 0
    return int(value)


def fetch_reference_tvls(slugs_by_protocol: Dict[str, str], session: requests.Session = None) -> Dict[str, int]:
    """
    Fetch TVL once per distinct slug and map it back onto protocol names.

    Args:
        slugs_by_protocol: {protocol name: slug}

    Returns:
        {protocol name: TVL}
    """
    session = session or requests.Session()
    by_slug: Dict[str, int] = {}
    for slug in dict.fromkeys(slugs_by_protocol.values()):
        by_slug[slug] = fetch_reference_tvl(slug, session=session)
        logger.info("Reference TVL %s: $%s", slug, f"{by_slug[slug]:,}")

    return {name: by_slug.get(slug, 0) for name, slug in slugs_by_protocol.items()}
