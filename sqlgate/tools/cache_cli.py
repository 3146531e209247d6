from __future__ import annotations

import argparse
from dataclasses import replace

from sqlgate.core.cache import configure_cache, flush_namespace, get_client
from sqlgate.core.config import load_cache_settings
from sqlgate.core.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)


def clear_results(namespace: str | None = None) -> int:
    settings = load_cache_settings()
    if namespace:
        settings = replace(settings, namespace=namespace)
    configure_cache(settings)
    if not get_client():
        logger.info("Redis cache is not configured or unavailable.")
        return 0
    removed = flush_namespace()
    logger.info("Removed %d cached entries from namespace %s.", removed, settings.namespace)
    return removed


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Maintenance utilities for the query result cache.")
    parser.add_argument("--flush", action="store_true", help="Delete every cached result and column-type entry.")
    parser.add_argument("--namespace", help="Cache namespace to flush (defaults to CACHE_NAMESPACE).")
    args = parser.parse_args(argv)

    if not args.flush:
        parser.print_help()
        return

    clear_results(args.namespace)


if __name__ == "__main__":
    main()
