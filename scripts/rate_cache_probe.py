"""Run one rate cache acquisition cycle and print the resulting status as JSON."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable

from services.rate_cache.config import RateCacheConfig
from services.rate_cache.runtime import RateCacheRuntime
from services.rate_cache.storage import JsonFileSettingsStore
from shared.config import configure_logging
from shared.errors import AppError, ConfigInvalidError
from shared.settings import user_agent
from shared.version import __version__


def _parse_codes(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def build_config(args: argparse.Namespace) -> RateCacheConfig:
    config = RateCacheConfig.from_settings()
    if args.settings_file is not None:
        config = RateCacheConfig.load(JsonFileSettingsStore(args.settings_file), config)

    updates: Dict[str, Any] = {}
    if args.api_key:
        updates["api_key"] = args.api_key
    symbols = _parse_codes(args.symbols)
    if symbols:
        selected = {
            symbol.upper(): config.supported_cryptos[symbol.upper()]
            for symbol in symbols
            if symbol.upper() in config.supported_cryptos
        }
        updates["supported_cryptos"] = selected
    currencies = _parse_codes(args.vs_currencies)
    if currencies:
        updates["crypto_vs_currencies"] = tuple(currencies)
    return config.merged(updates) if updates else config


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Load the rate cache once and report its status")
    parser.add_argument("--api-key", default=None, help="CoinGecko demo API key")
    parser.add_argument(
        "--settings-file",
        type=Path,
        default=None,
        help="JSON settings file with user overrides (api key, thresholds, currencies)",
    )
    parser.add_argument(
        "--symbols",
        default=None,
        help="Comma separated crypto symbols to load (default: every supported symbol)",
    )
    parser.add_argument(
        "--vs-currencies",
        default=None,
        help="Comma separated currencies to price the cryptos in",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default from settings)")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    parser.add_argument("--compact", action="store_true", help="Print compact JSON")
    args = parser.parse_args(list(argv) if argv is not None else None)

    configure_logging(args.log_level, json_format=True if args.json_logs else None)

    try:
        config = build_config(args).ensure_valid()
    except ConfigInvalidError as exc:
        print(json.dumps({"error": str(exc), "validation_errors": exc.errors}), file=sys.stderr)
        return 2

    runtime = RateCacheRuntime(config, user_agent=user_agent)
    cycle: Dict[str, Any]
    try:
        result = runtime.pipeline.run()
        cycle = {
            "phase": result.phase.value,
            "crypto_count": result.crypto_count,
            "fiat_count": result.fiat_count,
            "errors": list(result.errors),
        }
    except AppError as exc:
        report = runtime.journal.describe(exc, phase="manual", api_key=config.api_key)
        cycle = {"phase": runtime.pipeline.phase.value, "error": report.as_dict()}
    finally:
        detailed = runtime.get_detailed_status()
        runtime.shutdown()

    output = {
        "version": __version__,
        "cycle": cycle,
        "status": detailed.as_dict(),
        "config": config.export()["config"],
    }
    print(json.dumps(output, indent=None if args.compact else 2, ensure_ascii=False))
    return 0 if detailed.status.ready else 1


if __name__ == "__main__":
    raise SystemExit(main())
