#!/usr/bin/env python
# coding: utf-8

"""
Command-line entry point for ledger analysis.

    python run_ledger.py --ledger ledger.json
    python run_ledger.py --ledger ledger.json --as-of 2024-12-31 --merge --rebalance
    python run_ledger.py --ledger ledger.json --json
"""

import argparse
import json
import logging
import sys
from typing import Optional, Union

from dotenv import load_dotenv

from core.ledger_analysis import analyze_ledger
from core.result_objects import LedgerAnalysisResult
from ledger_engine._logging import log_errors, log_operation, log_timing
from ledger_engine.ledger_io import LedgerImportError

# Load .env before reading any LEDGER_* overrides
load_dotenv()


@log_errors("high")
@log_operation("run_ledger")
@log_timing(5.0)
def run_ledger(
    ledger_path: str,
    *,
    as_of: Optional[str] = None,
    reporting_currency: Optional[str] = None,
    json_output: bool = False,
    merge: bool = False,
    rebalance: bool = False,
    return_data: bool = False,
) -> Union[None, LedgerAnalysisResult]:
    """
    Replay and value a JSON ledger snapshot.

    CLI mode prints ``LedgerAnalysisResult.to_cli_report()`` (or the JSON API
    envelope with ``json_output``). Data mode returns the result object.
    """
    result = analyze_ledger(ledger_path, as_of=as_of, reporting_currency=reporting_currency)
    if return_data:
        return result
    if json_output:
        print(json.dumps(result.to_api_response(), indent=2, ensure_ascii=False))
    else:
        print(result.to_cli_report(merged=merge, include_rebalance=rebalance))
    return None


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Replay and value a multi-currency investment ledger")
    parser.add_argument("--ledger", type=str, help="Path to ledger JSON snapshot")
    parser.add_argument("--as-of", type=str, default=None, help="Valuation date YYYY-MM-DD (default: today)")
    parser.add_argument("--reporting-currency", type=str, default=None,
                        help="Override reporting currency (default: LEDGER_REPORTING_CURRENCY or TWD)")
    parser.add_argument("--json", action="store_true", help="Print the JSON API response instead of tables")
    parser.add_argument("--merge", action="store_true", help="Merge holdings of the same security across accounts")
    parser.add_argument("--rebalance", action="store_true", help="Include the rebalance plan in the report")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not args.ledger:
        parser.print_help()
        return 1

    try:
        run_ledger(
            args.ledger,
            as_of=args.as_of,
            reporting_currency=args.reporting_currency,
            json_output=args.json,
            merge=args.merge,
            rebalance=args.rebalance,
        )
    except LedgerImportError as e:
        print(f"❌ Invalid ledger: {e}", file=sys.stderr)
        for err in e.errors:
            print(f"   - {err}", file=sys.stderr)
        return 2
    except FileNotFoundError as e:
        print(f"❌ Ledger file not found: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
