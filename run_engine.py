#!/usr/bin/env python3
"""
CLI for the territory operator lookup engine.

Usage:
    python run_engine.py "1234 Belt Line Road, Addison, TX 75001"
    python run_engine.py --zip 75001
    python run_engine.py --batch addresses.csv --output results.csv
    python run_engine.py --all "1234 Belt Line Road, Addison, TX 75001" --policy majority_vote
"""

import argparse
import csv
import json
import sys
import time

from territory_lookup.config import Config
from territory_lookup.engine import TerritoryEngine
from territory_lookup.errors import ResolutionError
from territory_lookup.logging_config import setup_logging


def single_lookup(engine: TerritoryEngine, address: str, use_cache: bool, resolve_all: bool, policy: str):
    """Resolve a single address and print JSON result."""
    try:
        if resolve_all:
            report = engine.resolve_all(address, policy=policy)
            print(json.dumps(report.to_dict(), indent=2))
        else:
            result = engine.resolve(address, use_cache=use_cache)
            print(json.dumps(result.to_dict(), indent=2))
    except ResolutionError as e:
        print(json.dumps({"error": e.to_dict()}, indent=2))
        sys.exit(2)


def zip_analysis(engine: TerritoryEngine, zip_code: str):
    try:
        analysis = engine.analyze_postal_code(zip_code)
    except ResolutionError as e:
        print(json.dumps({"error": e.to_dict()}, indent=2))
        sys.exit(2)
    print(json.dumps(analysis.to_dict(), indent=2))


def batch_lookup(engine: TerritoryEngine, input_csv: str, output_csv: str, use_cache: bool):
    """Batch resolution from CSV file."""
    addresses = []
    with open(input_csv, "r") as f:
        reader = csv.DictReader(f)
        addr_col = None
        for col in reader.fieldnames or []:
            if col.lower() in ("address", "display", "full_address"):
                addr_col = col
                break
        if not addr_col:
            addr_col = (reader.fieldnames or ["address"])[0]
        for row in reader:
            addr = (row.get(addr_col) or "").strip()
            if addr:
                addresses.append(addr)

    print(f"Loaded {len(addresses)} addresses from {input_csv}")
    results = engine.resolve_bulk(addresses, use_cache=use_cache)

    with open(output_csv, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow([
            "address", "operator", "registry_number", "confidence", "strategy",
            "alternates", "error_code", "processing_time_ms",
        ])
        for addr, r in zip(addresses, results):
            if isinstance(r, ResolutionError):
                writer.writerow([addr, "", "", "", "", "", r.code.value, ""])
                continue
            writer.writerow([
                addr,
                r.operator.name,
                r.operator.registry_number,
                r.confidence.value,
                r.strategy,
                "; ".join(op.name for op in r.alternates),
                "",
                r.processing_time_ms,
            ])

    print(f"Wrote {len(results)} results to {output_csv}")


def main():
    parser = argparse.ArgumentParser(description="Territory Operator Lookup Engine")
    parser.add_argument("address", nargs="?", help="One-line address to resolve")
    parser.add_argument("--zip", help="Analyze a ZIP code only")
    parser.add_argument("--batch", help="Input CSV file for batch processing")
    parser.add_argument("--output", default="results.csv", help="Output CSV for batch mode")
    parser.add_argument("--all", action="store_true", help="Run every strategy and resolve conflicts")
    parser.add_argument("--policy", default="highest_confidence",
                        choices=["highest_confidence", "majority_vote", "latest_data"])
    parser.add_argument("--no-cache", action="store_true", help="Bypass cache reads")
    parser.add_argument("--validate-config", action="store_true", help="Check static configuration and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not (args.address or args.batch or args.zip or args.validate_config):
        parser.print_help()
        sys.exit(1)

    t0 = time.time()
    engine = TerritoryEngine(Config.from_env())
    print(f"Engine ready in {time.time() - t0:.2f}s", file=sys.stderr)

    try:
        if args.validate_config:
            print(json.dumps(engine.validate_configuration(), indent=2))
        elif args.batch:
            batch_lookup(engine, args.batch, args.output, not args.no_cache)
        elif args.zip:
            zip_analysis(engine, args.zip)
        else:
            single_lookup(engine, args.address, not args.no_cache, args.all, args.policy)
    finally:
        engine.close()


if __name__ == "__main__":
    main()
