"""
Command-line entry point

Analyze a holder snapshot:
  holder-risk --config config/config.yml --snapshot data/holders.json

Classify individual addresses:
  holder-risk --config config/config.yml --address 0x3f5c... --address 0x8894...
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from holder_risk.core.config import ConfigurationManager
from holder_risk.core.exceptions import DataUnavailable
from holder_risk.core.logger import get_logger, setup_logging
from holder_risk.core.metrics import get_metrics
from holder_risk.services.holder_analysis import HolderRiskAnalyzer

logger = get_logger(__name__)


def load_snapshot(path: str) -> List[Dict[str, Any]]:
    """
    Read a holder snapshot: a JSON list, or an object with a "holders" list

    Raises:
        DataUnavailable: If the file cannot be read or has no holder list
    """
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DataUnavailable(f"Cannot read holder snapshot {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("holders")
    if not isinstance(data, list):
        raise DataUnavailable(f"Holder snapshot {path} has no holder list")
    return data


def write_output(payload: Dict[str, Any], output: Optional[str]) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text)
        logger.info("report_written", path=output)
    else:
        print(text)


async def run_analysis(args) -> Dict[str, Any]:
    config = ConfigurationManager(args.config).load_config()
    setup_logging(
        level=args.log_level or config.log_config.level,
        format=config.log_config.format,
        output_file=config.log_config.output_file
    )

    analyzer = HolderRiskAnalyzer.from_config(config)
    try:
        if args.address:
            results = await analyzer.classifier.classify_many(args.address)
            payload = {
                "summary": analyzer.classifier.summarize(results),
                "results": [r.to_dict() for r in results],
            }
        else:
            report = await analyzer.analyze(
                load_snapshot(args.snapshot),
                total_supply_raw=args.total_supply,
                min_percentage=args.min_percentage,
                top_n=args.top_n,
                exclude_exchanges=args.exclude_exchanges
            )
            payload = report.to_dict()
    finally:
        await analyzer.close()

    payload["metrics"] = get_metrics().export_metrics()
    return payload


async def main(argv: Optional[List[str]] = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(
        description="Token holder classification and concentration risk",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Snapshot rows are {"address": "0x...", "balance": "<raw integer>"}.
API keys come from the config file, usually via ${DUNE_API_KEY} and
${BSCSCAN_API_KEY}.
        """
    )
    parser.add_argument(
        "--config",
        default="config/config.yml",
        help="Path to config.yml"
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--snapshot", help="Path to holder snapshot JSON")
    source.add_argument(
        "--address",
        action="append",
        help="Address to classify (repeatable)"
    )
    parser.add_argument(
        "--total-supply",
        default=None,
        help="Declared total supply in raw units (defaults to config, then snapshot sum)"
    )
    parser.add_argument("--min-percentage", type=float, default=0.0)
    parser.add_argument("--top-n", type=int, default=0)
    parser.add_argument(
        "--exclude-exchanges",
        action="store_true",
        default=None,
        help="Leave exchange wallets out of the concentration metrics"
    )
    parser.add_argument("--output", help="Write the JSON report here instead of stdout")
    parser.add_argument("--log-level", default=None)

    args = parser.parse_args(argv)

    payload = await run_analysis(args)
    write_output(payload, args.output)


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except (FileNotFoundError, ValueError, DataUnavailable) as e:
        logger.error("holder_risk_failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    run()
