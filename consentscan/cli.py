import argparse
import asyncio
import base64
import json
import logging
import sys
from pathlib import Path
from urllib.parse import urlparse

from consentscan import crawl, output, utils
from consentscan.classification import RuleClassifier, RuleRiskAssessor
from consentscan.config import DEPTH_TIERS, get_api_key, load_config
from consentscan.errors import ScanError


async def process_url(url, config, offline=False, progress=None):
    """Run one scan with either the oracle or the static ruleset."""
    if offline:
        return await crawl.scan_site(
            url, config, classifier=RuleClassifier(), assessor=RuleRiskAssessor(), progress=progress
        )
    return await crawl.scan_site(url, config, progress=progress)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crawl a site through pre-consent, post-rejection and post-acceptance "
                    "states and report cookies, trackers and storage that ignore consent."
    )
    parser.add_argument("url", help="URL of the site to scan")
    parser.add_argument(
        "--debug", default=False, action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--depth",
        choices=sorted(DEPTH_TIERS),
        default=None,
        help="Page budget tier: lite=10, medium=50, deep=100 (default: lite)",
    )
    parser.add_argument(
        "--max_pages", type=int, default=None, help="Explicit page budget (1-100), overrides --depth"
    )
    parser.add_argument("--config", "-c", default=None, help="YAML file with scan settings")
    parser.add_argument(
        "--headless",
        default=None,
        type=utils.string_to_boolean,
        const=False,
        nargs="?",
        help="Run browser in headless mode (yes/no)",
    )
    parser.add_argument(
        "--no-sitemap", dest="use_sitemap", default=None, action="store_false",
        help="Do not seed the crawl from the site's sitemap",
    )
    parser.add_argument(
        "--offline",
        default=False,
        action="store_true",
        help="Classify with the bundled ruleset instead of the Gemini oracle",
    )
    parser.add_argument(
        "--db_file",
        "-db",
        default="scan_results.db",
        help="Path to the scan results database (use '' to skip)",
    )
    parser.add_argument("--json", default=None, help="Append the report as a JSON line to this file")
    parser.add_argument("--out", default=None, help="Directory to export cookies/trackers/storage CSV files to")
    parser.add_argument("--screenshot", default=None, help="Save the entry page screenshot (JPEG) to this path")
    parser.add_argument(
        "--show_output",
        "-o",
        default=False,
        action="store_true",
        help="Print a text summary of the report in the terminal",
    )
    return parser


def cli(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    url = args.url.strip()
    if "://" not in url:
        url = "https://" + url
    parsed_url = urlparse(url)
    if parsed_url.scheme not in ("http", "https") or not parsed_url.hostname or "." not in parsed_url.hostname:
        parser.error(f"Invalid URL: {args.url}")

    try:
        config = load_config(
            args.config,
            depth=args.depth,
            max_pages=args.max_pages,
            headless=args.headless,
            use_sitemap=args.use_sitemap,
        )
    except (ValueError, FileNotFoundError) as e:
        parser.error(str(e))

    if not args.offline and not get_api_key():
        parser.error("No API key found in GEMINI_API_KEY / GOOGLE_API_KEY / API_KEY. Use --offline to scan without the oracle.")

    db_file = args.db_file or None
    if db_file and not db_file.endswith(".db"):
        db_file = db_file + ".db"

    try:
        report = asyncio.run(process_url(url, config, offline=args.offline))
    except ScanError as e:
        logging.error(f"Scan failed: {e}")
        sys.exit(1)

    output.store_scan_report(report, results_db_file=db_file, file=args.json)
    if args.out:
        output.export_csvs(report, args.out)
    if args.screenshot and report.screenshot_base64:
        Path(args.screenshot).parent.mkdir(parents=True, exist_ok=True)
        Path(args.screenshot).write_bytes(base64.b64decode(report.screenshot_base64))
        logging.info(f"Screenshot saved to {args.screenshot}")

    if args.show_output:
        sys.stdout.write(output.render_text(report) + "\n")
    else:
        summary = report.to_dict()["summary"]
        sys.stdout.write(json.dumps(summary, indent=2) + "\n")

    sys.exit(0)


if __name__ == "__main__":
    cli()
