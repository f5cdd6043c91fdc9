"""
Headline Harvester - Main runner
"""

import os
import sys
import json
import argparse
from pathlib import Path
from typing import Any

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

from config_validator import DEFAULT_CONFIG_PATH, load_config, validate_config
from database import SeenArticleStore
from logging_config import setup_logging, get_logger
from scraper import scrape_websites


def load_descriptors(path: str) -> list[dict[str, Any]]:
    """
    Read site descriptors from a JSON file.

    Accepts either a bare array or an object with a "websites" array.
    """
    with open(path) as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("websites")
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of site descriptors")
    return data


class HeadlineHarvester:
    """CLI facade over the scraping pipeline and the seen-article store"""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = config_path
        self.config = load_config(config_path)
        self.logger = get_logger(__name__)

    def _store(self) -> SeenArticleStore:
        return SeenArticleStore(self.config["store"]["path"])

    def run(self, descriptors_path: str, output_path: str | None = None) -> list[dict[str, Any]]:
        """Scrape the sites listed in descriptors_path and write the results as JSON"""
        descriptors = load_descriptors(descriptors_path)
        self.logger.info(
            "Starting scrape", extra={"sites": len(descriptors), "source": descriptors_path}
        )

        results = scrape_websites(descriptors, config=self.config)

        text = json.dumps(results, indent=2, ensure_ascii=False)
        if output_path:
            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "w") as f:
                f.write(text + "\n")
            self.logger.info("Results written", extra={"output": output_path})
        else:
            print(text)
        return results

    def sweep(self) -> int:
        """Prune expired entries from the store now"""
        with self._store() as store:
            removed = store.sweep(self.config["store"]["retention_days"])
        print(f"Removed {removed} expired article(s)")
        return removed

    def show_status(self):
        """Show seen-article store statistics"""
        with self._store() as store:
            stats = store.get_stats()

        print("\n" + "=" * 50)
        print("Headline Harvester - Status")
        print("=" * 50)
        print(f"Store: {stats['db_path']}")
        print(f"Seen articles: {stats['total_articles']}")
        print(f"Seen (24h): {stats['articles_24h']}")
        if stats["oldest"]:
            print(f"Oldest entry: {stats['oldest']}")
            print(f"Newest entry: {stats['newest']}")
        print(f"Retention: {self.config['store']['retention_days']} days")
        print("=" * 50 + "\n")


def main():
    parser = argparse.ArgumentParser(description="Headline Harvester")
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH, help="Path to config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--skip-validation", action="store_true", help="Skip configuration validation"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Scrape the sites in a descriptors file")
    run_parser.add_argument("descriptors", help="JSON file with site descriptors")
    run_parser.add_argument("-o", "--output", help="Write results to this file instead of stdout")

    # Sweep command
    subparsers.add_parser("sweep", help="Prune expired seen-article entries")

    # Status command
    subparsers.add_parser("status", help="Show store status")

    # Validate command
    subparsers.add_parser("validate", help="Validate configuration file")

    args = parser.parse_args()

    # Resolve user paths before changing directory
    if args.command == "run":
        args.descriptors = os.path.abspath(args.descriptors)
        if args.output:
            args.output = os.path.abspath(args.output)

    setup_logging(verbose=args.verbose)
    logger = get_logger(__name__)

    # Change to project directory
    project_dir = Path(__file__).parent.parent
    os.chdir(project_dir)

    # Handle validate command separately (before loading config)
    if args.command == "validate":
        result = validate_config(args.config)
        if result.is_valid:
            print(f"Configuration file '{args.config}' is valid.")
            sys.exit(0)
        else:
            print(result, file=sys.stderr)
            sys.exit(1)

    if args.command is None:
        parser.print_help()
        return

    # Validate configuration on startup (unless skipped)
    if not args.skip_validation and Path(args.config).exists():
        result = validate_config(args.config)
        if not result.is_valid:
            print(result, file=sys.stderr)
            sys.exit(1)
        logger.info("Configuration validation passed", extra={"config_path": args.config})

    harvester = HeadlineHarvester(args.config)

    if args.command == "run":
        try:
            harvester.run(args.descriptors, args.output)
        except (OSError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "sweep":
        harvester.sweep()
    elif args.command == "status":
        harvester.show_status()


if __name__ == "__main__":
    main()
