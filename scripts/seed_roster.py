#!/usr/bin/env python3
"""Load tracked apps and cost providers from a JSON roster file.

Roster format:
    {
      "apps": [
        {"id": "app-1", "slug": "sleepwell", "name": "SleepWell",
         "type": "mobile", "platforms": ["ios", "android"],
         "apple_app_id": "123456789", "revenuecat_app_id": "proj1a2b3c"}
      ],
      "providers": [
        {"id": "anthropic", "slug": "anthropic", "name": "Anthropic", "category": "ai"}
      ]
    }

Usage:
    PYTHONPATH=. python scripts/seed_roster.py data/roster.json
"""
import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.pulse_core.config import Settings
from src.pulse_core.storage.models import App, AppType, Provider
from src.pulse_core.storage.schema import connect, init_database
from src.pulse_core.storage.store import MetricsStore


logger = logging.getLogger(__name__)


def load_roster(path: Path) -> tuple[list[App], list[Provider]]:
    """Parse a roster file into reference entities."""
    with open(path, encoding="utf-8") as handle:
        data = json.load(handle)

    apps = []
    for entry in data.get("apps", []):
        entry = dict(entry)
        entry["type"] = AppType(entry.get("type", "mobile"))
        entry["platforms"] = tuple(entry.get("platforms", ()))
        apps.append(App(**entry))

    providers = [Provider(**entry) for entry in data.get("providers", [])]
    return apps, providers


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the pulse app/provider roster")
    parser.add_argument("roster", type=Path, help="Path to roster JSON file")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not args.roster.exists():
        logger.error("Roster file not found: %s", args.roster)
        return 1

    apps, providers = load_roster(args.roster)

    settings = Settings.from_env()
    init_database(settings.db_path)
    conn = connect(settings.db_path)
    try:
        store = MetricsStore(conn)
        for app in apps:
            store.save_app(app)
        for provider in providers:
            store.save_provider(provider)
    finally:
        conn.close()

    logger.info("Seeded %s apps and %s providers", len(apps), len(providers))
    return 0


if __name__ == "__main__":
    sys.exit(main())
