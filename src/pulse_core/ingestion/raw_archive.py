"""Raw provider payload archive (immutable JSONL audit files)."""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import aiofiles


logger = logging.getLogger(__name__)


class RawArchive:
    """Writes provider responses as JSONL envelopes under ``raw_dir``."""

    def __init__(self, raw_dir: str | Path) -> None:
        self.raw_dir = Path(raw_dir)
        self.raw_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, source: str, label: str, date_str: str) -> Path:
        safe_label = label.replace("/", "_").replace(" ", "_")
        return self.raw_dir / f"raw_{source}_{safe_label}_{date_str}.jsonl"

    async def write(
        self, source: str, label: str, date_str: str, items: list[dict]
    ) -> Path:
        """Write one envelope per item, replacing any previous file.

        Args:
            source: Adapter name
            label: Entity or report label (app slug, provider slug)
            date_str: Metric date (YYYY-MM-DD)
            items: Provider response items

        Returns:
            Path of the written file
        """
        fetched_at = datetime.now(timezone.utc).isoformat()
        jsonl_path = self.path_for(source, label, date_str)

        async with aiofiles.open(jsonl_path, mode="w", encoding="utf-8") as handle:
            for item in items:
                envelope = {
                    "source": source,
                    "label": label,
                    "metric_date": date_str,
                    "fetched_at": fetched_at,
                    "response_item": item,
                }
                await handle.write(
                    json.dumps(envelope, separators=(",", ":"), default=str) + "\n"
                )

        logger.debug("Wrote %s raw items to %s", len(items), jsonl_path)
        return jsonl_path
