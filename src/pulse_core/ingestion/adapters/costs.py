"""AI and infrastructure usage-cost adapters.

Each provider produces a single pooled ``daily_provider_costs`` row per
date (no app reference); attribution to apps happens downstream.
"""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from ...exceptions import ProviderApiError
from ..base import CostAdapter, _safe_float, _safe_int
from ..context import IngestionContext


logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 * 1024 * 1024


def _day_bounds(context: IngestionContext) -> tuple[datetime, datetime]:
    start = datetime.combine(context.date, datetime.min.time(), tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


# USD per million tokens, matched by substring in listed order.
ANTHROPIC_MODEL_PRICING = (
    ("claude-opus-4", {"input": 15.0, "output": 75.0}),
    ("claude-sonnet-4", {"input": 3.0, "output": 15.0}),
    ("claude-3-7-sonnet", {"input": 3.0, "output": 15.0}),
    ("claude-3-5-sonnet", {"input": 3.0, "output": 15.0}),
    ("claude-3-5-haiku", {"input": 0.8, "output": 4.0}),
    ("claude-3-opus", {"input": 15.0, "output": 75.0}),
    ("claude-3-sonnet", {"input": 3.0, "output": 15.0}),
    ("claude-3-haiku", {"input": 0.25, "output": 1.25}),
    ("claude-2.1", {"input": 8.0, "output": 24.0}),
    ("claude-2.0", {"input": 8.0, "output": 24.0}),
    ("claude-instant-1.2", {"input": 0.8, "output": 2.4}),
)
ANTHROPIC_DEFAULT_PRICING = {"input": 3.0, "output": 15.0}


def anthropic_token_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = ANTHROPIC_DEFAULT_PRICING
    for prefix, model_pricing in ANTHROPIC_MODEL_PRICING:
        if prefix in model.lower():
            pricing = model_pricing
            break
    return (
        input_tokens / 1_000_000 * pricing["input"]
        + output_tokens / 1_000_000 * pricing["output"]
    )


class AnthropicCostAdapter(CostAdapter):
    """Token usage from the Admin usage report, priced per model."""

    name = "anthropic"
    provider_slug = "anthropic"
    api_base = "https://api.anthropic.com/v1/organizations"

    def is_configured(self) -> bool:
        return bool(self.settings.anthropic_admin_api_key)

    async def fetch_usage(self, context: IngestionContext) -> list[dict]:
        """Usage results for the day grouped by model; unavailable API -> []."""
        start, end = _day_bounds(context)
        params = {
            "starting_at": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "ending_at": end.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "bucket_width": "1d",
            "group_by[]": "model",
        }
        headers = {
            "x-api-key": self.settings.anthropic_admin_api_key,
            "anthropic-version": "2023-06-01",
        }

        results: list[dict] = []
        while True:
            try:
                data = await self._get_json(
                    f"{self.api_base}/usage_report/messages",
                    params=params,
                    headers=headers,
                )
            except ProviderApiError as exc:
                if exc.status in (403, 404):
                    logger.warning("Anthropic usage API not available (%s)", exc.status)
                    return []
                raise

            for bucket in data.get("data") or []:
                results.extend(bucket.get("results") or [])

            if not data.get("has_more") or not data.get("next_page"):
                return results
            params = {**params, "page": data["next_page"]}

    async def fetch_cost(self, context: IngestionContext) -> dict:
        usage_by_model: dict[str, dict] = defaultdict(
            lambda: {"input": 0, "output": 0}
        )
        for result in await self.fetch_usage(context):
            model = result.get("model") or "unknown"
            cache_creation = result.get("cache_creation") or {}
            input_tokens = (
                _safe_int(result.get("uncached_input_tokens"))
                + _safe_int(result.get("cache_read_input_tokens"))
                + sum(_safe_int(v) for v in cache_creation.values())
            )
            usage_by_model[model]["input"] += input_tokens
            usage_by_model[model]["output"] += _safe_int(result.get("output_tokens"))

        cost_breakdown: dict[str, float] = {}
        usage_breakdown: dict[str, int] = {}
        for model, usage in usage_by_model.items():
            cost_breakdown[model] = anthropic_token_cost(
                model, usage["input"], usage["output"]
            )
            usage_breakdown[f"{model}_input"] = usage["input"]
            usage_breakdown[f"{model}_output"] = usage["output"]

        total_tokens = sum(u["input"] + u["output"] for u in usage_by_model.values())
        return {
            "cost": sum(cost_breakdown.values()),
            "usage_quantity": total_tokens,
            "usage_unit": "tokens",
            "cost_breakdown": cost_breakdown,
            "usage_breakdown": usage_breakdown,
        }


class ElevenLabsCostAdapter(CostAdapter):
    """Characters synthesized per day from generation history."""

    name = "elevenlabs"
    provider_slug = "elevenlabs"
    api_base = "https://api.elevenlabs.io/v1"
    cost_per_character = 0.00018

    def is_configured(self) -> bool:
        return bool(self.settings.elevenlabs_api_key)

    def _headers(self) -> dict:
        return {"xi-api-key": self.settings.elevenlabs_api_key}

    async def fetch_history(self, context: IngestionContext) -> list[dict]:
        """History items created on the target day (newest-first paging)."""
        start, end = _day_bounds(context)
        start_unix, end_unix = int(start.timestamp()), int(end.timestamp())

        items: list[dict] = []
        params: dict = {"page_size": "100"}
        while True:
            data = await self._get_json(
                f"{self.api_base}/history", params=params, headers=self._headers()
            )
            history = data.get("history") or []
            items.extend(
                item
                for item in history
                if start_unix <= _safe_int(item.get("date_unix")) < end_unix
            )

            if not history or _safe_int(history[-1].get("date_unix")) < start_unix:
                return items
            if not data.get("has_more") or not data.get("last_history_item_id"):
                return items
            params = {**params, "start_after_history_item_id": data["last_history_item_id"]}
            if self.entity_delay:
                await asyncio.sleep(self.entity_delay)

    async def fetch_subscription(self) -> dict:
        return await self._get_json(
            f"{self.api_base}/user/subscription", headers=self._headers()
        )

    def _previous_cycle_count(self, context: IngestionContext) -> Optional[int]:
        provider = context.provider(self.provider_slug)
        previous = self.store.query(
            "daily_provider_costs",
            context.date - timedelta(days=1),
            entity_filter={"provider_id": provider.id, "app_id": ""},
        )
        if not previous:
            return None
        breakdown = previous[0].get("usage_breakdown") or {}
        count = breakdown.get("cycle_character_count")
        return _safe_int(count) if count is not None else None

    async def fetch_cost(self, context: IngestionContext) -> dict:
        try:
            history = await self.fetch_history(context)
        except ProviderApiError as exc:
            logger.warning(
                "ElevenLabs history unavailable (%s), using subscription counter",
                exc.status,
            )
            return await self._cost_from_subscription(context)

        by_voice: dict[str, int] = defaultdict(int)
        for item in history:
            characters = _safe_int(item.get("character_count_change_to")) - _safe_int(
                item.get("character_count_change_from")
            )
            by_voice[item.get("voice_name") or item.get("voice_id") or "unknown"] += characters

        total = sum(by_voice.values())
        return {
            "cost": total * self.cost_per_character,
            "usage_quantity": total,
            "usage_unit": "characters",
            "cost_breakdown": {
                voice: chars * self.cost_per_character for voice, chars in by_voice.items()
            },
            "usage_breakdown": {"requests": len(history), **by_voice},
        }

    async def _cost_from_subscription(self, context: IngestionContext) -> dict:
        """Daily characters as the delta of the billing-cycle counter."""
        subscription = await self.fetch_subscription()
        cycle_count = _safe_int(subscription.get("character_count"))
        previous = self._previous_cycle_count(context)

        if previous is None:
            characters = 0
        elif cycle_count >= previous:
            characters = cycle_count - previous
        else:
            characters = cycle_count

        return {
            "cost": characters * self.cost_per_character,
            "usage_quantity": characters,
            "usage_unit": "characters",
            "usage_breakdown": {
                "cycle_character_count": cycle_count,
                "character_limit": _safe_int(subscription.get("character_limit")),
            },
        }


class CartesiaCostAdapter(CostAdapter):
    """Characters synthesized per day from the usage endpoint."""

    name = "cartesia"
    provider_slug = "cartesia"
    api_base = "https://api.cartesia.ai"
    cost_per_character = 0.00015

    def is_configured(self) -> bool:
        return bool(self.settings.cartesia_api_key)

    async def fetch_usage(self, context: IngestionContext) -> list[dict]:
        try:
            data = await self._get_json(
                f"{self.api_base}/usage",
                params={"start_date": context.date_str, "end_date": context.next_date_str},
                headers={
                    "X-API-Key": self.settings.cartesia_api_key,
                    "Content-Type": "application/json",
                },
            )
        except ProviderApiError as exc:
            if exc.status == 404:
                return []
            raise
        return data.get("usage") or []

    async def fetch_cost(self, context: IngestionContext) -> dict:
        records = await self.fetch_usage(context)

        by_model: dict[str, dict] = defaultdict(lambda: {"characters": 0, "duration": 0.0})
        voices: set[str] = set()
        for record in records:
            model = record.get("model_id") or "default"
            by_model[model]["characters"] += _safe_int(record.get("characters"))
            by_model[model]["duration"] += _safe_float(record.get("duration_seconds"))
            if record.get("voice_id"):
                voices.add(record["voice_id"])

        total_characters = sum(u["characters"] for u in by_model.values())
        usage_breakdown: dict = {
            "total_characters": total_characters,
            "total_duration_seconds": sum(u["duration"] for u in by_model.values()),
            "requests": len(records),
        }
        for model, usage in by_model.items():
            usage_breakdown[f"{model}_characters"] = usage["characters"]
            usage_breakdown[f"{model}_duration"] = usage["duration"]

        return {
            "cost": total_characters * self.cost_per_character,
            "usage_quantity": total_characters,
            "usage_unit": "characters",
            "cost_breakdown": {
                model: usage["characters"] * self.cost_per_character
                for model, usage in by_model.items()
            },
            "usage_breakdown": usage_breakdown,
            "raw_data": {"record_count": len(records), "voices_used": len(voices)},
        }


NEON_PRICING = {
    "compute_per_hour": 0.0255,
    "storage_per_gb_hour": 0.000164,
    "data_transfer_per_gb": 0.09,
    "written_data_per_gb": 0.096,
}


def neon_consumption_cost(period: dict) -> dict[str, float]:
    """Cost components for one Neon consumption period."""
    return {
        "compute": _safe_float(period.get("compute_time_seconds"))
        / 3600
        * NEON_PRICING["compute_per_hour"],
        "storage": _safe_float(period.get("data_storage_bytes_hour"))
        / BYTES_PER_GB
        * NEON_PRICING["storage_per_gb_hour"],
        "data_transfer": _safe_float(period.get("data_transfer_bytes"))
        / BYTES_PER_GB
        * NEON_PRICING["data_transfer_per_gb"],
        "written_data": _safe_float(period.get("written_data_bytes"))
        / BYTES_PER_GB
        * NEON_PRICING["written_data_per_gb"],
    }


class NeonCostAdapter(CostAdapter):
    """Consumption-priced cost summed across all Neon projects."""

    name = "neon"
    provider_slug = "neon"
    api_base = "https://console.neon.tech/api/v2"

    def is_configured(self) -> bool:
        return bool(self.settings.neon_api_key)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.neon_api_key}",
            "Accept": "application/json",
        }

    async def fetch_projects(self) -> list[dict]:
        data = await self._get_json(f"{self.api_base}/projects", headers=self._headers())
        return data.get("projects") or []

    async def fetch_consumption(
        self, project_id: str, context: IngestionContext
    ) -> Optional[dict]:
        try:
            data = await self._get_json(
                f"{self.api_base}/projects/{project_id}/consumption",
                params={"from": context.date_str, "to": context.next_date_str},
                headers=self._headers(),
            )
        except ProviderApiError as exc:
            if exc.status == 404:
                return None
            raise
        periods = data.get("periods") or []
        return periods[0] if periods else None

    async def fetch_cost(self, context: IngestionContext) -> dict:
        cost_breakdown: dict[str, float] = {}
        compute_hours = 0.0

        for index, project in enumerate(await self.fetch_projects()):
            if index > 0 and self.entity_delay:
                await asyncio.sleep(self.entity_delay)
            period = await self.fetch_consumption(project["id"], context)
            if period is None:
                continue
            components = neon_consumption_cost(period)
            cost_breakdown[project.get("name") or project["id"]] = sum(components.values())
            compute_hours += _safe_float(period.get("compute_time_seconds")) / 3600

        return {
            "cost": sum(cost_breakdown.values()),
            "usage_quantity": compute_hours,
            "usage_unit": "compute_hours",
            "cost_breakdown": cost_breakdown,
        }


SUPABASE_PRICING = {
    "db_size_per_gb_month": 0.125,
    "db_egress_per_gb": 0.09,
    "storage_per_gb_month": 0.021,
    "storage_egress_per_gb": 0.09,
    "mau_included": 50_000,
    "mau_overage_per_100k": 25.0,
    "function_invocations_included": 500_000,
    "function_invocations_per_million": 2.0,
}


def supabase_daily_cost(usage: dict) -> float:
    """Estimate one project's daily cost; monthly charges prorated over 30 days."""
    daily_fraction = 1 / 30
    cost = 0.0
    cost += (
        _safe_float(usage.get("db_size_bytes"))
        / BYTES_PER_GB
        * SUPABASE_PRICING["db_size_per_gb_month"]
        * daily_fraction
    )
    cost += (
        _safe_float(usage.get("db_egress_bytes"))
        / BYTES_PER_GB
        * SUPABASE_PRICING["db_egress_per_gb"]
    )
    cost += (
        _safe_float(usage.get("storage_size_bytes"))
        / BYTES_PER_GB
        * SUPABASE_PRICING["storage_per_gb_month"]
        * daily_fraction
    )
    cost += (
        _safe_float(usage.get("storage_egress_bytes"))
        / BYTES_PER_GB
        * SUPABASE_PRICING["storage_egress_per_gb"]
    )
    mau_overage = max(
        0, _safe_int(usage.get("monthly_active_users")) - SUPABASE_PRICING["mau_included"]
    )
    cost += mau_overage / 100_000 * SUPABASE_PRICING["mau_overage_per_100k"] * daily_fraction
    function_overage = max(
        0,
        _safe_int(usage.get("function_invocations"))
        - SUPABASE_PRICING["function_invocations_included"],
    )
    cost += (
        function_overage
        / 1_000_000
        * SUPABASE_PRICING["function_invocations_per_million"]
        * daily_fraction
    )
    return cost


class SupabaseCostAdapter(CostAdapter):
    """Usage-based cost estimate across Supabase projects."""

    name = "supabase"
    provider_slug = "supabase"
    api_base = "https://api.supabase.com/v1"
    not_configured_message = "Management API not configured"

    def is_configured(self) -> bool:
        return bool(self.settings.supabase_management_api_key)

    async def fetch_usage(self) -> Optional[dict]:
        try:
            return await self._get_json(
                f"{self.api_base}/usage",
                headers={
                    "Authorization": f"Bearer {self.settings.supabase_management_api_key}",
                    "Content-Type": "application/json",
                },
            )
        except ProviderApiError as exc:
            if exc.status in (403, 404):
                logger.warning("Supabase usage API not available (%s)", exc.status)
                return None
            raise

    async def fetch_cost(self, context: IngestionContext) -> dict:
        usage = await self.fetch_usage()
        projects = (usage or {}).get("projects") or []

        cost_breakdown = {
            project.get("project_name") or project.get("project_id") or "unknown": (
                supabase_daily_cost(project)
            )
            for project in projects
        }
        return {
            "cost": sum(cost_breakdown.values()),
            "usage_quantity": sum(
                _safe_int(p.get("monthly_active_users")) for p in projects
            ),
            "usage_unit": "monthly_active_users",
            "cost_breakdown": cost_breakdown,
            "usage_breakdown": {"projects": len(projects)},
        }
