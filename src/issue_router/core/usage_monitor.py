"""Daily and monthly budget for AI classification calls."""

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Optional

import yaml

LOGGER = logging.getLogger(__name__)


@dataclass
class UsageLimits:
    """AI usage caps. A non-positive limit disables that particular cap."""
    enabled: bool = True
    daily_calls: int = 100
    monthly_calls: int = 2000
    daily_tokens: int = 500_000
    monthly_tokens: int = 10_000_000
    daily_cost: float = 50.0
    monthly_cost: float = 1000.0
    # USD per 1K tokens
    input_token_cost: float = 0.003
    output_token_cost: float = 0.015
    warning_threshold: float = 0.8
    daily_block_threshold: float = 0.95
    monthly_block_threshold: float = 0.9
    usage_file: Path = Path(".routing-usage.yml")


@dataclass
class UsageCheck:
    """Outcome of a pre-call budget check."""
    allowed: bool
    reason: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


def _empty_period(key: str, value: str) -> dict:
    return {key: value, "calls": 0, "input_tokens": 0, "output_tokens": 0, "estimated_cost": 0.0}


class ApiUsageMonitor:
    """Tracks AI calls, tokens and estimated cost in a small YAML file.

    Counters roll over when the day or month changes. A call is refused
    once the projected usage reaches the block threshold of any limit.
    """

    def __init__(self, limits: UsageLimits) -> None:
        self.limits = limits
        self.usage_file = Path(limits.usage_file)

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens / 1000 * self.limits.input_token_cost
            + output_tokens / 1000 * self.limits.output_token_cost
        )

    def check(self, input_tokens: int, output_tokens: int, today: Optional[date] = None) -> UsageCheck:
        """Check whether one more call of the estimated size fits the budget."""
        usage = self._load(today or date.today())
        cost = self.estimate_cost(input_tokens, output_tokens)
        tokens = input_tokens + output_tokens

        result = UsageCheck(allowed=True)
        periods = (
            ("Daily", usage["daily"], self.limits.daily_block_threshold,
             self.limits.daily_calls, self.limits.daily_tokens, self.limits.daily_cost),
            ("Monthly", usage["monthly"], self.limits.monthly_block_threshold,
             self.limits.monthly_calls, self.limits.monthly_tokens, self.limits.monthly_cost),
        )

        for label, period, block_at, call_limit, token_limit, cost_limit in periods:
            projected = (
                ("API call", period["calls"] + 1, call_limit),
                ("token", period["input_tokens"] + period["output_tokens"] + tokens, token_limit),
                ("cost", period["estimated_cost"] + cost, cost_limit),
            )
            for name, value, limit in projected:
                if limit <= 0:
                    continue
                ratio = value / limit
                if ratio >= block_at and result.allowed:
                    result.allowed = False
                    result.reason = f"{label} {name} limit exceeded ({ratio:.0%} of {limit})"
                elif ratio >= self.limits.warning_threshold:
                    result.warnings.append(f"{label} {name} usage at {ratio:.0%} of {limit}")

        return result

    def record(self, input_tokens: int, output_tokens: int, today: Optional[date] = None) -> None:
        """Add one call to the daily and monthly counters."""
        usage = self._load(today or date.today())
        cost = self.estimate_cost(input_tokens, output_tokens)

        for period in (usage["daily"], usage["monthly"]):
            period["calls"] += 1
            period["input_tokens"] += input_tokens
            period["output_tokens"] += output_tokens
            period["estimated_cost"] = round(period["estimated_cost"] + cost, 6)

        try:
            self.usage_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.usage_file, "w", encoding="utf-8") as f:
                yaml.safe_dump(usage, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            LOGGER.warning("Could not persist AI usage to %s: %s", self.usage_file, e)
            return

        LOGGER.debug(
            "Recorded AI usage: %d tokens, ~$%.4f", input_tokens + output_tokens, cost
        )

    def get_stats(self, today: Optional[date] = None) -> dict:
        """Current counters and limits."""
        usage = self._load(today or date.today())
        return {
            "daily": dict(usage["daily"], call_limit=self.limits.daily_calls,
                          token_limit=self.limits.daily_tokens, cost_limit=self.limits.daily_cost),
            "monthly": dict(usage["monthly"], call_limit=self.limits.monthly_calls,
                            token_limit=self.limits.monthly_tokens, cost_limit=self.limits.monthly_cost),
        }

    def _load(self, today: date) -> dict:
        day = today.isoformat()
        month = day[:7]
        usage = {"daily": _empty_period("date", day), "monthly": _empty_period("month", month)}

        if not self.usage_file.exists():
            return usage

        try:
            with open(self.usage_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            daily = data.get("daily") or {}
            monthly = data.get("monthly") or {}
            if daily.get("date") == day:
                usage["daily"].update(self._counters(daily))
            if monthly.get("month") == month:
                usage["monthly"].update(self._counters(monthly))
        except (OSError, yaml.YAMLError, AttributeError, TypeError, ValueError) as e:
            LOGGER.warning("Unreadable AI usage file %s, starting fresh: %s", self.usage_file, e)

        return usage

    def _counters(self, period: dict) -> dict:
        return {
            "calls": int(period.get("calls", 0)),
            "input_tokens": int(period.get("input_tokens", 0)),
            "output_tokens": int(period.get("output_tokens", 0)),
            "estimated_cost": float(period.get("estimated_cost", 0.0)),
        }
