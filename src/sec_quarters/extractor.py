"""Claude-backed extraction of quarterly facts from filing text.

Two pipelines run over the same filing and share one filing tracker:

  - metrics   — the eight universal GAAP metrics used for sparklines
  - insights  — qualitative company insights plus segment notes

The model is treated as untrusted. Its reply is parsed and validated here;
a reply that cannot be read, or that fills fewer than half of what a
pipeline requires, raises ExtractionQuality. A failed API call raises
ExtractionError.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

import anthropic
from pydantic import ValidationError

from sec_quarters.cache import INSIGHTS_NAMESPACE, METRICS_NAMESPACE
from sec_quarters.config import get_config
from sec_quarters.errors import ExtractionError, ExtractionQuality
from sec_quarters.models import FilingRef, Insight, MetricPoint, QuarterRecord, Segment
from sec_quarters.sparklines import UNIVERSAL_METRICS, parse_metric_value

log = logging.getLogger(__name__)


METRICS_PROMPT = """\
You are a financial analyst extracting GAAP figures from a quarterly SEC filing.
Use ONLY the current three-month column of the condensed consolidated statements.
Never estimate a figure that is not in the filing.

Return ONLY a JSON object:
{
  "quarterYear": "Q2 2025",
  "metrics": {
    "revenue":            {"value": 1234.5, "unit": "millions", "display": "$1,234.5M"},
    "grossMarginPct":     {"value": 35.0,   "unit": "percent",  "display": "35.0%"},
    "operatingMarginPct": {"value": 8.5,    "unit": "percent",  "display": "8.5%"},
    "operatingIncome":    {"value": 105,    "unit": "millions", "display": "$105M"},
    "operatingCashFlow":  {"value": 150,    "unit": "millions", "display": "$150M"},
    "rndRatioPct":        {"value": 8.2,    "unit": "percent",  "display": "8.2%"},
    "netIncome":          {"value": 75,     "unit": "millions", "display": "$75M"},
    "epsDiluted":         {"value": 0.50,   "unit": "dollars",  "display": "$0.50"}
  },
  "extractionNotes": "anything unusual about the figures"
}

Rules:
- Currency amounts in millions of USD; losses are negative numbers.
- Gross margin = (1 - cost of revenue / total revenue) x 100 when not stated.
- Operating margin and R&D ratio are percentages of total revenue.
- Operating cash flow: "Net cash provided by operating activities", shortest period shown.
- If a figure is not in the filing use null for value and "N/A" for display.
"""

INSIGHTS_PROMPT = """\
You are an equity analyst summarizing a quarterly SEC filing.

Return ONLY a JSON object:
{
  "quarterYear": "Q2 2025",
  "companyInsights": [
    {
      "category": "growth-driver",
      "headline": "max 80 characters",
      "detail": "context and implication, max 250 characters",
      "impact": "positive",
      "confidence": 0.8,
      "sourceQuote": "short supporting quote from the filing"
    }
  ],
  "segments": [
    {"name": "Segment", "revenue": "$XXXM", "growthYoY": "+XX%", "keyDriver": "...", "status": "..."}
  ]
}

Extract 3-8 company-specific insights ranked by materiality.
category must be one of: growth-driver, risk, strategic-initiative,
competitive-advantage, guidance, margin-impact, capital-allocation, innovation.
impact must be one of: positive, negative, neutral. confidence is 0.0-1.0.
"""

VALID_CATEGORIES = frozenset({
    "growth-driver",
    "risk",
    "strategic-initiative",
    "competitive-advantage",
    "guidance",
    "margin-impact",
    "capital-allocation",
    "innovation",
})
CATEGORY_ALIASES = {
    "financial-performance": "margin-impact",
    "performance": "margin-impact",
}
VALID_IMPACTS = frozenset({"positive", "negative", "neutral"})

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)
_BARE_JSON = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_response(text: str) -> dict:
    """Pull the JSON object out of a model reply (fenced block or bare braces)."""
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidate = fenced.group(1)
    else:
        bare = _BARE_JSON.search(text)
        candidate = bare.group(0) if bare else text
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ExtractionQuality(f"Extractor reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ExtractionQuality("Extractor reply is not a JSON object")
    return data


# ═══════════════════════════════════════════════════════════════════════════
#  Extraction collaborator
# ═══════════════════════════════════════════════════════════════════════════

class AnthropicExtractor:
    """Runs one extraction prompt against the Anthropic Messages API."""

    def __init__(
        self,
        prompt: str,
        *,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        client: Any = None,
    ):
        config = get_config()
        self.prompt = prompt
        self.api_key = config.anthropic_api_key if api_key is None else api_key
        self.model = model or config.anthropic_model
        self.max_tokens = max_tokens or config.extraction_max_tokens
        self._client = client

    def _get_client(self):
        """Lazy-init the Anthropic client."""
        if self._client is not None:
            return self._client
        if not self.api_key:
            raise ExtractionError(
                "ANTHROPIC_API_KEY is not set. Add it to your .env file to enable extraction."
            )
        self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def extract(self, full_text: str, symbol: str) -> dict:
        client = self._get_client()
        user_msg = f"Ticker: {symbol.upper()}\n\nFiling content to analyze:\n{full_text}"
        try:
            response = client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.1,
                system=self.prompt,
                messages=[{"role": "user", "content": user_msg}],
            )
        except anthropic.APIError as exc:
            raise ExtractionError(f"Anthropic extraction failed: {exc}") from exc

        text = "\n".join(block.text for block in response.content if hasattr(block, "text"))
        if not text.strip():
            raise ExtractionQuality("Extractor returned an empty reply")
        return parse_json_response(text)


# ═══════════════════════════════════════════════════════════════════════════
#  Pipelines: collaborator + validation + record shape
# ═══════════════════════════════════════════════════════════════════════════

class ExtractionPipeline:
    """An extraction collaborator plus the rules that turn its output into a QuarterRecord."""

    name = "abstract"
    namespace = "abstract"

    def __init__(self, extractor: Any):
        self.extractor = extractor

    def extract(self, full_text: str, symbol: str) -> dict:
        return self.extractor.extract(full_text, symbol)

    def build_record(self, raw: dict, *, symbol: str, quarter: str, filing: FilingRef) -> QuarterRecord:
        raise NotImplementedError

    def _base_record(self, raw: dict, symbol: str, quarter: str, filing: FilingRef) -> dict:
        return {
            "quarter": quarter,
            "symbol": symbol.upper(),
            "extracted_at": datetime.now(timezone.utc),
            "accession_number": filing.accession_number,
            "filing_date": filing.filing_date,
            "form_type": filing.form_type,
            "extraction_notes": raw.get("extractionNotes"),
            "model": getattr(self.extractor, "model", None),
        }


class MetricsPipeline(ExtractionPipeline):
    name = "metrics"
    namespace = METRICS_NAMESPACE
    required = UNIVERSAL_METRICS

    def build_record(self, raw: dict, *, symbol: str, quarter: str, filing: FilingRef) -> QuarterRecord:
        metrics_raw = raw.get("metrics") or raw.get("universalMetrics")
        if not isinstance(metrics_raw, dict):
            raise ExtractionQuality("Extractor reply has no metrics object")

        metrics: dict[str, MetricPoint] = {}
        populated = 0
        for name in self.required:
            entry = metrics_raw.get(name)
            if isinstance(entry, dict):
                raw_value, display = entry.get("value"), entry.get("display")
                unit, trend = entry.get("unit"), entry.get("trend")
            else:
                raw_value, display, unit, trend = entry, None, None, None

            value = parse_metric_value(raw_value)
            if value is not None:
                populated += 1
            if display is None and isinstance(raw_value, str):
                display = raw_value
            metrics[name] = MetricPoint(
                value=value,
                unit=unit if isinstance(unit, str) else None,
                display=display if isinstance(display, str) else None,
                trend=trend if isinstance(trend, str) else None,
            )

        log.info("Metrics validation for %s %s: %d/%d populated", symbol.upper(), quarter, populated, len(self.required))
        if populated * 2 < len(self.required):
            raise ExtractionQuality(
                f"Only {populated} of {len(self.required)} required metrics were extracted",
                details={"populated": populated, "required": len(self.required)},
            )

        return QuarterRecord(metrics=metrics, **self._base_record(raw, symbol, quarter, filing))


def clean_insight(item: Any) -> Insight | None:
    """Validated Insight, or None when the item is unusable."""
    if not isinstance(item, dict):
        return None
    category, impact = item.get("category"), item.get("impact")
    if not isinstance(category, str) or not isinstance(impact, str):
        return None
    category = CATEGORY_ALIASES.get(category, category)
    if category not in VALID_CATEGORIES or impact not in VALID_IMPACTS:
        return None
    confidence = item.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return None
    if not 0 <= confidence <= 1:
        return None
    if not all(isinstance(item.get(f), str) and item[f].strip() for f in ("headline", "detail")):
        return None
    return Insight(
        category=category,
        headline=item["headline"].strip(),
        detail=item["detail"].strip(),
        impact=impact,
        confidence=float(confidence),
        source_quote=item.get("sourceQuote") if isinstance(item.get("sourceQuote"), str) else None,
    )


class InsightsPipeline(ExtractionPipeline):
    name = "insights"
    namespace = INSIGHTS_NAMESPACE

    def build_record(self, raw: dict, *, symbol: str, quarter: str, filing: FilingRef) -> QuarterRecord:
        items = raw.get("companyInsights")
        if not isinstance(items, list) or not items:
            raise ExtractionQuality("Extractor reply has no companyInsights list")

        insights = [i for i in (clean_insight(item) for item in items) if i is not None]
        log.info("Insights validation for %s %s: %d/%d valid", symbol.upper(), quarter, len(insights), len(items))
        if not insights or len(insights) * 2 < len(items):
            raise ExtractionQuality(
                f"Only {len(insights)} of {len(items)} insights were usable",
                details={"populated": len(insights), "required": len(items)},
            )

        segments: list[Segment] = []
        for item in raw.get("segments") or []:
            try:
                segments.append(Segment.model_validate(item))
            except ValidationError:
                log.debug("Dropping malformed segment: %s", item)

        return QuarterRecord(
            insights=insights,
            segments=segments,
            **self._base_record(raw, symbol, quarter, filing),
        )


def default_pipelines() -> dict[str, ExtractionPipeline]:
    """Metrics and insights pipelines backed by Claude."""
    return {
        "metrics": MetricsPipeline(AnthropicExtractor(METRICS_PROMPT)),
        "insights": InsightsPipeline(AnthropicExtractor(INSIGHTS_PROMPT)),
    }
