"""
LLM-backed DeckAnalyzer.

Account data goes to the model as a compact JSON digest; the model never sees
raw API payloads. Empty or malformed output is treated as "no analysis".
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import openai

from prism.analysis.base import SEVERITIES, AnalysisInput, Anomaly
from prism.llm.client import LLMClient
from prism.llm.factory import get_llm_client
from prism.models import PLATFORM_LABELS, AccountSummary, EcommerceSummary, Summary
from prism.resources.deck.slides import SlideData, slide_to_dict

logger = logging.getLogger(__name__)

DIGEST_CAMPAIGNS = 5

SUMMARY_PROMPT = """You are a senior performance-marketing analyst writing for an agency client.
Given a JSON digest of the client's ad and store accounts for one reporting period,
write an executive summary of 3-5 short sentences in plain language:
overall spend and return, the strongest and weakest channel, and the most important
change versus the previous period when one is available.
Do not invent numbers that are not in the data. Do not use markdown."""

COMMENTARY_PROMPT = """You are a performance-marketing analyst annotating a report slide.
Given the slide's data and the account digest, write 1-2 sentences that call out
what the reader should notice on this slide. Do not repeat the slide title.
Do not invent numbers that are not in the data. Do not use markdown."""

ANOMALY_PROMPT = """You are a performance-marketing analyst reviewing account data for risks and opportunities.
Return ONLY a JSON array. Each element is an object with the fields:
- severity: one of "info", "warning", "critical"
- title: short headline
- description: one or two sentences
- metric: optional metric key (spend, conversions, roas, ctr, cpc, cpa, revenue, orders)
- campaign_name: optional campaign name the finding refers to
Return [] when nothing stands out."""


def _round(value: float) -> float:
    return round(value, 2)


def _ad_digest(summary: AccountSummary) -> Dict[str, Any]:
    m = summary.metrics
    digest: Dict[str, Any] = {
        "spend": _round(m.spend),
        "impressions": m.impressions,
        "clicks": m.clicks,
        "conversions": _round(m.conversions),
        "revenue": _round(m.revenue),
        "roas": _round(m.roas),
        "ctr": _round(m.ctr),
        "cpa": _round(m.cpa),
        "top_campaigns": [
            {
                "name": c.name,
                "status": c.status,
                "spend": _round(c.metrics.spend),
                "conversions": _round(c.metrics.conversions),
                "roas": _round(c.metrics.roas),
            }
            for c in sorted(summary.campaigns, key=lambda c: c.metrics.spend, reverse=True)[:DIGEST_CAMPAIGNS]
        ],
    }
    prev = summary.previous_period_metrics
    if prev is not None:
        digest["previous_period"] = {
            "spend": _round(prev.spend),
            "conversions": _round(prev.conversions),
            "revenue": _round(prev.revenue),
            "roas": _round(prev.roas),
            "cpa": _round(prev.cpa),
        }
    return digest


def _store_digest(summary: EcommerceSummary) -> Dict[str, Any]:
    m = summary.metrics
    digest: Dict[str, Any] = {
        "revenue": _round(m.revenue),
        "orders": m.orders,
        "average_order_value": _round(m.average_order_value),
        "new_customers": m.new_customers,
        "returning_customers": m.returning_customers,
        "refund_amount": _round(m.refund_amount),
        "top_products": [
            {"name": p.name, "revenue": _round(p.revenue), "units_sold": p.units_sold}
            for p in summary.top_products[:DIGEST_CAMPAIGNS]
        ],
    }
    prev = summary.previous_period_metrics
    if prev is not None:
        digest["previous_period"] = {"revenue": _round(prev.revenue), "orders": prev.orders}
    return digest


def build_digest(analysis_input: AnalysisInput) -> Dict[str, Any]:
    accounts: List[Dict[str, Any]] = []
    for summary in analysis_input.accounts:
        entry: Dict[str, Any] = {
            "platform": PLATFORM_LABELS.get(summary.account.platform, summary.account.platform),
            "account": summary.account.name,
            "currency": summary.account.currency,
            "period": {
                "start": summary.metrics.date_range.start_day,
                "end": summary.metrics.date_range.end_day,
            },
        }
        if isinstance(summary, EcommerceSummary):
            entry.update(_store_digest(summary))
        else:
            entry.update(_ad_digest(summary))
        accounts.append(entry)
    digest: Dict[str, Any] = {"accounts": accounts}
    if analysis_input.user_context:
        digest["client_context"] = analysis_input.user_context
    return digest


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_anomalies(text: str) -> Optional[List[Anomaly]]:
    """Parse the model's JSON array; None when it is not a list of usable objects."""
    try:
        data = json.loads(_strip_code_fence(text))
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse anomaly response as JSON: %s", e)
        return None
    if not isinstance(data, list):
        logger.warning("Anomaly response is not a JSON array (got %s)", type(data).__name__)
        return None

    anomalies: List[Anomaly] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        description = str(item.get("description") or "").strip()
        if not title or not description:
            continue
        severity = str(item.get("severity") or "info").strip().lower()
        if severity not in SEVERITIES:
            severity = "info"
        anomalies.append(
            Anomaly(
                severity=severity,
                title=title,
                description=description,
                metric=item.get("metric") or None,
                campaign_name=item.get("campaign_name") or None,
            )
        )
    return anomalies


class LLMDeckAnalyzer:
    """DeckAnalyzer backed by an LLMClient (OpenAI by default)."""

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        *,
        model: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        max_tokens: int = 600,
        temperature: float = 0.3,
    ) -> None:
        if llm is None:
            llm, model = get_llm_client(
                feature="deck_analysis",
                explicit_model=model,
                openai_api_key=openai_api_key,
            )
        self._llm = llm
        self._model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        logger.info("LLM client initialized for deck analysis (model=%s)", model or "custom")

    async def _complete(self, system_prompt: str, payload: Dict[str, Any], max_tokens: int) -> Optional[str]:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": json.dumps(payload, default=str)},
        ]
        try:
            content = await asyncio.to_thread(
                self._llm.complete,
                messages,
                max_tokens=max_tokens,
                temperature=self.temperature,
            )
        except openai.OpenAIError as e:
            logger.warning("LLM call failed during deck analysis: %s", e)
            return None
        text = (content or "").strip()
        return text or None

    async def generate_executive_summary(self, analysis_input: AnalysisInput) -> Optional[str]:
        if not analysis_input.accounts:
            return None
        return await self._complete(SUMMARY_PROMPT, build_digest(analysis_input), self.max_tokens)

    async def generate_slide_commentary(
        self, slide: SlideData, analysis_input: AnalysisInput
    ) -> Optional[str]:
        payload = {"slide": slide_to_dict(slide), "digest": build_digest(analysis_input)}
        return await self._complete(COMMENTARY_PROMPT, payload, 200)

    async def detect_anomalies(self, analysis_input: AnalysisInput) -> Optional[List[Anomaly]]:
        if not analysis_input.accounts:
            return None
        text = await self._complete(ANOMALY_PROMPT, build_digest(analysis_input), self.max_tokens)
        if text is None:
            return None
        return parse_anomalies(text)
