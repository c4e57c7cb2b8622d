"""
LLMAnalysisProvider: analysis capabilities via a hosted chat model over HTTP.

Backends (LLM_BACKEND):
- cloudflare: Workers AI REST API, { "result": { "response": "..." } }.
- azure: Azure OpenAI chat completions deployment, { "choices": [ { "message": { "content": "..." } } ] }.

Every failure is raised as ExternalAnalysisFailure / MalformedAnalysisResponse; the
pipeline decides the fallback.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from assist.analysis.base import (
    AgentQueryContext,
    AnalysisProvider,
    CoachingContext,
    EscalationResult,
    SentimentResult,
)
from assist.analysis.parsing import parse_call_reason, parse_escalation, parse_sentiment
from assist.config import Settings, get_settings
from assist.errors import ExternalAnalysisFailure, MalformedAnalysisResponse
from assist.models import Speaker

logger = logging.getLogger(__name__)

CALL_REASONS = (
    "billing_inquiry",
    "technical_support",
    "account_management",
    "service_complaint",
    "new_service_request",
    "cancellation_request",
    "general_inquiry",
    "product_information",
)

ESCALATION_KEYWORDS = (
    "manager",
    "supervisor",
    "complaint",
    "unacceptable",
    "terrible",
    "awful",
    "frustrated",
    "angry",
    "disappointed",
    "cancel",
    "lawyer",
    "sue",
    "better business bureau",
    "review",
    "social media",
    "twitter",
)
ESCALATION_KEYWORD_BOOST = 0.2

_SENTIMENT_SYSTEM = "You are a sentiment analysis expert. Analyze customer service conversations and return JSON only."
_CALL_REASON_SYSTEM = (
    "You are a call categorization expert for telecommunications. Categorize the main reason for customer calls."
)
_ESCALATION_SYSTEM = (
    "You are an escalation detection expert. Determine if customer service calls need supervisor escalation."
)
_CUSTOMER_COACH_SYSTEM = (
    "You are an expert agent coach. Provide helpful real-time suggestions for contact center agents "
    "based on customer statements. Keep suggestions brief and actionable."
)
_AGENT_COACH_SYSTEM = (
    "You are an expert agent coach. Provide feedback and suggestions for contact center agents "
    "based on their responses to customers. Keep suggestions brief and actionable."
)
_SUMMARY_SYSTEM = (
    "You are a call summarization expert. Create concise, professional call summaries for contact center records."
)
_AGENT_QUERY_SYSTEM = (
    "You are an expert contact center assistant helping agents during live calls. "
    "Provide helpful, actionable responses."
)


def has_escalation_keyword(text: str) -> bool:
    lower = (text or "").lower()
    return any(k in lower for k in ESCALATION_KEYWORDS)


def _extract_content(backend: str, data: Any) -> str:
    """Pull assistant text out of either backend's response shape."""
    if not isinstance(data, dict):
        return ""
    if backend == "azure":
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message") or {}
        return (message.get("content") or "").strip() if isinstance(message, dict) else ""
    result = data.get("result", data)
    if isinstance(result, dict):
        content = result.get("response", "") or ""
    elif isinstance(result, str):
        content = result
    else:
        content = ""
    return (content or "").strip() if isinstance(content, str) else ""


class LLMAnalysisProvider(AnalysisProvider):
    """
    One HTTP request per capability. transport is injectable (httpx.MockTransport in tests).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    def _endpoint(self) -> tuple[str, dict[str, str]]:
        """Return (url, headers). Raises ExternalAnalysisFailure if credentials are missing."""
        s = self._settings
        if s.LLM_BACKEND == "azure":
            endpoint = (s.AZURE_OPENAI_ENDPOINT or "").strip().rstrip("/")
            key = (s.AZURE_OPENAI_KEY or "").strip()
            deployment = (s.AZURE_OPENAI_LLM_DEPLOYMENT or "").strip()
            if not endpoint or not key or not deployment:
                raise ExternalAnalysisFailure(
                    "config", "AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_KEY and AZURE_OPENAI_LLM_DEPLOYMENT are required"
                )
            url = (
                f"{endpoint}/openai/deployments/{deployment}/chat/completions"
                f"?api-version={s.AZURE_OPENAI_API_VERSION}"
            )
            return url, {"api-key": key, "Content-Type": "application/json"}
        account_id = (s.CLOUDFLARE_ACCOUNT_ID or "").strip()
        token = (s.CLOUDFLARE_API_TOKEN or "").strip()
        if not account_id or not token:
            raise ExternalAnalysisFailure("config", "CLOUDFLARE_ACCOUNT_ID and CLOUDFLARE_API_TOKEN are required")
        url = f"https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/run/{s.CLOUDFLARE_MODEL}"
        return url, {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def _complete(
        self,
        kind: str,
        system: str,
        user: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        url, headers = self._endpoint()
        payload = {
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.ANALYSIS_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                resp = await client.post(url, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            reason = "rate limited" if status == 429 else f"HTTP {status}"
            raise ExternalAnalysisFailure(kind, reason) from e
        except httpx.HTTPError as e:
            raise ExternalAnalysisFailure(kind, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise MalformedAnalysisResponse(kind, "response body is not JSON") from e

        content = _extract_content(self._settings.LLM_BACKEND, data)
        if not content:
            raise MalformedAnalysisResponse(kind, "empty response")
        logger.debug("%s response: %s", kind, content[:200])
        return content

    async def classify_sentiment(self, text: str) -> SentimentResult:
        user = (
            f'Analyze sentiment of: "{text}". Return JSON: '
            '{"sentiment": "positive|negative|neutral", "confidence": 0.0-1.0, "reasoning": "brief explanation"}'
        )
        raw = await self._complete(
            "sentiment", _SENTIMENT_SYSTEM, user, self._settings.SENTIMENT_MAX_TOKENS, 0.3
        )
        result = parse_sentiment(raw)
        logger.info("Sentiment analysis: %s (%.2f)", result.sentiment.value, result.confidence)
        return result

    async def classify_call_reason(self, text: str) -> str:
        user = (
            f'Categorize this call reason: "{text}". Choose from: {", ".join(CALL_REASONS)}. '
            "Return only the category."
        )
        raw = await self._complete(
            "call_reason", _CALL_REASON_SYSTEM, user, self._settings.CALL_REASON_MAX_TOKENS, 0.2
        )
        reason = parse_call_reason(raw)
        logger.info("Call reason detected: %s", reason)
        return reason

    async def check_escalation(self, text: str, recent_context: list[str]) -> EscalationResult:
        conversation = "\n".join(recent_context) if recent_context else "(none)"
        user = (
            f"Recent conversation:\n{conversation}\n\nLatest: \"{text}\"\n\n"
            "Should this be escalated? Return JSON: "
            '{"shouldEscalate": true|false, "confidence": 0.0-1.0, "reasoning": "brief explanation"}'
        )
        raw = await self._complete(
            "escalation", _ESCALATION_SYSTEM, user, self._settings.ESCALATION_MAX_TOKENS, 0.3
        )
        result = parse_escalation(raw)
        if result.should_escalate and has_escalation_keyword(text):
            result = EscalationResult(
                should_escalate=True,
                confidence=min(result.confidence + ESCALATION_KEYWORD_BOOST, 1.0),
                reasoning=result.reasoning,
            )
        logger.info(
            "Escalation check: %s (%.2f)",
            "ESCALATE" if result.should_escalate else "CONTINUE",
            result.confidence,
        )
        return result

    async def generate_coaching_text(self, role: Speaker, text: str, context: CoachingContext) -> str:
        details = f"Call reason: {context.call_reason or 'unknown'}\nCustomer sentiment: {context.sentiment.value}"
        if role is Speaker.CUSTOMER:
            system = _CUSTOMER_COACH_SYSTEM
            user = f'Customer just said: "{text}"\n{details}\n\nProvide 1-2 brief suggestions for the agent:'
        else:
            system = _AGENT_COACH_SYSTEM
            user = f'Agent just said: "{text}"\n{details}\n\nProvide 1-2 brief coaching tips for the agent:'
        return await self._complete("coaching", system, user, self._settings.COACHING_MAX_TOKENS, 0.4)

    async def summarize_call(self, transcript_text: str) -> str:
        user = (
            f"Summarize this customer service call:\n\n{transcript_text or '(empty transcript)'}\n\n"
            "Provide: 1) Issue summary 2) Resolution/outcome 3) Next steps if any"
        )
        return await self._complete("summary", _SUMMARY_SYSTEM, user, self._settings.SUMMARY_MAX_TOKENS, 0.3)

    async def answer_agent_query(self, query: str, context: AgentQueryContext) -> str:
        if context.call_reason is not None:
            call_context = (
                f"Current call context: Reason={context.call_reason}, "
                f"Sentiment={context.sentiment.value if context.sentiment else 'neutral'}, "
                f"Duration={context.duration_seconds or 0}s"
            )
        else:
            call_context = "No active call"
        if context.recent_transcript:
            transcript_context = "Recent conversation:\n" + "\n".join(context.recent_transcript)
        else:
            transcript_context = "No recent conversation available"
        system = f"{_AGENT_QUERY_SYSTEM} {call_context}\n\n{transcript_context}"
        return await self._complete("agent_query", system, query, self._settings.AGENT_QUERY_MAX_TOKENS, 0.4)
