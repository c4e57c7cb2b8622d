"""Application services: per-fragment analytics pipeline, insights, and the call-assist facade."""
from assist.services.analytics_pipeline import CallAnalyticsPipeline
from assist.services.call_assist import CallAssistService
from assist.services.insight_engine import InsightEngine

__all__ = ["CallAnalyticsPipeline", "CallAssistService", "InsightEngine"]
