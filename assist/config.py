"""Application configuration. Loads from env vars."""
from pydantic_settings import BaseSettings
from typing import Literal


class Settings(BaseSettings):
    """App settings. Override via environment variables."""

    # LLM backend for analysis calls: "cloudflare" (Workers AI) | "azure" (Azure OpenAI deployment)
    LLM_BACKEND: Literal["cloudflare", "azure"] = "cloudflare"

    # Cloudflare Workers AI
    CLOUDFLARE_ACCOUNT_ID: str = ""
    CLOUDFLARE_API_TOKEN: str = ""
    CLOUDFLARE_MODEL: str = "@cf/meta/llama-3.1-8b-instruct"

    # Azure OpenAI (chat completions deployment)
    AZURE_OPENAI_ENDPOINT: str = ""
    AZURE_OPENAI_KEY: str = ""
    AZURE_OPENAI_API_VERSION: str = "2024-06-01"
    AZURE_OPENAI_LLM_DEPLOYMENT: str = ""

    # Per-call bound for every external analysis request (seconds). Timeout = analysis failure.
    ANALYSIS_TIMEOUT_SECONDS: float = 5.0

    # Token budgets per analysis kind
    SENTIMENT_MAX_TOKENS: int = 150
    CALL_REASON_MAX_TOKENS: int = 50
    ESCALATION_MAX_TOKENS: int = 200
    COACHING_MAX_TOKENS: int = 150
    SUMMARY_MAX_TOKENS: int = 300
    AGENT_QUERY_MAX_TOKENS: int = 300

    # Session bounds
    TRANSCRIPT_MAX_FRAGMENTS: int = 50
    INSIGHTS_MAX: int = 5
    VOICE_ACTIVITY_MAX_EVENTS: int = 100

    # Pipeline thresholds
    CALL_REASON_FRAGMENT_LIMIT: int = 3  # call reason recomputed only while transcript length <= this
    ESCALATION_CONTEXT_FRAGMENTS: int = 5  # recent fragments sent with the escalation check
    ESCALATION_CONFIDENCE_THRESHOLD: float = 0.7
    LONG_CALL_SECONDS: int = 300

    # Speaker attribution
    SPEAKER_LEARNING_ENABLED: bool = True
    SPEAKER_ALTERNATION_ENABLED: bool = True  # false = only short fragments alternate
    SPEAKER_PATTERN_WORDS: int = 5
    SPEAKER_PATTERN_MIN_CONFIDENCE: float = 0.7
    SPEAKER_SHORT_TEXT_CHARS: int = 20
    SPEAKER_CORRECTION_LOG_MAX: int = 100
    # Pattern keys kept (least recently used evicted first). 0 = unbounded.
    SPEAKER_PATTERN_MAX_KEYS: int = 10000
    # JSON file backing the learned pattern table. Empty = in-memory only.
    SPEAKER_PATTERN_STORE_PATH: str = ""

    # Ended calls: one .txt (speaker-tagged transcript) + one .json (summary) per session.
    TRANSCRIPT_SAVE_ENABLED: bool = False
    TRANSCRIPT_DIR: str = "./transcripts"
    TRANSCRIPT_ADD_TIMESTAMPS: bool = True  # prefix each line with [MM:SS.ss]

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path empty = console only.
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"


def get_settings() -> Settings:
    return Settings()
