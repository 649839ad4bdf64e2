"""Runtime settings and startup configuration validation.

``Settings.from_env()`` is the single place environment variables are read.
``validate_config()`` is called from ``bot.main`` so that a missing key
causes a clear startup failure rather than a silent mid-call crash.
"""

import os
import sys
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "OPENAI_API_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_FROM_NUMBER",
    "PUBLIC_BASE_URL",
    "RECORD_STORE_URL",
]

OPTIONAL_VARS = [
    "RECORD_STORE_API_KEY",
    "SMTP_HOST",
    "SMTP_USER",
    "SMTP_PASSWORD",
    "EMAIL_FROM",
    "AGENT_NAME",
    "BUSINESS_NAME",
    "BULK_CALL_DELAY_S",
    "MACHINE_DETECTION",
    "LOG_LEVEL",
]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


def _env_keywords(name: str) -> frozenset | None:
    raw = os.getenv(name, "")
    words = {w.strip().lower() for w in raw.split(",") if w.strip()}
    return frozenset(words) if words else None


@dataclass(frozen=True)
class Settings:
    # Persona
    agent_name: str = "Sarah"
    business_name: str = "Premier Auto"

    # Conversation limits
    max_turns: int = 10
    session_timeout_s: float = 60.0
    max_call_duration_s: float = 300.0

    # Classifier tuning
    confidence_threshold: float = 0.5
    asr_confidence_threshold: float = 0.5
    affirmative_keywords: frozenset | None = None
    negative_keywords: frozenset | None = None
    interest_keywords: frozenset | None = None

    # Text generator
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    llm_timeout_s: float = 5.0

    # Record store
    record_store_url: str = ""
    record_store_api_key: str = ""

    # Email
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    email_from: str = ""

    # Telephony
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    public_base_url: str = ""
    bulk_call_delay_s: float = 5.0
    machine_detection: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            agent_name=os.getenv("AGENT_NAME", "Sarah"),
            business_name=os.getenv("BUSINESS_NAME", "Premier Auto"),
            max_turns=_env_int("MAX_TURNS", 10),
            session_timeout_s=_env_float("SESSION_TIMEOUT_S", 60.0),
            max_call_duration_s=_env_float("MAX_CALL_DURATION_S", 300.0),
            confidence_threshold=_env_float("CONFIDENCE_THRESHOLD", 0.5),
            asr_confidence_threshold=_env_float("ASR_CONFIDENCE_THRESHOLD", 0.5),
            affirmative_keywords=_env_keywords("AFFIRMATIVE_KEYWORDS"),
            negative_keywords=_env_keywords("NEGATIVE_KEYWORDS"),
            interest_keywords=_env_keywords("INTEREST_KEYWORDS"),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            llm_timeout_s=_env_float("LLM_TIMEOUT_S", 5.0),
            record_store_url=os.getenv("RECORD_STORE_URL", ""),
            record_store_api_key=os.getenv("RECORD_STORE_API_KEY", ""),
            smtp_host=os.getenv("SMTP_HOST", ""),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=os.getenv("SMTP_USER", ""),
            smtp_password=os.getenv("SMTP_PASSWORD", ""),
            email_from=os.getenv("EMAIL_FROM", ""),
            twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN", ""),
            twilio_from_number=os.getenv("TWILIO_FROM_NUMBER", ""),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "").rstrip("/"),
            bulk_call_delay_s=_env_float("BULK_CALL_DELAY_S", 5.0),
            machine_detection=os.getenv("MACHINE_DETECTION", "true").strip().lower() not in ("0", "false", "no", "off"),
        )


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or the deployment's secret store.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)

    if not os.getenv("SMTP_HOST"):
        logger.warning("SMTP_HOST not set: follow-up emails will be skipped")
