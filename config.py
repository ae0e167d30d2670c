"""Generation settings read from the environment."""
import os
from typing import List, Optional


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Context assembly
CONTEXT_TURN_LIMIT = int(os.getenv("CONTEXT_TURN_LIMIT", "15"))
PERSONA_NAME = os.getenv("PERSONA_NAME", "Avneesh")

# Local tier (Ollama behind a tunnel)
OLLAMA_URL: Optional[str] = os.getenv("OLLAMA_URL")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "mistral:latest")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "90"))
OLLAMA_SERIALIZATION = os.getenv("OLLAMA_SERIALIZATION", "chat")

# Hosted tiers
GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
HOSTED_MODEL_PROVIDER = os.getenv("HOSTED_MODEL_PROVIDER", "google_genai")
HOSTED_MODELS = _env_list("HOSTED_MODELS", "gemini-2.0-flash-lite,gemini-1.5-flash")
HOSTED_TIMEOUT = float(os.getenv("HOSTED_TIMEOUT", "30"))

# Title summarization
TITLE_TIER: Optional[str] = os.getenv("TITLE_TIER")
TITLE_MAX_LENGTH = int(os.getenv("TITLE_MAX_LENGTH", "60"))
TITLE_TIMEOUT = float(os.getenv("TITLE_TIMEOUT", "20"))
TITLE_MIN_TURNS = int(os.getenv("TITLE_MIN_TURNS", "2"))
TITLE_SWEEP_INTERVAL = float(os.getenv("TITLE_SWEEP_INTERVAL", "300"))
TITLE_SWEEP_BATCH = int(os.getenv("TITLE_SWEEP_BATCH", "5"))
TITLE_SWEEP_DELAY = float(os.getenv("TITLE_SWEEP_DELAY", "2.0"))
TITLE_SWEEP_JITTER = float(os.getenv("TITLE_SWEEP_JITTER", "1.0"))
TITLE_CONCURRENCY = int(os.getenv("TITLE_CONCURRENCY", "1"))
TITLE_RATE_LIMIT = os.getenv("TITLE_RATE_LIMIT", "10/m")
