"""
PixelVerse Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Provider Configuration
    # "idle" runs the world without any generation service (agents only act quietly).
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "idle")

    # Two model tiers: cheap for routine thoughts, expensive for important ones
    LLM_MODEL_CHEAP: str = os.getenv("LLM_MODEL_CHEAP", "gpt-5-nano")
    LLM_MODEL_EXPENSIVE: str = os.getenv("LLM_MODEL_EXPENSIVE", "gpt-5-mini")

    # Ask the model for a JSON decision instead of a tagged line
    LLM_STRUCTURED_DECISIONS: bool = os.getenv("LLM_STRUCTURED_DECISIONS", "true").lower() in (
        "1",
        "true",
        "yes",
    )

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Local LLM Configuration (Ollama)
    OLLAMA_BASE_URL: str | None = os.getenv("OLLAMA_BASE_URL")

    # Per-request ceiling on a generation call. 0 disables the timeout.
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

    # Global cap on in-flight generation calls across all agents
    MAX_CONCURRENT_THINKING: int = int(os.getenv("MAX_CONCURRENT_THINKING", "10"))

    # Tick loop
    TICK_INTERVAL_SECONDS: float = float(os.getenv("TICK_INTERVAL_SECONDS", "42"))
    RANDOM_THOUGHT_CHANCE: float = float(os.getenv("RANDOM_THOUGHT_CHANCE", "0.15"))
    LOW_STAT_THRESHOLD: int = int(os.getenv("LOW_STAT_THRESHOLD", "20"))

    # Memory
    ACTIVITY_LOG_LIMIT: int = int(os.getenv("ACTIVITY_LOG_LIMIT", "200"))
    CONTEXT_ACTIVITY_COUNT: int = int(os.getenv("CONTEXT_ACTIVITY_COUNT", "10"))
    CONTEXT_SOCIAL_COUNT: int = int(os.getenv("CONTEXT_SOCIAL_COUNT", "5"))
    COMPRESS_WINDOW: int = int(os.getenv("COMPRESS_WINDOW", "50"))
    SUMMARY_CHAR_BUDGET: int = int(os.getenv("SUMMARY_CHAR_BUDGET", "500"))
    FRIENDSHIP_THRESHOLD: int = int(os.getenv("FRIENDSHIP_THRESHOLD", "3"))

    # Periodic jobs (seconds of world-clock time)
    DECAY_INTERVAL_SECONDS: float = float(os.getenv("DECAY_INTERVAL_SECONDS", "600"))
    COMPRESS_INTERVAL_SECONDS: float = float(os.getenv("COMPRESS_INTERVAL_SECONDS", "600"))
    CLEANUP_INTERVAL_SECONDS: float = float(os.getenv("CLEANUP_INTERVAL_SECONDS", "3600"))
    REFLECT_INTERVAL_SECONDS: float = float(os.getenv("REFLECT_INTERVAL_SECONDS", "21600"))
    SOCIAL_HEALTH_INTERVAL_SECONDS: float = float(
        os.getenv("SOCIAL_HEALTH_INTERVAL_SECONDS", "10800")
    )
    EVOLVE_INTERVAL_SECONDS: float = float(os.getenv("EVOLVE_INTERVAL_SECONDS", "604800"))

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    DATA_DIR: Path = Path(os.getenv("PIXELVERSE_DATA_DIR", "pixelverse_data"))
    WORLDS_DIR: Path = PROJECT_ROOT / "examples" / "worlds"

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.MAX_CONCURRENT_THINKING < 1:
            raise ValueError("MAX_CONCURRENT_THINKING must be at least 1")

        if not 0.0 <= cls.RANDOM_THOUGHT_CHANCE <= 1.0:
            raise ValueError("RANDOM_THOUGHT_CHANCE must be between 0 and 1")

        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For local models, set LLM_PROVIDER=ollama instead."
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "PixelVerse Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  Models: cheap={cls.LLM_MODEL_CHEAP} expensive={cls.LLM_MODEL_EXPENSIVE}",
            f"  Max concurrent thinking: {cls.MAX_CONCURRENT_THINKING}",
            f"  Tick interval: {cls.TICK_INTERVAL_SECONDS}s",
            f"  Random thought chance: {cls.RANDOM_THOUGHT_CHANCE:.0%}",
            f"  Data dir: {cls.DATA_DIR}",
        ]
        return "\n".join(lines)
