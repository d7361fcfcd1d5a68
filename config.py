#!/usr/bin/env python3

import os
from typing import Dict, Any
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1/chat/completions"
DEFAULT_MODEL = "google/gemini-2.5-flash"


class ConfigError(ValueError):
    """Raised at startup when required configuration is missing or invalid"""


class AppConfig:
    """Application configuration from environment variables"""

    def __init__(self):
        # Server Configuration
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT", "8000"))
        self.debug = os.getenv("DEBUG", "false").lower() == "true"

        # Database Configuration
        self.database_path = os.getenv("DATABASE_PATH", "agent_chat.db")

        # Upstream completion provider (API key required)
        self.gateway_api_key = os.getenv("AI_GATEWAY_API_KEY")
        self.gateway_url = os.getenv("AI_GATEWAY_URL", DEFAULT_GATEWAY_URL)
        self.model = os.getenv("AI_MODEL", DEFAULT_MODEL)
        self.upstream_timeout = float(os.getenv("UPSTREAM_TIMEOUT", "30"))

        # Retry only applies to rate limiting; 0 disables it
        self.upstream_max_retries = int(os.getenv("UPSTREAM_MAX_RETRIES", "0"))
        self.upstream_retry_base_delay = float(os.getenv("UPSTREAM_RETRY_BASE_DELAY", "1.0"))

        # Chat Configuration
        self.max_message_length = int(os.getenv("MAX_MESSAGE_LENGTH", "0"))  # 0 disables the limit
        self.stream_idle_timeout = float(os.getenv("STREAM_IDLE_TIMEOUT", "60"))  # seconds

        # Client Configuration
        self.chat_url = os.getenv("CHAT_URL", f"http://localhost:{self.port}/chat")

        # CORS Configuration
        cors_origins_str = os.getenv("CORS_ORIGINS", "*")
        self.cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]


def get_config() -> AppConfig:
    """Read a fresh configuration from the environment"""
    return AppConfig()


def validate_required_config(config: AppConfig) -> bool:
    """Validate that all required configuration is present"""
    required_fields = {"gateway_api_key": "AI_GATEWAY_API_KEY"}
    missing_fields = []

    for field, env_name in required_fields.items():
        if not getattr(config, field, None):
            missing_fields.append(env_name)

    if missing_fields:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing_fields)}")

    if config.upstream_max_retries < 0:
        raise ConfigError("UPSTREAM_MAX_RETRIES must not be negative")

    return True


def get_upstream_config(config: AppConfig) -> Dict[str, Any]:
    """Get upstream provider configuration"""
    return {
        "url": config.gateway_url,
        "api_key": config.gateway_api_key,
        "model": config.model,
        "timeout": config.upstream_timeout,
        "max_retries": config.upstream_max_retries,
        "retry_base_delay": config.upstream_retry_base_delay,
    }

