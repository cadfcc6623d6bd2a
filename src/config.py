"""Configuration module for the AI settings store.

This module provides centralized configuration management, including data
paths, storage limits, the fixed encryption secret, the builtin provider
registry and API server settings.
All configuration values can be overridden via environment variables.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional, Union

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# --- Directory Configuration ---

# Root directory of the project
ROOT_DIR = Path(__file__).parent.parent.resolve()

# Data directory (SQLite files live here)
DATA_DIR = Path(os.getenv("AI_SETTINGS_DATA_DIR", str(ROOT_DIR / "data"))).resolve()

# --- Storage Configuration ---

# Current key-value store (profiles, provider configs, metadata buckets)
STORAGE_DATABASE_URL: str = os.getenv(
    "STORAGE_DATABASE_URL", f"sqlite:///{DATA_DIR}/ai_settings.db"
)

# Prior-generation database, only read during migration
LEGACY_DATABASE_URL: str = os.getenv(
    "LEGACY_DATABASE_URL", f"sqlite:///{DATA_DIR}/ai_settings_legacy.db"
)

# Same budget a browser gives localStorage (5 MiB). 0 disables the check.
STORAGE_QUOTA_BYTES: int = int(os.getenv("STORAGE_QUOTA_BYTES", str(5 * 1024 * 1024)))

# Bucket keys inside the key-value store
PROFILES_KEY = "ai-profiles"
PROVIDERS_KEY = "ai-providers"
METADATA_KEY = "ai-metadata"

# Flat single-profile settings written by the first generation of the app
LEGACY_SETTINGS_KEY = "ai-settings"

# --- Schema & Profile Configuration ---

CURRENT_SCHEMA_VERSION: int = 2
SCHEMA_VERSION_KEY = "schema_version"
ACTIVE_PROFILE_KEY = "active_profile_id"

PROFILE_NAME_MAX_LENGTH: int = 50
DEFAULT_PROFILE_NAME = "Default"

# Delete legacy data once a migration has been verified
CLEANUP_LEGACY_AFTER_MIGRATION: bool = (
    os.getenv("CLEANUP_LEGACY_AFTER_MIGRATION", "true").lower() == "true"
)

# --- Encryption Configuration ---

# Fixed application secret. Every install shares it; it only keeps API keys
# from sitting in the store as plain text.
ENCRYPTION_SECRET: str = os.getenv(
    "AI_SETTINGS_ENCRYPTION_SECRET", "devutils-ai-settings-v1-static-key"
)
ENCRYPTION_SALT: bytes = b"devutils-ai-settings-salt"
ENCRYPTION_KDF_ITERATIONS: int = 100_000

# --- Provider Configuration ---

CUSTOM_PROVIDER_PREFIX = "custom-"

# Registry of builtin providers
BUILTIN_PROVIDERS: Dict[str, Dict[str, Union[str, bool, List[str], Optional[str]]]] = {
    "openai": {
        "display_name": "OpenAI",
        "description": "GPT-4o, GPT-4 Turbo, GPT-3.5, or OpenAI-compatible APIs",
        "models": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
        "supports_custom_endpoint": True,
        "fixed_base_url": None,
        "default_model": "gpt-4o-mini",
        "placeholder": "sk-...",
    },
    "anthropic": {
        "display_name": "Anthropic (Claude)",
        "description": "Claude 3.5 Sonnet, Opus, and Haiku models",
        "models": [
            "claude-sonnet-4-20250514",
            "claude-3-5-sonnet-20241022",
            "claude-3-opus-20240229",
            "claude-3-haiku-20240307",
        ],
        "supports_custom_endpoint": False,
        "fixed_base_url": None,
        "default_model": "claude-sonnet-4-20250514",
        "placeholder": "sk-ant-...",
    },
    "google": {
        "display_name": "Google (Gemini)",
        "description": "Gemini 2.5 Pro, Flash, and 2.0 models via OpenAI-compatible API",
        "models": [
            "gemini-2.5-pro",
            "gemini-2.5-flash",
            "gemini-2.5-flash-lite",
            "gemini-2.0-flash",
            "gemini-2.0-flash-lite",
            "gemini-3-pro-preview",
            "gemini-3-flash-preview",
        ],
        "supports_custom_endpoint": False,
        "fixed_base_url": "https://generativelanguage.googleapis.com/v1beta/openai",
        "default_model": "gemini-3-flash-preview",
        "placeholder": "AIza...",
    },
    "anthropic-custom": {
        "display_name": "Claude (Custom Endpoint)",
        "description": "Claude via custom API endpoint or proxy",
        "models": [
            "claude-sonnet-4-20250514",
            "claude-3-5-sonnet-20241022",
            "claude-3-opus-20240229",
            "claude-3-haiku-20240307",
        ],
        "supports_custom_endpoint": True,
        "fixed_base_url": None,
        "default_model": "claude-sonnet-4-20250514",
        "placeholder": "sk-ant-...",
    },
    "cerebras": {
        "display_name": "Cerebras",
        "description": "Llama, Qwen, and GPT-OSS inference via Cerebras Cloud",
        "models": [
            "llama-3.3-70b",
            "llama3.1-8b",
            "gpt-oss-120b",
            "qwen-3-32b",
            "qwen-3-235b-a22b-instruct-2507",
            "zai-glm-4.6",
        ],
        "supports_custom_endpoint": False,
        "fixed_base_url": "https://api.cerebras.ai/v1",
        "default_model": "llama-3.3-70b",
        "placeholder": "csk-...",
    },
}

# --- API Server Configuration ---

API_HOST: str = os.getenv("API_HOST", "127.0.0.1")
API_PORT: int = int(os.getenv("API_PORT", "8000"))

# CORS allowed origins (comma-separated list)
_CORS_ALLOWED_ORIGINS_STR: str = os.getenv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000",
)
CORS_ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in _CORS_ALLOWED_ORIGINS_STR.split(",")
    if origin.strip()
]

# --- Logging Configuration ---

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
