"""Configuration management for the AVAS chat relay."""
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from logger import setup_logging

# Model Configuration
DEFAULT_MODEL = "gemini-1.5-flash"
AVAILABLE_MODELS = (
    {"name": "models/gemini-pro", "description": "Gemini Pro"},
    {"name": "models/gemini-pro-vision", "description": "Gemini Pro Vision"},
)

# Server Configuration
DEFAULT_PORT = 3001
MAX_BODY_BYTES = 1024 * 1024  # 1 MiB, same limit as the web app's JSON parser

# Client Configuration
DEFAULT_API_URL = f"http://localhost:{DEFAULT_PORT}"
DEFAULT_STORAGE_PATH = Path.home() / ".avas" / "storage.json"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class GenerationSettings:
    """Sampling parameters sent with every Gemini request."""
    temperature: float = 1.0
    top_p: float = 0.95
    top_k: int = 40
    max_output_tokens: int = 8192
    candidate_count: int = 1


@dataclass(frozen=True)
class Settings:
    """
    Process-wide configuration.

    Built once at startup (usually with from_env) and passed explicitly to the
    relay app and the chat client.
    """
    gemini_api_key: str = ""
    gemini_model: str = DEFAULT_MODEL
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    assistant_name: str = "AVAS"

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    cors_origins: Tuple[str, ...] = ("*",)
    max_body_bytes: int = MAX_BODY_BYTES

    log_level: str = "INFO"
    log_format: str = "text"

    api_base_url: str = DEFAULT_API_URL
    storage_path: Path = DEFAULT_STORAGE_PATH
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_table: str = "kv_store"

    @property
    def gemini_configured(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from the environment.

        Args:
            env: Mapping to read instead of os.environ (a .env file is only
                loaded when reading the real environment)

        Returns:
            Settings instance
        """
        if env is None:
            load_dotenv()
            env = os.environ

        generation = GenerationSettings(
            temperature=float(env.get("GEMINI_TEMPERATURE", "1.0")),
            top_p=float(env.get("GEMINI_TOP_P", "0.95")),
            top_k=int(env.get("GEMINI_TOP_K", "40")),
            max_output_tokens=int(env.get("GEMINI_MAX_OUTPUT_TOKENS", "8192")),
        )

        origins = tuple(
            origin.strip()
            for origin in env.get("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        )

        return cls(
            gemini_api_key=env.get("GEMINI_API_KEY", ""),
            gemini_model=env.get("GEMINI_MODEL") or DEFAULT_MODEL,
            generation=generation,
            assistant_name=env.get("ASSISTANT_NAME", "AVAS"),
            host=env.get("HOST", "0.0.0.0"),
            port=int(env.get("PORT", str(DEFAULT_PORT))),
            cors_origins=origins or ("*",),
            max_body_bytes=int(env.get("MAX_BODY_BYTES", str(MAX_BODY_BYTES))),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_format=env.get("LOG_FORMAT", "text").lower(),
            api_base_url=env.get("AVAS_API_URL", DEFAULT_API_URL),
            storage_path=Path(env.get("AVAS_STORAGE_PATH", str(DEFAULT_STORAGE_PATH))).expanduser(),
            supabase_url=env.get("SUPABASE_URL") or None,
            supabase_key=env.get("SUPABASE_KEY") or None,
            supabase_table=env.get("SUPABASE_TABLE", "kv_store"),
        )


def configure_logging(settings: Settings) -> None:
    """Install the root logging handler selected by LOG_FORMAT."""
    if settings.log_format == "json":
        setup_logging(settings.log_level)
    else:
        logging.basicConfig(
            level=getattr(logging, settings.log_level, logging.INFO),
            format=LOG_FORMAT
        )
