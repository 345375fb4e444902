# config.py
import os
from typing import List, Union

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    mongodb_uri: str
    mongodb_db: str = "product_intake"

    openai_api_key: str
    openai_model: str = "gpt-4o-mini"
    openai_timeout: int = 45
    openai_retries: int = 0
    openai_retry_base_delay: float = 0.6
    model_temperature: float = 0.2
    max_tokens_reply: int = 300
    enable_moderation: bool = True
    moderation_model: str = "omni-moderation-latest"

    frontend_origins: Union[str, List[str]] = "*"
    port: int = 5000
    session_ttl_seconds: int = 24 * 3600
    session_max_entries: int = 1000
    max_input_chars: int = 2000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Read settings from the process environment (and a local .env file).
        Missing MONGODB_URI or OPENAI_API_KEY is fatal.
        """
        load_dotenv()

        mongodb_uri = os.getenv("MONGODB_URI")
        if not mongodb_uri:
            # required at boot
            raise RuntimeError("Missing MONGODB_URI env var.")
        openai_api_key = os.getenv("OPENAI_API_KEY")
        if not openai_api_key:
            raise RuntimeError("Missing OPENAI_API_KEY env var.")

        # single origin or CSV; "*" allowed
        origins_env = os.getenv("FRONTEND_URL", "*")
        origins = "*" if origins_env.strip() == "*" else [o.strip() for o in origins_env.split(",") if o.strip()]

        return cls(
            mongodb_uri=mongodb_uri,
            mongodb_db=os.getenv("MONGODB_DB", "product_intake"),
            openai_api_key=openai_api_key,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_timeout=int(os.getenv("OPENAI_TIMEOUT", "45")),
            openai_retries=int(os.getenv("OPENAI_RETRIES", "0")),
            openai_retry_base_delay=float(os.getenv("OPENAI_RETRY_BASE_DELAY", "0.6")),
            model_temperature=float(os.getenv("MODEL_TEMPERATURE", "0.2")),
            max_tokens_reply=int(os.getenv("MAX_TOKENS_REPLY", "300")),
            enable_moderation=os.getenv("ENABLE_MODERATION", "1") == "1",
            moderation_model=os.getenv("MODERATION_MODEL", "omni-moderation-latest"),
            frontend_origins=origins or "*",
            port=int(os.getenv("PORT", "5000")),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", str(24 * 3600))),
            session_max_entries=int(os.getenv("SESSION_MAX_ENTRIES", "1000")),
            max_input_chars=int(os.getenv("MAX_INPUT_CHARS", "2000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
