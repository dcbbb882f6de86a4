import os
from typing import Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant. Provide concise, friendly, and accurate responses."

class Settings(BaseSettings):
    app_name: str = "AI Chatbot Widget API"
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", 8001))
    api_prefix: str = os.getenv("API_PREFIX", "/api/v1")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Storage
    mongo_url: str = os.getenv("MONGO_URL", "mongodb://localhost:27017")
    mongo_db: str = os.getenv("MONGO_DB", "ai_chatbot")
    mongo_connect_timeout_ms: int = int(os.getenv("MONGO_CONNECT_TIMEOUT_MS", 5000))
    storage_backend: str = os.getenv("STORAGE_BACKEND", "auto")  # auto, mongo, memory
    session_ttl_hours: int = int(os.getenv("SESSION_TTL_HOURS", 24))
    session_sweep_interval_seconds: int = int(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", 300))
    max_append_retries: int = int(os.getenv("MAX_APPEND_RETRIES", 3))
    message_log_cap: int = int(os.getenv("MESSAGE_LOG_CAP", 1000))

    # LLM provider
    openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    openai_max_tokens: int = int(os.getenv("OPENAI_MAX_TOKENS", 500))
    openai_temperature: float = float(os.getenv("OPENAI_TEMPERATURE", 0.7))
    llm_timeout_seconds: float = float(os.getenv("LLM_TIMEOUT_SECONDS", 30))
    system_prompt: str = os.getenv("SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT)

    # Credentials
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", 12))
    admin_api_key: Optional[str] = os.getenv("ADMIN_API_KEY")

    # Payments
    stripe_secret_key: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")

    class Config:
        env_file = ".env"
        extra = "allow"

settings = Settings()
