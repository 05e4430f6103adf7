
from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("reno-purchases", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Project documents and attachment bytes
    data_dir: str = Field("data/reno", alias="RENO_DATA_DIR")
    storage_root: str = Field("storage", alias="RENO_STORAGE_ROOT")

    # Invoice extraction (LLM)
    invoice_llm_provider: str = Field("openai", alias="RENO_INVOICE_LLM_PROVIDER")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_base_url: str = Field("https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    invoice_llm_model: str = Field("gpt-5-nano", alias="RENO_INVOICE_LLM_MODEL")
    invoice_llm_second_pass_model: str = Field("gpt-5-mini", alias="RENO_INVOICE_LLM_SECOND_PASS_MODEL")
    invoice_llm_timeout: float = Field(120.0, alias="RENO_INVOICE_LLM_TIMEOUT")

    # Extractor audit logging
    invoice_debug: bool = Field(False, alias="RENO_INVOICE_DEBUG")
    invoice_debug_log: str = Field("storage/logs/invoice-extractor.log", alias="RENO_INVOICE_DEBUG_LOG")

    # Serialized raw engine output kept on a draft (characters)
    raw_output_max_chars: int = Field(200_000, alias="RENO_RAW_OUTPUT_MAX_CHARS")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    # Service Bus (optional, InvoiceConfirmed events)
    servicebus_connection_string: str | None = Field(default=None, alias="SERVICEBUS_CONNECTION_STRING")
    servicebus_entity_name: str = Field("invoice-events", alias="SERVICEBUS_ENTITY_NAME")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore", "populate_by_name": True}

settings = Settings()
