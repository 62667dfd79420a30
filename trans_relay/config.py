# trans_relay/config.py

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from trans_relay.cache import CacheConfig
from trans_relay.rate_limiter import RateLimitConfig
from trans_relay.utils import AUTO_LANG, validate_lang_codes


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: Literal["json", "console"] = "console"


class FilterConfig(BaseModel):
    min_length: int = Field(default=1, ge=0)
    max_length: Optional[int] = Field(default=5000, gt=0)

    @model_validator(mode="after")
    def check_length_bounds(self) -> "FilterConfig":
        if self.max_length is not None and self.max_length < self.min_length:
            raise ValueError("max_length 必须大于或等于 min_length")
        return self


class TransRelaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TR_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    enabled: bool = True
    default_backend: str = "translators"
    source_lang: str = AUTO_LANG
    target_lang: str = "zh"
    request_timeout: Optional[float] = Field(
        default=30.0, gt=0, description="单次后端调用的超时时间（秒）"
    )
    coalesce_inflight: bool = Field(
        default=True, description="合并同一缓存键上并发的相同请求"
    )

    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)
    backend_configs: dict[str, dict[str, Any]] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("source_lang", "target_lang")
    @classmethod
    def validate_lang_code(cls, v: str) -> str:
        validate_lang_codes([v])
        return v
