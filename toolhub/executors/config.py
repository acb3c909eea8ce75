"""
Executor configuration — a tagged union of the shared default sandbox and a
caller-supplied custom URL, plus cascade resolution (agent → collection → default).
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class ExecutorType(str, Enum):
    DEFAULT = "default"
    CUSTOM_URL = "custom_url"


def is_valid_executor_url(url: Any) -> bool:
    """True when `url` is a syntactically valid absolute http(s) URL."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and bool(parsed.hostname)


class DefaultExecutorConfig(BaseModel):
    type: Literal["default"] = "default"


class CustomUrlExecutorConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["custom_url"] = "custom_url"
    url: str
    api_key: Optional[str] = Field(default=None, alias="apiKey", repr=False)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not is_valid_executor_url(v):
            raise ValueError("url must be an absolute http or https URL")
        return v.strip().rstrip("/")


ExecutorConfig = Annotated[
    Union[DefaultExecutorConfig, CustomUrlExecutorConfig],
    Field(discriminator="type"),
]

_executor_config_adapter = TypeAdapter(ExecutorConfig)


def parse_executor_config(executor_type: Optional[str], raw_config: Any) -> Optional[ExecutorConfig]:
    """
    Build an ExecutorConfig from the (type, json) pair stored on an owner row.
    Returns None when the owner has no usable configuration.
    """
    if not executor_type:
        return None
    if executor_type == ExecutorType.DEFAULT.value:
        return DefaultExecutorConfig()
    if executor_type == ExecutorType.CUSTOM_URL.value and isinstance(raw_config, dict):
        url = raw_config.get("url")
        if not is_valid_executor_url(url):
            return None
        api_key = raw_config.get("apiKey", raw_config.get("api_key"))
        return CustomUrlExecutorConfig(
            url=url, api_key=api_key if isinstance(api_key, str) else None,
        )
    return None


def load_executor_config(data: Any) -> ExecutorConfig:
    """Validate a request payload into the tagged union (raises pydantic.ValidationError)."""
    return _executor_config_adapter.validate_python(data)


def resolve_executor_config(
    agent_config: Optional[ExecutorConfig],
    collection_config: Optional[ExecutorConfig],
) -> ExecutorConfig:
    """Agent config wins over collection config; both fall back to the default sandbox."""
    if agent_config is not None and agent_config.type != ExecutorType.DEFAULT.value:
        return agent_config
    if collection_config is not None and collection_config.type != ExecutorType.DEFAULT.value:
        return collection_config
    return DefaultExecutorConfig()


def describe_executor(config: Optional[ExecutorConfig]) -> str:
    if config is None or config.type == ExecutorType.DEFAULT.value:
        return "Default Executor"
    host = urlparse(config.url).hostname
    return f"Custom: {host}" if host else "Custom Executor"
