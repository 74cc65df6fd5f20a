"""
Interface to configuration as persisted in .yaml file.
"""
from __future__ import annotations

from logging import Logger
from pathlib import Path
from typing import Any, Self
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from ..core import Connector, LifecycleNode
from ..core.navigation import DEFAULT_DEPTH
from ..core.scheduler import DEFAULT_MAX_WORKERS
from ..core.subscriptions import DEFAULT_POLL_RATE

__all__ = [
    "Config",
    "ServerConfig",
]


class Config(BaseModel):
    """
    Encapsulates configuration for use in tools. A server may be given as
    just its url:

    ```yaml
    servers:
      demo: http://localhost:8080/api/demo
      site:
        url: https://site.example.com/api/site
        user: admin
        poll_rate: 2
    ```
    """

    servers: dict[str, ServerConfig]
    """
    Mapping of server names to configs.
    """

    @field_validator("servers", mode="before")
    @classmethod
    def expand_urls(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {
            name: {"url": server} if isinstance(server, str) else server
            for name, server in value.items()
        }

    @classmethod
    def load_yaml(cls, file: Path) -> Config:
        """
        Load config from .yaml file.

        :raises ValueError: File doesn't contain a mapping
        :raises ValidationError: Config is invalid
        """
        data = yaml.safe_load(file.read_text())

        if not isinstance(data, dict):
            raise ValueError(
                f"expected a mapping in '{file}', got {type(data).__name__}"
            )

        return cls.model_validate(data)

    def dump_yaml(self, file: Path):
        """
        Dump config to .yaml file, omitting unset credentials and settings
        left at their defaults.
        """
        data = self.model_dump(exclude_none=True, exclude_defaults=True)
        file.write_text(yaml.safe_dump(data, sort_keys=False))


class ServerConfig(BaseModel):
    """
    Encapsulates connection info for a Haystack server.
    """

    url: str
    user: str | None = None
    password: str | None = None

    poll_rate: float = Field(DEFAULT_POLL_RATE, gt=0)
    """
    Watch poll interval in seconds.
    """

    lease: float | None = Field(60.0, gt=0)
    """
    Requested watch lease in seconds.
    """

    depth: int = Field(DEFAULT_DEPTH, ge=1)
    """
    Levels fetched per navigation expansion.
    """

    max_workers: int = Field(DEFAULT_MAX_WORKERS, ge=1)

    @field_validator("url")
    def validate_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"not an http(s) url: '{value}'")
        return value.rstrip("/")

    @model_validator(mode="after")
    def validate_credentials(self) -> Self:
        if self.password is not None and self.user is None:
            raise ValueError("password provided without user")
        return self

    def create_connector(
        self, node: LifecycleNode, *, logger: Logger | None = None
    ) -> Connector:
        """
        Get connector from this server's fields.
        """
        return Connector(
            node,
            self.url,
            self.user,
            self.password,
            poll_rate=self.poll_rate,
            lease=self.lease,
            depth=self.depth,
            max_workers=self.max_workers,
            logger=logger,
        )
