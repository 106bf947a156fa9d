# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""Runtime configuration shared by the websocket and MCP entry points."""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .constants import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_REFINE_ENDPOINT, SUMMARY_EXCERPT_LENGTH

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

ENV_ENDPOINT = "LEXICAL_REFINE_ENDPOINT"
ENV_API_KEY = "LEXICAL_REFINE_API_KEY"
ENV_TIMEOUT = "LEXICAL_REFINE_TIMEOUT"
ENV_SUMMARY_LENGTH = "LEXICAL_REFINE_SUMMARY_LENGTH"
ENV_HOST = "LEXICAL_REFINE_HOST"
ENV_PORT = "LEXICAL_REFINE_PORT"
ENV_LOG_LEVEL = "LEXICAL_REFINE_LOG_LEVEL"


@dataclass
class EditorConfig:
    refine_endpoint: str = DEFAULT_REFINE_ENDPOINT
    api_key: Optional[str] = None
    timeout: float = 120.0
    summary_length: int = SUMMARY_EXCERPT_LENGTH
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    strict_markup: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EditorConfig":
        """Build a config from ``LEXICAL_REFINE_*`` environment variables"""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            refine_endpoint=env.get(ENV_ENDPOINT, defaults.refine_endpoint),
            api_key=env.get(ENV_API_KEY) or None,
            timeout=float(env.get(ENV_TIMEOUT, defaults.timeout)),
            summary_length=int(env.get(ENV_SUMMARY_LENGTH, defaults.summary_length)),
            host=env.get(ENV_HOST, defaults.host),
            port=int(env.get(ENV_PORT, defaults.port)),
            log_level=env.get(ENV_LOG_LEVEL, defaults.log_level),
        )


def configure_logging(log_level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
