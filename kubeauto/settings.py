"""
Runtime settings.

Env vars (all prefixed with KUBEAUTO_):
- KUBEAUTO_GROUP               API group to watch (default: "" = core)
- KUBEAUTO_NAMESPACE           namespace (default: current context namespace)
- KUBEAUTO_LABELS              label selector, e.g. app=nginx (default: all)
- KUBEAUTO_CONTAINER           container to tail/forward (default: pod's default container)
- KUBEAUTO_ALL_CONTAINERS      tail/forward every container (default: false)
- KUBEAUTO_HOST_PORT_OFFSET    added to container ports for local ports (default: 0)
- KUBEAUTO_PROBE_INTERVAL      seconds between port-forward liveness probes (default: 5)
- KUBEAUTO_RESYNC_SECONDS      pods are re-listed at least this often (default: 60)
- KUBEAUTO_LOG_LEVEL           (default: INFO)
- KUBEAUTO_JSON_LOGS           (default: false)
- KUBEAUTO_VERBOSE             (default: false)
- KUBEAUTO_COLOR               color output even when piped (default: true)

Command-line flags override the environment.
"""

import logging
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class KubeautoSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="KUBEAUTO_")

    group: str = ""
    namespace: Optional[str] = None
    labels: str = ""
    container: Optional[str] = None
    all_containers: bool = False
    host_port_offset: int = 0
    probe_interval: float = 5.0
    resync_seconds: int = 60
    log_level: str = "INFO"
    json_logs: bool = False
    verbose: bool = False
    color: bool = True

    @field_validator("group", "labels")
    @classmethod
    def strip(cls, v: str) -> str:
        return v.strip()

    @field_validator("namespace", "container")
    @classmethod
    def empty_is_unset(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("host_port_offset")
    @classmethod
    def offset_not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("host_port_offset must not be negative")
        return v

    @field_validator("probe_interval", "resync_seconds")
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level
