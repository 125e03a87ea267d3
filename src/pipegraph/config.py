# config.py
"""
Configuration schema and file loading.

The compiler itself only ever sees a fully resolved mapping; this module is
the thin loader in front of it. Documents are YAML (JSON parses as YAML
too) and are validated with pydantic before the topology is built.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .model import FailureKind, RUNTIME_FAILURES

DEFAULT_TIMEOUT = 3600
DEFAULT_MAX_RETRIES = 1
DEFAULT_ARTIFACTS_ROOT = "artifacts"

ENV_CONFIG = "PIPEGRAPH_CONFIG"
ENV_ACTION = "ACTION"
ENV_ARTIFACTS_ROOT = "PIPEGRAPH_ARTIFACTS_ROOT"


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RetrySpec(_Strict):
    max: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    when: List[FailureKind] = Field(default_factory=lambda: sorted(RUNTIME_FAILURES, key=lambda k: k.value))

    @field_validator("when")
    @classmethod
    def _runtime_only(cls, v: List[FailureKind]) -> List[FailureKind]:
        bad = [k.value for k in v if k not in RUNTIME_FAILURES]
        if bad:
            raise ValueError(f"not a retryable failure kind: {bad}")
        return v


class Defaults(_Strict):
    timeout: int = Field(default=DEFAULT_TIMEOUT, gt=0)
    retry: RetrySpec = Field(default_factory=RetrySpec)
    artifacts_root: str = DEFAULT_ARTIFACTS_ROOT


class ProviderSpec(_Strict):
    name: str
    timeout: Optional[int] = Field(default=None, gt=0)
    retry: Optional[RetrySpec] = None
    variables: Dict[str, str] = Field(default_factory=dict)


class NodeSpec(_Strict):
    """Fields every topology entry accepts."""
    name: str
    provider: Optional[str] = None
    scripts: Dict[str, List[str]] = Field(default_factory=dict)
    artifacts: List[str] = Field(default_factory=list)
    timeout: Optional[int] = Field(default=None, gt=0)
    retry: Optional[RetrySpec] = None
    variables: Dict[str, str] = Field(default_factory=dict)
    needs: List[str] = Field(default_factory=list)

    @field_validator("variables", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        # YAML happily yields ints/bools for variable values
        if isinstance(v, dict):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v


class DashboardSpec(NodeSpec):
    pass


class ProjectSpec(NodeSpec):
    dashboards: List[DashboardSpec] = Field(default_factory=list)


class EutSpec(NodeSpec):
    sites: List[NodeSpec] = Field(default_factory=list)
    features: List[NodeSpec] = Field(default_factory=list)
    applications: List[NodeSpec] = Field(default_factory=list)


class CollectorSpec(NodeSpec):
    reports: List[NodeSpec] = Field(default_factory=list)


class RteSpec(NodeSpec):
    shares: List[NodeSpec] = Field(default_factory=list)
    components: List[NodeSpec] = Field(default_factory=list)
    collectors: List[CollectorSpec] = Field(default_factory=list)


class RteTestSpec(NodeSpec):
    rte: str
    verifications: List[NodeSpec] = Field(default_factory=list)


class PipelineConfig(_Strict):
    defaults: Defaults = Field(default_factory=Defaults)
    providers: List[ProviderSpec] = Field(default_factory=list)
    project: Optional[ProjectSpec] = None
    eut: Optional[EutSpec] = None
    rtes: List[RteSpec] = Field(default_factory=list)
    tests: List[RteTestSpec] = Field(default_factory=list)


def _location(err: Dict[str, Any]) -> str:
    return ".".join(str(p) for p in err.get("loc", ())) or "<root>"


def parse_config(data: Any) -> PipelineConfig:
    """Validate an already loaded document."""
    if isinstance(data, PipelineConfig):
        return data
    if not isinstance(data, dict):
        raise ConfigError(f"configuration must be a mapping, got {type(data).__name__}")
    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        extra = f" (+{e.error_count() - 1} more)" if e.error_count() > 1 else ""
        raise ConfigError(first["msg"] + extra, location=_location(first)) from e


def load_file(path: str | Path) -> Dict[str, Any]:
    """
    Read a YAML/JSON config file into a plain mapping.

    Raises ConfigError for missing files, parse errors and non-mapping
    documents.
    """
    cfg_path = Path(path).expanduser()
    if not cfg_path.exists():
        raise ConfigError(f"config file not found: {cfg_path}")
    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse config: {e}", location=str(cfg_path)) from e

    if data is None:
        raise ConfigError("config file is empty", location=str(cfg_path))
    if not isinstance(data, dict):
        raise ConfigError("config document must be a mapping", location=str(cfg_path))
    return data
