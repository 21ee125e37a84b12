"""SourceHive configuration loader.

Priority (high → low):
  1. CLI flags              (handled at call site — not in this module)
  2. Environment variables  (SOURCEHIVE_DATA_ROOT, SOURCEHIVE_ROUTING,
                             SOURCEHIVE_EMBEDDING_MODEL, SOURCEHIVE_LOCAL_MODEL,
                             SOURCEHIVE_CLOUD_MODEL)
  3. Per-project sourcehive.yaml  (current working directory)
  4. Global ~/.sourcehive/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

The loaded HiveConfig is frozen. Components receive it (or one of its
sections) at construction and never read configuration from anywhere else.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import math
import os
import re
import warnings
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".sourcehive"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "sourcehive.yaml"

# Matches api_key, api-key, api_secret, *_token, token, *_secret, secret,
# password/passwd and credential(s). Does NOT match max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["storage", "embedding", "retrieval", "routing", "concurrency", "jobs"]
)

ROUTING_STRATEGIES: tuple[str, ...] = (
    "local_only",
    "local_with_cloud_fallback",
    "cloud_primary",
    "cloud_only",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorageCfg:
    """Where session, registry and global stores live (sourcehive.yaml: storage:)."""

    data_root: str = str(Path.home() / ".sourcehive" / "data")

    @property
    def root(self) -> Path:
        return Path(self.data_root).expanduser()

    @property
    def sessions_dir(self) -> Path:
        return self.root / "sessions"

    @property
    def registry_path(self) -> Path:
        return self.root / "registry.db"

    @property
    def global_path(self) -> Path:
        return self.root / "global.db"


@dataclass(frozen=True)
class EmbeddingCfg:
    """Embedding provider configuration (sourcehive.yaml: embedding:)."""

    model: str = "ollama/nomic-embed-text"
    api_base: str | None = None
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class RetrievalCfg:
    """Hybrid retrieval configuration (sourcehive.yaml: retrieval:)."""

    top_k: int = 10
    semantic_weight: float = 0.5
    keyword_weight: float = 0.5
    candidate_prefilter: bool = True


@dataclass(frozen=True)
class ProviderCfg:
    """One LLM provider endpoint. Tier models fall back to ``model`` when unset."""

    model: str
    mini_model: str | None = None
    full_model: str | None = None
    api_base: str | None = None

    def model_for(self, tier: str) -> str:
        if tier == "mini" and self.mini_model:
            return self.mini_model
        if tier == "full" and self.full_model:
            return self.full_model
        return self.model


@dataclass(frozen=True)
class RoutingCfg:
    """LLM routing, retry and circuit-breaker configuration (sourcehive.yaml: routing:)."""

    strategy: str = "local_with_cloud_fallback"
    local: ProviderCfg = field(
        default_factory=lambda: ProviderCfg(
            model="ollama/llama3.1:8b", api_base="http://localhost:11434"
        )
    )
    cloud: ProviderCfg | None = field(
        default_factory=lambda: ProviderCfg(
            model="openai/gpt-4o",
            mini_model="openai/gpt-4.1-mini",
            full_model="openai/gpt-4.1",
        )
    )
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 8.0
    jitter: bool = True
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    timeout_seconds: float = 120.0


@dataclass(frozen=True)
class ConcurrencyCfg:
    """Bounded resource pools (sourcehive.yaml: concurrency:)."""

    max_concurrent_fetches: int = 6
    max_concurrent_per_origin: int = 2
    min_origin_delay_seconds: float = 1.5
    max_origin_delay_seconds: float = 3.0
    embedding_concurrency: int = 4
    max_browser_contexts: int = 8
    fetch_timeout_seconds: float = 30.0
    origin_failure_threshold: int = 5
    origin_cooldown_seconds: float = 300.0


@dataclass(frozen=True)
class JobsCfg:
    """Research job defaults (sourcehive.yaml: jobs:)."""

    target_source_count: int = 5
    max_iterations: int = 3
    max_citations: int = 20
    max_claims: int = 40
    evidence_top_k: int = 30
    synthesis_max_tokens: int = 4000


@dataclass(frozen=True)
class HiveConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    storage: StorageCfg = field(default_factory=StorageCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    routing: RoutingCfg = field(default_factory=RoutingCfg)
    concurrency: ConcurrencyCfg = field(default_factory=ConcurrencyCfg)
    jobs: JobsCfg = field(default_factory=JobsCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def validate_config(cfg: HiveConfig) -> None:
    """Raise ConfigError for values no component can work with."""
    r = cfg.retrieval
    if r.semantic_weight < 0 or r.keyword_weight < 0:
        raise ConfigError("retrieval weights must be non-negative")
    if not math.isclose(r.semantic_weight + r.keyword_weight, 1.0, abs_tol=1e-6):
        raise ConfigError(
            "retrieval.semantic_weight + retrieval.keyword_weight must equal 1.0 "
            f"(got {r.semantic_weight} + {r.keyword_weight})"
        )
    if r.top_k < 1:
        raise ConfigError(f"retrieval.top_k must be >= 1, got {r.top_k}")

    rt = cfg.routing
    if rt.strategy not in ROUTING_STRATEGIES:
        raise ConfigError(
            f"routing.strategy must be one of {', '.join(ROUTING_STRATEGIES)}; got '{rt.strategy}'"
        )
    if rt.strategy in ("cloud_primary", "cloud_only") and rt.cloud is None:
        raise ConfigError(f"routing.strategy '{rt.strategy}' requires a routing.cloud provider")
    if rt.max_attempts < 1:
        raise ConfigError("routing.max_attempts must be >= 1")
    if rt.failure_threshold < 1:
        raise ConfigError("routing.failure_threshold must be >= 1")

    c = cfg.concurrency
    for name in (
        "max_concurrent_fetches",
        "max_concurrent_per_origin",
        "embedding_concurrency",
        "max_browser_contexts",
    ):
        if getattr(c, name) < 1:
            raise ConfigError(f"concurrency.{name} must be >= 1")
    if c.min_origin_delay_seconds > c.max_origin_delay_seconds:
        raise ConfigError("concurrency.min_origin_delay_seconds exceeds max_origin_delay_seconds")

    j = cfg.jobs
    if j.target_source_count < 1 or j.max_iterations < 1:
        raise ConfigError("jobs.target_source_count and jobs.max_iterations must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_provider(raw: dict[str, Any] | None, default: ProviderCfg | None) -> ProviderCfg | None:
    if raw is None:
        return default
    base = default or ProviderCfg(model="")
    model = str(raw.get("model", base.model))
    if not model:
        raise ConfigError("routing provider entries need a 'model'")
    return ProviderCfg(
        model=model,
        mini_model=raw.get("mini_model", base.mini_model),
        full_model=raw.get("full_model", base.full_model),
        api_base=raw.get("api_base", base.api_base),
    )


def _cfg_from_dict(data: dict[str, Any]) -> HiveConfig:
    """Build a *HiveConfig* from a merged raw YAML dict."""
    cfg = HiveConfig()

    if "storage" in data:
        s = data["storage"]
        cfg = replace(cfg, storage=StorageCfg(data_root=str(s.get("data_root", cfg.storage.data_root))))

    if "embedding" in data:
        e = data["embedding"]
        cfg = replace(
            cfg,
            embedding=EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                api_base=e.get("api_base", cfg.embedding.api_base),
                timeout_seconds=float(e.get("timeout_seconds", cfg.embedding.timeout_seconds)),
            ),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg = replace(
            cfg,
            retrieval=RetrievalCfg(
                top_k=int(r.get("top_k", cfg.retrieval.top_k)),
                semantic_weight=float(r.get("semantic_weight", cfg.retrieval.semantic_weight)),
                keyword_weight=float(r.get("keyword_weight", cfg.retrieval.keyword_weight)),
                candidate_prefilter=bool(
                    r.get("candidate_prefilter", cfg.retrieval.candidate_prefilter)
                ),
            ),
        )

    if "routing" in data:
        rt = data["routing"]
        d = cfg.routing
        cloud = d.cloud
        if "cloud" in rt:
            cloud = None if rt["cloud"] is None else _parse_provider(rt["cloud"], d.cloud)
        cfg = replace(
            cfg,
            routing=RoutingCfg(
                strategy=str(rt.get("strategy", d.strategy)),
                local=_parse_provider(rt.get("local"), d.local) or d.local,
                cloud=cloud,
                max_attempts=int(rt.get("max_attempts", d.max_attempts)),
                backoff_base_seconds=float(rt.get("backoff_base_seconds", d.backoff_base_seconds)),
                backoff_max_seconds=float(rt.get("backoff_max_seconds", d.backoff_max_seconds)),
                jitter=bool(rt.get("jitter", d.jitter)),
                failure_threshold=int(rt.get("failure_threshold", d.failure_threshold)),
                cooldown_seconds=float(rt.get("cooldown_seconds", d.cooldown_seconds)),
                timeout_seconds=float(rt.get("timeout_seconds", d.timeout_seconds)),
            ),
        )

    if "concurrency" in data:
        c = data["concurrency"]
        d = cfg.concurrency
        cfg = replace(
            cfg,
            concurrency=ConcurrencyCfg(
                **{
                    name: type(getattr(d, name))(c.get(name, getattr(d, name)))
                    for name in d.__dataclass_fields__
                }
            ),
        )

    if "jobs" in data:
        j = data["jobs"]
        d = cfg.jobs
        cfg = replace(
            cfg,
            jobs=JobsCfg(
                **{name: int(j.get(name, getattr(d, name))) for name in d.__dataclass_fields__}
            ),
        )

    return cfg


def _apply_env_overrides(cfg: HiveConfig) -> HiveConfig:
    """Apply SOURCEHIVE_* environment variable overrides."""
    if root := os.environ.get("SOURCEHIVE_DATA_ROOT"):
        cfg = replace(cfg, storage=StorageCfg(data_root=root))
    if strategy := os.environ.get("SOURCEHIVE_ROUTING"):
        cfg = replace(cfg, routing=replace(cfg.routing, strategy=strategy))
    if model := os.environ.get("SOURCEHIVE_EMBEDDING_MODEL"):
        cfg = replace(cfg, embedding=replace(cfg.embedding, model=model))
    if model := os.environ.get("SOURCEHIVE_LOCAL_MODEL"):
        cfg = replace(cfg, routing=replace(cfg.routing, local=replace(cfg.routing.local, model=model)))
    if model := os.environ.get("SOURCEHIVE_CLOUD_MODEL"):
        cloud = cfg.routing.cloud
        cloud = replace(cloud, model=model) if cloud is not None else ProviderCfg(model=model)
        cfg = replace(cfg, routing=replace(cfg.routing, cloud=cloud))
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> HiveConfig:
    """Load and return a merged, validated *HiveConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *sourcehive.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If the global config contains API-key-like fields or a
            value fails validation.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    validate_config(cfg)
    return cfg


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Create ``~/.sourcehive/config.yaml`` with defaults if it does not exist.

    The parent directory is created with mode 0o700 and the file with 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# SourceHive global configuration: model defaults only.\n"
            "# NEVER store API keys here. Use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: ollama/nomic-embed-text\n"
            "\n"
            "routing:\n"
            "  strategy: local_with_cloud_fallback\n"
            "  local:\n"
            "    model: ollama/llama3.1:8b\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
