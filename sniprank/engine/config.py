"""Configuration management for sniprank."""

from pathlib import Path
from typing import Optional, Dict, Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator


class SearchConfig(BaseModel):
    default_top_k: int = 10
    default_threshold: float = 0.3
    max_results: int = 50
    search_timeout_ms: int = 5000
    query_expansion: bool = True
    context_snippets: bool = True

    @field_validator('default_top_k', 'max_results', 'search_timeout_ms')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class CacheConfig(BaseModel):
    enabled: bool = True
    max_size: int = 1000
    ttl_seconds: float = 300


class RankingWeights(BaseModel):
    """Factor weights. Diversity is subtractive."""
    semantic: float = 0.4
    structural: float = 0.2
    recency: float = 0.1
    user_preference: float = 0.2
    complexity: float = 0.05
    diversity: float = 0.05

    @field_validator('*')
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("weights must be non-negative")
        return v

    def merged(self, partial: Dict[str, float]) -> "RankingWeights":
        """Return a validated copy with ``partial`` applied."""
        unknown = set(partial) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown ranking weights: {sorted(unknown)}")
        return RankingWeights(**{**self.model_dump(), **partial})


class RankingConfig(BaseModel):
    weights: RankingWeights = Field(default_factory=RankingWeights)
    diversity_threshold: float = 0.8
    max_results_to_rank: int = 50
    max_workers: int = 8
    stat_timeout_ms: int = 250

    @field_validator('diversity_threshold')
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("diversity_threshold must be between 0 and 1")
        return v


class PreferenceConfig(BaseModel):
    max_history: int = 1000
    half_life_days: float = 7.0
    feedback_path: Optional[Path] = None


class UpstreamConfig(BaseModel):
    base_url: Optional[str] = None
    max_concurrency: int = 4
    max_retries: int = 3
    base_delay: float = 0.2
    max_delay: float = 5.0
    request_timeout: float = 10.0


class Config(BaseModel):
    """Main configuration for the search service."""

    workspace: Optional[str] = None
    search: SearchConfig = Field(default_factory=SearchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    preferences: PreferenceConfig = Field(default_factory=PreferenceConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)

    @field_validator('preferences')
    @classmethod
    def expand_feedback_path(cls, v: PreferenceConfig) -> PreferenceConfig:
        if v.feedback_path is not None:
            v.feedback_path = Path(v.feedback_path).expanduser()
        return v

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            candidates = [
                Path("sniprank.yaml"),
                Path.home() / ".config" / "sniprank" / "config.yaml",
                Path("/etc/sniprank/config.yaml"),
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                raise FileNotFoundError(
                    f"No config file found. Searched: {[str(c) for c in candidates]}"
                )

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode='json'), f, default_flow_style=False)
