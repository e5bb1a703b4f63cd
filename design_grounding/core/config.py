"""
Configuration loading and management for the grounding pipeline.

This module loads the grounding policy from YAML: analyzer sampling
parameters, validator thresholds, result-validation bands, similarity
weights and the model profile used for the LLM round-trip.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional
import os
import yaml

from design_grounding.core.exceptions import GroundingConfigError


def _pick(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only keys that are fields of the dataclass."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass
class ModelProfile:
    """
    Configuration profile for the vision LLM.

    Values loaded from config/grounding_policy.yaml (model section).
    """
    name: str = "orchestrator"
    primary_model: str = "anthropic/claude-sonnet-4"
    temperature: float = 0.3
    max_tokens: int = 2048
    timeout_seconds: float = 60.0

    # The orchestrator reports LLM failures instead of retrying
    max_retries: int = 0
    retry_delay_seconds: float = 1.0

    # Cost tracking
    cost_per_1k_input: float = 0.0
    cost_per_1k_output: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "primary_model": self.primary_model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "retry_delay_seconds": self.retry_delay_seconds,
            "cost_per_1k_input": self.cost_per_1k_input,
            "cost_per_1k_output": self.cost_per_1k_output,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelProfile":
        """Create from dictionary."""
        return cls(**_pick(cls, data))


@dataclass
class AnalyzerConfig:
    """Sampling and scoring parameters for image analysis."""
    max_colors: int = 9
    kmeans_iterations: int = 10
    kmeans_sample_limit: int = 20000
    unique_color_quant_step: int = 4
    unique_color_alpha_floor: int = 10
    noise_patches: int = 20
    noise_patch_size: int = 16
    random_seed: int = 42
    default_dpi: int = 72
    print_dpi: int = 300
    min_print_inches: float = 2.0
    min_print_sharpness: float = 40.0
    blur_threshold: float = 50.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyzerConfig":
        return cls(**_pick(cls, data))


@dataclass
class ValidatorConfig:
    """Thresholds for the parameter validator."""
    max_output_megapixels: float = 16.0
    history_limit: int = 5
    neutral_history_confidence: float = 75.0
    low_history_confidence: float = 70.0
    color_match_distance: float = 30.0
    color_found_distance: float = 50.0
    min_color_samples: int = 1000
    color_sample_fraction: float = 0.01
    random_seed: int = 7

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidatorConfig":
        return cls(**_pick(cls, data))


@dataclass
class ResultValidatorConfig:
    """Change detection and scoring bands for result validation."""
    change_noise_floor: int = 10
    significant_change_percent: float = 1.0
    transparency_min_percent: float = 10.0
    color_change_max_percent: float = 95.0
    min_color_shift: float = 20.0
    sharpness_drop_tolerance: float = 10.0
    noise_rise_tolerance: float = 10.0
    no_change_percent: float = 0.1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResultValidatorConfig":
        return cls(**_pick(cls, data))


@dataclass
class ContextStoreConfig:
    """Admission gate, retention and similarity weights."""
    execution_confidence_gate: float = 70.0
    retention: int = 100
    similarity_weights: Dict[str, float] = field(default_factory=lambda: {
        "dimensions": 0.25,
        "aspect_ratio": 0.10,
        "color_count": 0.15,
        "sharpness": 0.15,
        "print_ready": 0.10,
        "dominant_colors": 0.25,
    })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextStoreConfig":
        config = cls(**_pick(cls, data))
        if data and "similarity_weights" in data:
            merged = cls().similarity_weights
            merged.update(data["similarity_weights"] or {})
            config.similarity_weights = merged
        return config


@dataclass
class OrchestratorConfig:
    """Turn-level orchestration parameters."""
    history_messages: int = 10
    complexity_penalty: float = 5.0
    complexity_penalty_threshold: int = 2
    validate_results: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrchestratorConfig":
        return cls(**_pick(cls, data))


@dataclass
class GroundingConfig:
    """
    Complete grounding policy.

    Every section falls back to its defaults when missing from the file.
    """
    model: ModelProfile = field(default_factory=ModelProfile)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)
    result_validator: ResultValidatorConfig = field(default_factory=ResultValidatorConfig)
    context_store: ContextStoreConfig = field(default_factory=ContextStoreConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "model": self.model.to_dict(),
            "analyzer": vars(self.analyzer).copy(),
            "validator": vars(self.validator).copy(),
            "result_validator": vars(self.result_validator).copy(),
            "context_store": vars(self.context_store).copy(),
            "orchestrator": vars(self.orchestrator).copy(),
        }


# Global config instance
_config: Optional[GroundingConfig] = None


def load_config(config_path: Optional[str] = None) -> GroundingConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses GROUNDING_CONFIG_PATH
            or the default location.

    Returns:
        Loaded GroundingConfig instance.

    Raises:
        GroundingConfigError: If the file exists but is not valid YAML.
    """
    global _config

    if config_path is None:
        config_path = os.environ.get(
            "GROUNDING_CONFIG_PATH",
            str(Path(__file__).parent.parent.parent / "config" / "grounding_policy.yaml"),
        )

    config_file = Path(config_path)

    if not config_file.exists():
        _config = GroundingConfig()
        return _config

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise GroundingConfigError(
            f"Invalid grounding policy file: {config_file}",
            details={"reason": str(e)},
        ) from e

    _config = GroundingConfig(
        model=ModelProfile.from_dict(data.get("model", {})),
        analyzer=AnalyzerConfig.from_dict(data.get("analyzer", {})),
        validator=ValidatorConfig.from_dict(data.get("validator", {})),
        result_validator=ResultValidatorConfig.from_dict(data.get("result_validator", {})),
        context_store=ContextStoreConfig.from_dict(data.get("context_store", {})),
        orchestrator=OrchestratorConfig.from_dict(data.get("orchestrator", {})),
    )

    return _config


def get_config() -> GroundingConfig:
    """
    Get the current configuration.

    Loads default config if not already loaded.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset the global config (useful for testing)."""
    global _config
    _config = None
