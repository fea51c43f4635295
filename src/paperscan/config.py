"""
Configuration and constants for the paper scanning pipeline.

This module provides:
- Logging configuration
- Tunable policy constants (retry budget, acceptance score, bbox bias compensation)
- Provider configuration as a tagged union over provider kinds
- Environment overrides
"""

import os
import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union, Dict, Any

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger("paperscan")


def configure_logging(level: int = logging.INFO) -> None:
    """Configure the root logger with the pipeline's log format."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger.setLevel(level)


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class RepairConfig:
    """Response repair configuration."""
    # LaTeX commands whose first letter collides with a JSON control escape
    latex_commands: Tuple[str, ...] = (
        "begin", "beta", "bar", "because", "bigcirc", "boxed", "binom", "bot", "bullet",
        "frac", "forall",
        "neq", "nabla", "neg", "not", "nu",
        "rightarrow", "right", "rho", "rangle",
        "times", "tan", "theta", "text", "textbf", "triangle", "tau", "tilde", "to", "top",
    )
    # Keys that mark the start of a new field in oracle output
    known_keys: Tuple[str, ...] = (
        "type", "subtype", "content", "bbox", "option_boxes", "optionBoxes",
        "figure_bbox", "is_homework_or_exam", "title", "subject", "grade",
        "items", "score", "valid", "issues", "section", "answer", "explanation",
    )


@dataclass
class NormalizerConfig:
    """Item normalization configuration."""
    merge_separator: str = "\n\n"
    fill_in_max_chars: int = 120
    fill_in_max_lines: int = 2
    fill_in_stem_max_lines: int = 3
    paragraph_min_chars: int = 20


@dataclass
class RetryConfig:
    """Best-of-N retry configuration."""
    max_attempts: int = 3
    accept_score: int = 75
    # Used when the validation judge answers with something unparseable
    default_validation_score: int = 80
    summary_chars: int = 400


@dataclass
class RegionConfig:
    """Crop region resolution configuration."""
    # Compensates the oracle's "box starts too low" bias
    upward_expansion_px: float = 90.0
    upward_expansion_ratio: float = 0.12
    margin_px: float = 4.0
    bottom_page_ratio: float = 0.98
    usable_x_range: Tuple[float, float] = (-0.02, 1.02)
    usable_y_range: Tuple[float, float] = (-0.02, 1.2)
    # Sub-region tightening
    background_luminance: int = 248
    min_refined_area_ratio: float = 0.02


@dataclass
class CropConfig:
    """Crop artifact configuration."""
    jpeg_quality: int = 85
    crop_prefix: str = "crop"


# ============================================================================
# Provider Configuration
# ============================================================================

class ProviderKind(Enum):
    """Supported model providers."""
    BAILIAN = "bailian"
    OPENAI = "openai"
    GEMINI = "gemini"


@dataclass
class BailianConfig:
    """DashScope (Bailian/Qwen) OpenAI-compatible endpoint."""
    api_key: str = ""
    model: str = "qwen-plus"
    vl_model: str = "qwen-vl-max"
    base_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    timeout: float = 120.0
    kind: ProviderKind = field(default=ProviderKind.BAILIAN, init=False)

    @property
    def display_name(self) -> str:
        return "Bailian/Qwen"


@dataclass
class OpenAIConfig:
    """OpenAI chat/completions endpoint."""
    api_key: str = ""
    model: str = "gpt-4o-mini"
    vl_model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 120.0
    kind: ProviderKind = field(default=ProviderKind.OPENAI, init=False)

    @property
    def display_name(self) -> str:
        return "OpenAI"


@dataclass
class GeminiConfig:
    """Google Gemini generateContent endpoint."""
    api_key: str = ""
    model: str = "gemini-2.5-flash"
    vl_model: str = "gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1"
    timeout: float = 120.0
    kind: ProviderKind = field(default=ProviderKind.GEMINI, init=False)

    @property
    def display_name(self) -> str:
        return "Google Gemini"


ProviderConfig = Union[BailianConfig, OpenAIConfig, GeminiConfig]

PROVIDER_CONFIG_TYPES = {
    ProviderKind.BAILIAN: BailianConfig,
    ProviderKind.OPENAI: OpenAIConfig,
    ProviderKind.GEMINI: GeminiConfig,
}

API_KEY_ENV_VARS = {
    ProviderKind.BAILIAN: "DASHSCOPE_API_KEY",
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.GEMINI: "GEMINI_API_KEY",
}


def provider_config_from_dict(data: Dict[str, Any]) -> ProviderConfig:
    """
    Build a provider config from its JSON form.

    Args:
        data: Mapping with a "kind" tag and the provider's fields

    Returns:
        The typed provider config

    Raises:
        ValueError: If the kind tag is missing or unknown
    """
    try:
        kind = ProviderKind(data.get("kind", ""))
    except ValueError:
        raise ValueError(f"Unknown provider kind: {data.get('kind')!r}")

    config_type = PROVIDER_CONFIG_TYPES[kind]
    config = config_type()
    for key in ("api_key", "model", "vl_model", "base_url", "timeout"):
        if key in data and data[key] is not None:
            setattr(config, key, data[key])
    return config


def provider_config_to_dict(config: ProviderConfig) -> Dict[str, Any]:
    data = asdict(config)
    data["kind"] = config.kind.value
    return data


def load_provider_config(path: Union[str, Path]) -> ProviderConfig:
    """Load a provider config saved with save_provider_config."""
    from .io import load_json
    return provider_config_from_dict(load_json(path))


def save_provider_config(config: ProviderConfig, path: Union[str, Path]) -> Path:
    """Persist a provider config as JSON, replacing any previous file atomically."""
    from .io import save_json
    return save_json(provider_config_to_dict(config), path)


# ============================================================================
# Pipeline Configuration
# ============================================================================

@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    repair: RepairConfig = field(default_factory=RepairConfig)
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    region: RegionConfig = field(default_factory=RegionConfig)
    crop: CropConfig = field(default_factory=CropConfig)
    provider: Optional[ProviderConfig] = None

    # Global settings
    debug_mode: bool = False


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    if os.environ.get("PAPERSCAN_DEBUG", "").lower() == "true":
        config.debug_mode = True

    max_attempts = os.environ.get("PAPERSCAN_MAX_ATTEMPTS")
    if max_attempts:
        config.retry.max_attempts = max(1, int(max_attempts))

    accept_score = os.environ.get("PAPERSCAN_ACCEPT_SCORE")
    if accept_score:
        config.retry.accept_score = int(accept_score)

    provider_name = os.environ.get("PAPERSCAN_PROVIDER")
    if provider_name:
        kind = ProviderKind(provider_name.lower())
        provider = PROVIDER_CONFIG_TYPES[kind]()
        provider.api_key = os.environ.get(API_KEY_ENV_VARS[kind], "")
        config.provider = provider

    return config


# ============================================================================
# Item Kind Labels
# ============================================================================

FILL_IN_SUBTYPE = "fill-in"
