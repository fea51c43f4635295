"""
Paper Scanning Pipeline
=======================

Turns photographs of graded homework and exam pages into ordered, typed
content blocks, each anchored to a crop of the photograph.

Main components:
- Response repair (salvaging JSON from model output)
- Item normalization (type canonicalization and fragment merging)
- Crop region resolution (bias compensation, neighbor fallback, tightening)
- Best-of-N retry with a validation judge
- Per-photograph pipeline coordination
"""

__version__ = "1.0.0"

from .config import (
    PipelineConfig, get_config, configure_logging,
    ProviderKind, BailianConfig, OpenAIConfig, GeminiConfig,
    load_provider_config, save_provider_config,
)
from .errors import PaperScanError, TransportError, MalformedResponse, NotAPaper, EmptyResult
from .items import (
    BoundingBox, ExtractionItem, ItemKind, NormalizedItem,
    PageAnalysisResult, ValidationResult, Question, QuestionAnalysis, PaperResult,
)
from .repair import JsonRepairer, repair_json, clean_item_text
from .normalizer import ItemNormalizer, normalize_items
from .regions import RegionResolver, CropRegion, PixelBox
from .retry import RetryOrchestrator, Candidate, pick_best
from .oracles import PaperOracle, ChatCompletionsClient, GeminiClient, create_oracle
from .pipeline import PaperPipeline, PageOutcome

__all__ = [
    # Config
    "PipelineConfig", "get_config", "configure_logging",
    "ProviderKind", "BailianConfig", "OpenAIConfig", "GeminiConfig",
    "load_provider_config", "save_provider_config",
    # Errors
    "PaperScanError", "TransportError", "MalformedResponse", "NotAPaper", "EmptyResult",
    # Data model
    "BoundingBox", "ExtractionItem", "ItemKind", "NormalizedItem",
    "PageAnalysisResult", "ValidationResult", "Question", "QuestionAnalysis", "PaperResult",
    # Components
    "JsonRepairer", "repair_json", "clean_item_text",
    "ItemNormalizer", "normalize_items",
    "RegionResolver", "CropRegion", "PixelBox",
    "RetryOrchestrator", "Candidate", "pick_best",
    "PaperOracle", "ChatCompletionsClient", "GeminiClient", "create_oracle",
    "PaperPipeline", "PageOutcome",
]
