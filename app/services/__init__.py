"""Service layer helpers for external integrations."""

from .lab_catalog import LabCatalogError, LabSeed, load_seed_file, seed_labs, seed_labs_from_file
from .llm_client import BedrockLlmClient, LlmInvocationError
from .response_contract import GradingResponse
from .storage import ObjectUploader
from .transcribe import TranscriptionClient, normalize_transcript

__all__ = [
    "BedrockLlmClient",
    "GradingResponse",
    "LabCatalogError",
    "LabSeed",
    "LlmInvocationError",
    "ObjectUploader",
    "TranscriptionClient",
    "load_seed_file",
    "normalize_transcript",
    "seed_labs",
    "seed_labs_from_file",
]
