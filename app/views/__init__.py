"""Pydantic schemas used as views in the MVC architecture."""

from .common import CamelModel
from .labs import (
    AttemptRecord,
    ChunkUploadResponse,
    GradingFeedback,
    LabHistoryResponse,
    LabInfo,
    LabStatusItem,
    LabStatusResponse,
    LabUploadRequest,
    LabUploadResponse,
    SubmitLabRequest,
    SubmitLabResponse,
)

__all__ = [
    "AttemptRecord",
    "CamelModel",
    "ChunkUploadResponse",
    "GradingFeedback",
    "LabHistoryResponse",
    "LabInfo",
    "LabStatusItem",
    "LabStatusResponse",
    "LabUploadRequest",
    "LabUploadResponse",
    "SubmitLabRequest",
    "SubmitLabResponse",
]
