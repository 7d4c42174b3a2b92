"""Concrete capability providers."""
from .base import AnalysisProvider
from .categorizer import ClipCategorizer, CloudVisionCategorizer
from .faces import CloudVisionFaceDetector, FaceNetDetector
from .social import DryRunPublisher

__all__ = [
    "AnalysisProvider",
    "ClipCategorizer",
    "CloudVisionCategorizer",
    "FaceNetDetector",
    "CloudVisionFaceDetector",
    "DryRunPublisher",
]
