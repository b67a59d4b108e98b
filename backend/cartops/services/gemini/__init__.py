"""
CARTOPS - Gemini collaborators (vision + voice)
"""

from cartops.services.gemini.client import GeminiClient, parse_retry_after, strip_code_fences
from cartops.services.gemini.vision import VisionService, vision_service
from cartops.services.gemini.voice import VoiceInterpretationService, voice_service

__all__ = [
    "GeminiClient",
    "parse_retry_after",
    "strip_code_fences",
    "VisionService",
    "vision_service",
    "VoiceInterpretationService",
    "voice_service",
]
