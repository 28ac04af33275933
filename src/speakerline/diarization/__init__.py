"""Speaker diarization pipeline: features, voice activity, embeddings, clustering and timeline."""

from .alignment import TranscriptAligner
from .clustering import SpeakerClusterer
from .config import DiarizationConfig, DiarizationOptions
from .embeddings import (
    ECAPAEmbeddingExtractor,
    MFCCStatisticsExtractor,
    SpeakerEmbeddingExtractor,
    build_embedding_extractor,
)
from .features import AudioFeatureExtractor, FeatureCache
from .identification import SpeakerIdentifier
from .models import (
    AgeRange,
    AudioFeatures,
    DiarizationResult,
    EmbeddingStatistics,
    EmotionalTone,
    Gender,
    IdentifiedSpeaker,
    Speaker,
    SpeakerCharacteristics,
    SpeakerCluster,
    SpeakerEmbedding,
    SpeakerIdentificationResult,
    SpeakerProfile,
    SpeakerSegment,
    TranscriptSegment,
    VoiceSegment,
)
from .profiles import SpeakerProfileManager
from .service import SpeakerDiarizationService
from .timeline import SpeakerTimelineBuilder, annotate_speaking_rate
from .vad import VoiceActivityDetector

__all__ = [
    "AgeRange",
    "AudioFeatureExtractor",
    "AudioFeatures",
    "DiarizationConfig",
    "DiarizationOptions",
    "DiarizationResult",
    "ECAPAEmbeddingExtractor",
    "EmbeddingStatistics",
    "EmotionalTone",
    "FeatureCache",
    "Gender",
    "IdentifiedSpeaker",
    "MFCCStatisticsExtractor",
    "Speaker",
    "SpeakerCharacteristics",
    "SpeakerCluster",
    "SpeakerClusterer",
    "SpeakerDiarizationService",
    "SpeakerEmbedding",
    "SpeakerEmbeddingExtractor",
    "SpeakerIdentificationResult",
    "SpeakerIdentifier",
    "SpeakerProfile",
    "SpeakerProfileManager",
    "SpeakerSegment",
    "SpeakerTimelineBuilder",
    "TranscriptAligner",
    "TranscriptSegment",
    "VoiceActivityDetector",
    "VoiceSegment",
    "annotate_speaking_rate",
    "build_embedding_extractor",
]
