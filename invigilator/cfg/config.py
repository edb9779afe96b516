from __future__ import annotations
"""
Invigilator Configuration Classes

Pydantic-based configuration with validation and defaults.
Single source of truth for all configuration values.
"""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


# ============================================================================
# Constants - Single source of truth for default values
# ============================================================================

# Sampling cadence
DEFAULT_HOUSEKEEPING_INTERVAL_MS = 500
DEFAULT_IDENTITY_INTERVAL_MS = 2000
DEFAULT_BEHAVIOR_INTERVAL_MS = 1000

# Behavior scoring
DEFAULT_GAZE_DOWN_THRESHOLD_SEC = 1.5
DEFAULT_GAZE_OFFSET_THRESHOLD = 0.05
DEFAULT_HEAD_PITCH_DOWN_DEG = -15.0
DEFAULT_HAND_NEAR_FACE_DISTANCE = 0.15
DEFAULT_EDGE_THRESHOLD = 0.1
DEFAULT_HISTORY_SIZE = 10
DEFAULT_HISTORY_RATIO = 0.7
DEFAULT_SCORE_GAZE_DOWN = 30
DEFAULT_SCORE_HEAD_PITCH_DOWN = 20
DEFAULT_SCORE_HAND_NEAR_FACE = 20
DEFAULT_SCORE_FACE_OUT_OF_FRAME = 10
DEFAULT_DISTRACTED_SCORE = 20

# Object detection
DEFAULT_OBJECT_CONFIDENCE = 0.5
DEFAULT_YOLO_MODEL = "yolo11n.pt"
DEFAULT_FACE_CONFIDENCE = 0.5

# Escalation ladders
DEFAULT_TICK_SECONDS = 1.0
DEFAULT_ABSENCE_STAGE_SECONDS = 10
DEFAULT_ABSENCE_STAGES = 2
DEFAULT_MULTI_FACE_SECONDS = 5
DEFAULT_OBJECT_STRIKE_LIMIT = 3

# Termination
DEFAULT_EXIT_DELAY_SECONDS = 5.0
DEFAULT_COMPLETION_EXIT_DELAY_SECONDS = 0.5
DEFAULT_JPEG_QUALITY = 80

# Narration
DEFAULT_NARRATION_SETTLE_MS = 800
DEFAULT_TTS_VOICE = "alloy"

# Backend
DEFAULT_API_BASE_URL = "http://localhost:5000"
DEFAULT_REQUEST_TIMEOUT = 10.0

# Session store
DEFAULT_STORE_PATH = ".invigilator/sessions.json"


# ============================================================================
# Base Configuration
# ============================================================================

class BaseConfig(BaseModel):
    """Base configuration class for all invigilator configs."""

    verbose: bool = Field(default=True, description="Enable verbose output")

    class Config:
        extra = "allow"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.model_dump()})"


# ============================================================================
# Component Configurations (derived from Settings)
# ============================================================================

class IdentityConfig(BaseConfig):
    """Configuration for the identity sampler."""

    housekeeping_interval_ms: int = Field(default=DEFAULT_HOUSEKEEPING_INTERVAL_MS, description="Fast tick deciding whether a sample is due")
    check_interval_ms: int = Field(default=DEFAULT_IDENTITY_INTERVAL_MS, description="Interval between identity samples")
    pause_on_distraction: bool = Field(default=True, description="Skip identity comparison while the candidate is distracted")
    face_confidence: float = Field(default=DEFAULT_FACE_CONFIDENCE, description="Face detection confidence threshold")


class BehaviorConfig(BaseConfig):
    """Configuration for the behavior sampler and its scoring thresholds."""

    sample_interval_ms: int = Field(default=DEFAULT_BEHAVIOR_INTERVAL_MS, description="Interval between behavior samples")

    # Signal thresholds
    gaze_down_threshold_sec: float = Field(default=DEFAULT_GAZE_DOWN_THRESHOLD_SEC, description="Gaze-down duration that scores")
    gaze_offset_threshold: float = Field(default=DEFAULT_GAZE_OFFSET_THRESHOLD, description="Eye-below-nose offset counted as gaze down")
    head_pitch_down_deg: float = Field(default=DEFAULT_HEAD_PITCH_DOWN_DEG, description="Pitch below which the head counts as down")
    hand_near_face_distance: float = Field(default=DEFAULT_HAND_NEAR_FACE_DISTANCE, description="Normalized hand-to-nose distance")
    edge_threshold: float = Field(default=DEFAULT_EDGE_THRESHOLD, description="Frame margin counted as out of frame")
    history_size: int = Field(default=DEFAULT_HISTORY_SIZE, description="Frames in the sustained-signal window")
    history_ratio: float = Field(default=DEFAULT_HISTORY_RATIO, description="Fraction of window required for sustained signals")

    # Score weights
    score_gaze_down: int = Field(default=DEFAULT_SCORE_GAZE_DOWN)
    score_head_pitch_down: int = Field(default=DEFAULT_SCORE_HEAD_PITCH_DOWN)
    score_hand_near_face: int = Field(default=DEFAULT_SCORE_HAND_NEAR_FACE)
    score_face_out_of_frame: int = Field(default=DEFAULT_SCORE_FACE_OUT_OF_FRAME)

    # Status thresholds
    distracted_score: int = Field(default=DEFAULT_DISTRACTED_SCORE, description="Score above which status is Distracted")

    # Object detection
    object_confidence: float = Field(default=DEFAULT_OBJECT_CONFIDENCE, description="Prohibited object confidence threshold")
    yolo_model_path: str = Field(default=DEFAULT_YOLO_MODEL, description="Path to YOLO model weights")


class RuleConfig(BaseConfig):
    """Configuration for the escalation ladders."""

    tick_seconds: float = Field(default=DEFAULT_TICK_SECONDS, description="Countdown timer period")
    absence_stage_seconds: int = Field(default=DEFAULT_ABSENCE_STAGE_SECONDS, description="Grace per camera-absence stage")
    absence_stages: int = Field(default=DEFAULT_ABSENCE_STAGES, description="Warning stages before camera-absence termination")
    multi_face_seconds: int = Field(default=DEFAULT_MULTI_FACE_SECONDS, description="Grace before multiple-faces termination")
    object_strike_limit: int = Field(default=DEFAULT_OBJECT_STRIKE_LIMIT, description="Strike that terminates")


class TerminationConfig(BaseConfig):
    """Configuration for the termination coordinator."""

    exit_delay_seconds: float = Field(default=DEFAULT_EXIT_DELAY_SECONDS, description="Delay before leaving after termination")
    completion_exit_delay_seconds: float = Field(default=DEFAULT_COMPLETION_EXIT_DELAY_SECONDS, description="Delay before leaving after completion")
    jpeg_quality: int = Field(default=DEFAULT_JPEG_QUALITY, description="Evidence JPEG quality")
    evidence_rules: list[str] = Field(default_factory=lambda: ["identity_mismatch"], description="Rules that capture evidence")
    exit_destination: str = Field(default="/dashboard", description="Where the host goes after termination")
    completion_destination: str = Field(default="/interview-feedback", description="Where the host goes after completion")


class NarrationConfig(BaseConfig):
    """Configuration for the narration channel."""

    settle_ms: int = Field(default=DEFAULT_NARRATION_SETTLE_MS, description="Delay letting assistant text settle before speaking")
    voice: str = Field(default=DEFAULT_TTS_VOICE, description="TTS voice")


class BackendConfig(BaseConfig):
    """Configuration for the backend HTTP API."""

    base_url: str = Field(default=DEFAULT_API_BASE_URL, description="Backend base URL")
    api_token: Optional[str] = Field(default=None, description="Bearer token")
    timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, description="Request timeout in seconds")


class StoreConfig(BaseConfig):
    """Configuration for the persisted session store."""

    path: str = Field(default=DEFAULT_STORE_PATH, description="JSON file backing the session store")


# ============================================================================
# Main Settings (Single Source of Truth with Environment Variable Support)
# ============================================================================

class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All component configs are derived from these settings. Every field
    can be overridden with an ``INVIGILATOR_`` prefixed environment variable.
    """

    # Cadence
    housekeeping_interval_ms: int = Field(default=DEFAULT_HOUSEKEEPING_INTERVAL_MS)
    identity_interval_ms: int = Field(default=DEFAULT_IDENTITY_INTERVAL_MS)
    behavior_interval_ms: int = Field(default=DEFAULT_BEHAVIOR_INTERVAL_MS)
    pause_on_distraction: bool = Field(default=True)

    # Detection
    face_confidence: float = Field(default=DEFAULT_FACE_CONFIDENCE)
    object_confidence: float = Field(default=DEFAULT_OBJECT_CONFIDENCE)
    yolo_model_path: str = Field(default=DEFAULT_YOLO_MODEL)
    remote_object_detection: bool = Field(default=False)

    # Escalation
    absence_stage_seconds: int = Field(default=DEFAULT_ABSENCE_STAGE_SECONDS)
    multi_face_seconds: int = Field(default=DEFAULT_MULTI_FACE_SECONDS)
    object_strike_limit: int = Field(default=DEFAULT_OBJECT_STRIKE_LIMIT)

    # Termination
    exit_delay_seconds: float = Field(default=DEFAULT_EXIT_DELAY_SECONDS)

    # Narration
    narration_settle_ms: int = Field(default=DEFAULT_NARRATION_SETTLE_MS)
    tts_voice: str = Field(default=DEFAULT_TTS_VOICE)

    # Backend
    api_base_url: str = Field(default=DEFAULT_API_BASE_URL)
    api_token: Optional[str] = Field(default=None)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT)

    # Store
    store_path: str = Field(default=DEFAULT_STORE_PATH)

    # LiveKit
    livekit_url: str = Field(default="ws://localhost:7880")
    livekit_api_key: str = Field(default="devkey")
    livekit_api_secret: str = Field(default="secret")

    # API server
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8001)
    log_level: str = Field(default="INFO")

    class Config:
        env_prefix = "INVIGILATOR_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def to_identity_config(self) -> IdentityConfig:
        """Convert settings to IdentityConfig."""
        return IdentityConfig(
            housekeeping_interval_ms=self.housekeeping_interval_ms,
            check_interval_ms=self.identity_interval_ms,
            pause_on_distraction=self.pause_on_distraction,
            face_confidence=self.face_confidence,
        )

    def to_behavior_config(self) -> BehaviorConfig:
        """Convert settings to BehaviorConfig."""
        return BehaviorConfig(
            sample_interval_ms=self.behavior_interval_ms,
            object_confidence=self.object_confidence,
            yolo_model_path=self.yolo_model_path,
        )

    def to_rule_config(self) -> RuleConfig:
        """Convert settings to RuleConfig."""
        return RuleConfig(
            absence_stage_seconds=self.absence_stage_seconds,
            multi_face_seconds=self.multi_face_seconds,
            object_strike_limit=self.object_strike_limit,
        )

    def to_termination_config(self) -> TerminationConfig:
        """Convert settings to TerminationConfig."""
        return TerminationConfig(exit_delay_seconds=self.exit_delay_seconds)

    def to_narration_config(self) -> NarrationConfig:
        """Convert settings to NarrationConfig."""
        return NarrationConfig(settle_ms=self.narration_settle_ms, voice=self.tts_voice)

    def to_backend_config(self) -> BackendConfig:
        """Convert settings to BackendConfig."""
        return BackendConfig(
            base_url=self.api_base_url,
            api_token=self.api_token,
            timeout=self.request_timeout,
        )

    def to_store_config(self) -> StoreConfig:
        """Convert settings to StoreConfig."""
        return StoreConfig(path=self.store_path)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
