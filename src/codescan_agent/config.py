"""
CodeScanAgent Configuration
===========================

This module handles configuration loading for the acquisition agent.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    CODESCAN_CAMERA_DEVICE        -> camera.device_index
    CODESCAN_SOURCE               -> acquisition.source
    CODESCAN_STREAM_URL           -> stream.url
    CODESCAN_MODE                 -> acquisition.mode
    CODESCAN_PRODUCT_ID           -> acquisition.product_id
    CODESCAN_STRATEGIES           -> decoding.strategies (comma separated)
    CODESCAN_REMOTE_SYMBOL_URL    -> decoding.remote_symbol.url
    CODESCAN_OCR_PROVIDER         -> decoding.text_recognition.provider
    GOOGLE_APPLICATION_CREDENTIALS-> decoding.text_recognition.google.credentials_path
    IFLYTEK_OCR_APPID             -> decoding.text_recognition.iflytek.app_id
    IFLYTEK_OCR_API_KEY           -> decoding.text_recognition.iflytek.api_key
    IFLYTEK_OCR_API_SECRET        -> decoding.text_recognition.iflytek.api_secret
    IFLYTEK_OCR_PATH              -> decoding.text_recognition.iflytek.path
    CODESCAN_MAX_RANGE_SIZE       -> reconcile.max_range_size
    CODESCAN_AGENT_PORT           -> server.port
    CODESCAN_LOG_LEVEL            -> logging.level
    PORT                          -> server.port (Cloud Run)

Example:
    from codescan_agent.config import settings

    print(settings.acquisition.mode)
    print(settings.decoding.strategies)
    print(settings.throttle.rescan_window_sec)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class AgentConfig(BaseModel):
    """Agent identification configuration."""

    name: str = Field(default="codescan-agent", description="Agent name")
    version: str = Field(default="v0.1.0", description="Protocol version")


class CameraConfig(BaseModel):
    """Local camera configuration."""

    device_index: int = Field(default=0, ge=0, description="OpenCV device index")
    width: int = Field(default=1280, ge=1, description="Requested frame width")
    height: int = Field(default=720, ge=1, description="Requested frame height")
    fps: int = Field(default=15, ge=1, le=120, description="Requested capture FPS")


class StreamConfig(BaseModel):
    """Remote frame stream configuration (websocket source)."""

    url: str = Field(
        default="ws://localhost:8000/ws/stream",
        description="WebSocket URL of the frame stream",
    )
    reconnect_backoff_ms: int = Field(
        default=500,
        ge=100,
        description="Backoff in milliseconds between reconnect attempts",
    )
    max_reconnect_attempts: int = Field(
        default=0,
        ge=0,
        description="Maximum reconnection attempts (0 = unlimited)",
    )


class AcquisitionConfig(BaseModel):
    """Acquisition session configuration."""

    source: str = Field(
        default="camera",
        description="Frame source: 'camera' or 'websocket'",
    )
    mode: str = Field(
        default="continuous",
        description="Acquisition mode: 'continuous' or 'single_shot'",
    )
    product_id: str = Field(
        default="default",
        description="Product whose existing codes are checked for duplicates",
    )
    cooldown_ms: int = Field(
        default=300,
        ge=0,
        le=5000,
        description="Pause before scanning resumes after an accepted code",
    )
    fallback_interval_sec: float = Field(
        default=1.0,
        gt=0,
        description="Interval of the snapshot fallback loop",
    )
    ready_timeout_sec: float = Field(
        default=10.0,
        gt=0,
        description="Maximum wait for the first frame after start",
    )
    native_scan_fps: float = Field(
        default=15.0,
        gt=0,
        description="Maximum rate of the continuous native decoder",
    )
    auto_submit: bool = Field(
        default=False,
        description="Forward accepted codes to the code store",
    )

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        if value not in ("continuous", "single_shot"):
            raise ValueError(f"Unknown acquisition mode: {value}")
        return value


class ThrottleConfig(BaseModel):
    """Throttle windows per channel (seconds)."""

    rescan_window_sec: float = Field(
        default=2.0,
        ge=0,
        description="Window suppressing re-acceptance of the same code",
    )
    duplicate_warning_window_sec: float = Field(
        default=5.0,
        ge=0,
        description="Window suppressing repeated duplicate-code warnings",
    )
    warning_window_sec: float = Field(
        default=3.0,
        ge=0,
        description="Window suppressing repeated generic warnings",
    )


class RemoteSymbolConfig(BaseModel):
    """Remote image-decoding service configuration."""

    url: str = Field(
        default="https://api.2dcode.biz/v1/read-qr-code",
        description="Endpoint accepting a multipart image upload",
    )
    include_inverted: bool = Field(
        default=True,
        description="Also upload the colour-inverted snapshot",
    )
    timeout_sec: float = Field(default=10.0, gt=0, description="HTTP timeout")


class GoogleVisionConfig(BaseModel):
    """Google Cloud Vision text recognition configuration."""

    credentials_path: Optional[str] = Field(
        default=None,
        description="Service account JSON (None = default credentials)",
    )


class IflytekConfig(BaseModel):
    """iFlytek general OCR configuration."""

    app_id: Optional[str] = Field(default=None, description="Application id")
    api_key: Optional[str] = Field(default=None, description="API key")
    api_secret: Optional[str] = Field(default=None, description="API secret")
    host: str = Field(default="api.xf-yun.com", description="API host")
    path: str = Field(default="/v1/private/sf8e6aca1", description="API path")
    timeout_sec: float = Field(default=10.0, gt=0, description="HTTP timeout")


class TextRecognitionConfig(BaseModel):
    """Remote text recognition configuration."""

    provider: str = Field(
        default="google_vision",
        description="Text recognition provider: 'google_vision' or 'iflytek'",
    )
    min_digits: int = Field(
        default=3,
        ge=1,
        description="Shortest digit run accepted from recognised text",
    )
    jpeg_quality: int = Field(
        default=70,
        ge=10,
        le=100,
        description="JPEG quality of the uploaded snapshot",
    )
    max_width: int = Field(
        default=1280,
        ge=64,
        description="Snapshots wider than this are downscaled before upload",
    )
    google: GoogleVisionConfig = Field(default_factory=GoogleVisionConfig)
    iflytek: IflytekConfig = Field(default_factory=IflytekConfig)


class DecodingConfig(BaseModel):
    """Decode strategy chain configuration."""

    strategies: List[str] = Field(
        default_factory=lambda: ["snapshot", "remote_symbol", "remote_text"],
        description="Ordered fallback strategies run by the periodic loop",
    )
    strategy_timeout_sec: float = Field(
        default=15.0,
        gt=0,
        description="Upper bound on a single strategy attempt",
    )
    remote_symbol: RemoteSymbolConfig = Field(default_factory=RemoteSymbolConfig)
    text_recognition: TextRecognitionConfig = Field(default_factory=TextRecognitionConfig)


class ReconcileConfig(BaseModel):
    """Range reconciliation limits."""

    max_range_size: int = Field(
        default=100_000,
        ge=1,
        description="Largest range (end - start + 1) that is expanded",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8002, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for CodeScanAgent.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    agent: AgentConfig = Field(default_factory=AgentConfig)
    camera: CameraConfig = Field(default_factory=CameraConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    acquisition: AcquisitionConfig = Field(default_factory=AcquisitionConfig)
    throttle: ThrottleConfig = Field(default_factory=ThrottleConfig)
    decoding: DecodingConfig = Field(default_factory=DecodingConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Sources
    if env_device := os.environ.get("CODESCAN_CAMERA_DEVICE"):
        config_data.setdefault("camera", {})["device_index"] = int(env_device)
    if env_source := os.environ.get("CODESCAN_SOURCE"):
        config_data.setdefault("acquisition", {})["source"] = env_source
    if env_url := os.environ.get("CODESCAN_STREAM_URL"):
        config_data.setdefault("stream", {})["url"] = env_url

    # Acquisition
    if env_mode := os.environ.get("CODESCAN_MODE"):
        config_data.setdefault("acquisition", {})["mode"] = env_mode
    if env_product := os.environ.get("CODESCAN_PRODUCT_ID"):
        config_data.setdefault("acquisition", {})["product_id"] = env_product

    # Decoding
    decoding = config_data.setdefault("decoding", {})
    if env_strategies := os.environ.get("CODESCAN_STRATEGIES"):
        decoding["strategies"] = [s.strip() for s in env_strategies.split(",") if s.strip()]
    if env_symbol_url := os.environ.get("CODESCAN_REMOTE_SYMBOL_URL"):
        decoding.setdefault("remote_symbol", {})["url"] = env_symbol_url

    text = decoding.setdefault("text_recognition", {})
    if env_provider := os.environ.get("CODESCAN_OCR_PROVIDER"):
        text["provider"] = env_provider
    if env_creds := os.environ.get("GOOGLE_APPLICATION_CREDENTIALS"):
        text.setdefault("google", {})["credentials_path"] = env_creds

    iflytek = text.setdefault("iflytek", {})
    if env_app := os.environ.get("IFLYTEK_OCR_APPID"):
        iflytek["app_id"] = env_app
    if env_key := os.environ.get("IFLYTEK_OCR_API_KEY"):
        iflytek["api_key"] = env_key
    if env_secret := os.environ.get("IFLYTEK_OCR_API_SECRET"):
        iflytek["api_secret"] = env_secret
    if env_path := os.environ.get("IFLYTEK_OCR_PATH"):
        iflytek["path"] = env_path

    if env_range := os.environ.get("CODESCAN_MAX_RANGE_SIZE"):
        config_data.setdefault("reconcile", {})["max_range_size"] = int(env_range)

    # Server settings (Cloud Run uses PORT env var)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("CODESCAN_AGENT_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("CODESCAN_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
