from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	gemini_tts_model: str = Field(default="gemini-2.5-flash-preview-tts", validation_alias="GEMINI_TTS_MODEL")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# Speech synthesis: "gemini" returns raw PCM, "azure" returns MP3
	tts_provider: str = Field(default="gemini", validation_alias="TTS_PROVIDER")
	speech_key: str | None = Field(default=None, validation_alias="SPEECH_KEY")
	speech_region: str | None = Field(default=None, validation_alias="SPEECH_REGION")
	max_tts_chars: int = Field(default=500, validation_alias="MAX_TTS_CHARS")

	# Vendor call behaviour
	vendor_timeout_seconds: float = Field(default=8.0, validation_alias="VENDOR_TIMEOUT_SECONDS")
	tts_timeout_seconds: float = Field(default=15.0, validation_alias="TTS_TIMEOUT_SECONDS")
	retry_attempts: int = Field(default=3, validation_alias="RETRY_ATTEMPTS")
	retry_base_delay: float = Field(default=0.5, validation_alias="RETRY_BASE_DELAY")
	retry_factor: float = Field(default=2.0, validation_alias="RETRY_FACTOR")
	# No retry starts after this many seconds; with the vendor timeout this keeps a
	# failing turn under the 20s client timeout so the learner gets the 503
	retry_deadline_seconds: float = Field(default=12.0, validation_alias="RETRY_DEADLINE_SECONDS")

	# Sessions
	session_backend: str = Field(default="memory", validation_alias="SESSION_BACKEND")
	history_hard_cap: int = Field(default=500, validation_alias="HISTORY_HARD_CAP")
	history_soft_cap: int = Field(default=50, validation_alias="HISTORY_SOFT_CAP")
	history_prune_fraction: float = Field(default=0.2, validation_alias="HISTORY_PRUNE_FRACTION")
	session_idle_ttl_seconds: int = Field(default=6 * 60 * 60, validation_alias="SESSION_IDLE_TTL_SECONDS")
	session_sweep_seconds: int = Field(default=15 * 60, validation_alias="SESSION_SWEEP_SECONDS")
	# Comma separated keys sent as X-Tutor-Key; matching requests get the hard history cap
	privileged_keys: str = Field(default="", validation_alias="PRIVILEGED_KEYS")

	# Upload limit for recorded audio (decoded bytes)
	max_audio_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="MAX_AUDIO_BYTES")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Database (only used when SESSION_BACKEND=sql)
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	def privileged_key_set(self) -> set[str]:
		return {k.strip() for k in self.privileged_keys.split(",") if k.strip()}

settings = Settings()
