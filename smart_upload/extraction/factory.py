from typing import ClassVar

from smart_upload.config.settings import Settings
from smart_upload.extraction.base import BaseExtractor
from smart_upload.extraction.example_client_adapter import ExampleVisionClientAdapter
from smart_upload.extraction.extractor import VisionExtractor
from smart_upload.extraction.openai_client_adapter import OpenAIVisionClientAdapter


class ExtractorFactory:
    """Creates the configured extractor adapter."""

    OPENAI_COMPATIBLE_BASE_URLS: ClassVar[dict[str, str]] = {
        "openrouter": "https://openrouter.ai/api/v1",
        "groq": "https://api.groq.com/openai/v1",
        "together": "https://api.together.xyz/v1",
        "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
        "anthropic": "https://api.anthropic.com/v1/",
        "mistral": "https://api.mistral.ai/v1",
        "ollama": "http://localhost:11434/v1",
    }

    @classmethod
    def create(cls, settings: Settings) -> BaseExtractor:
        """Create a configured extractor from application settings."""
        provider = settings.extraction_provider.lower()
        if provider == "example":
            return VisionExtractor(
                client=ExampleVisionClientAdapter(),
                vision_model="example",
                temperature=0.0,
            )
        client = OpenAIVisionClientAdapter(
            api_key=cls._resolve_api_key(provider, settings),
            timeout_seconds=settings.extraction_timeout_seconds,
            base_url=cls._resolve_base_url(provider, settings),
            json_mode=settings.extraction_json_mode,
        )
        return VisionExtractor(
            client=client,
            vision_model=settings.extraction_vision_model,
            verification_model=settings.verification_model,
            temperature=settings.extraction_temperature,
        )

    @classmethod
    def _resolve_base_url(cls, provider: str, settings: Settings) -> str | None:
        if provider == "openai":
            return None
        if provider == "openai_compatible":
            url = (settings.extraction_openai_compatible_base_url or "").strip()
            if not url:
                raise ValueError(
                    "extraction_openai_compatible_base_url is required for "
                    "extraction_provider=openai_compatible"
                )
            return url
        default_base_url = cls.OPENAI_COMPATIBLE_BASE_URLS.get(provider)
        if default_base_url is not None:
            return default_base_url
        supported = [
            "example",
            "openai",
            "openai_compatible",
            *sorted(cls.OPENAI_COMPATIBLE_BASE_URLS),
        ]
        raise ValueError(
            f"Unknown extraction provider '{provider}'. Choose from: {supported}"
        )

    @classmethod
    def _resolve_api_key(cls, provider: str, settings: Settings) -> str:
        key_map = {
            "openai": settings.extraction_openai_api_key,
            "openai_compatible": settings.extraction_openai_compatible_api_key,
            "openrouter": settings.extraction_openrouter_api_key,
            "groq": settings.extraction_groq_api_key,
            "together": settings.extraction_together_api_key,
            "gemini": settings.extraction_gemini_api_key,
            "anthropic": settings.extraction_anthropic_api_key,
            "mistral": settings.extraction_mistral_api_key,
            "ollama": settings.extraction_ollama_api_key,
        }
        return key_map.get(provider, "") or ""
