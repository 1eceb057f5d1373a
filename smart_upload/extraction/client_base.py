from abc import ABC, abstractmethod

from smart_upload.pdf.models import PageImage


class BaseVisionClient(ABC):
    """Contract for provider-specific vision model clients."""

    @abstractmethod
    def create_vision_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
        images: list[PageImage],
    ) -> str:
        """Send the prompt and labelled images; return provider response as plain text."""
