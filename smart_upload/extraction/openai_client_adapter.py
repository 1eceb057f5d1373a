import base64
from typing import Any

import httpx
import openai

from smart_upload.extraction.client_base import BaseVisionClient
from smart_upload.extraction.exceptions import ExtractionError, ExtractionNetworkError
from smart_upload.pdf.models import PageImage


class OpenAIVisionClientAdapter(BaseVisionClient):
    """Vision client adapter built on the OpenAI-compatible chat API."""

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: int,
        base_url: str | None = None,
        json_mode: bool = True,
        max_tokens: int = 4096,
    ) -> None:
        self._client = openai.OpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            base_url=base_url,
        )
        self._json_mode = json_mode
        self._max_tokens = max_tokens

    def create_vision_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
        images: list[PageImage],
    ) -> str:
        request: dict[str, Any] = {
            "model": model,
            "temperature": temperature,
            "max_tokens": self._max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": _user_content(user_prompt, images)},
            ],
        }
        if self._json_mode:
            request["response_format"] = {"type": "json_object"}
        try:
            response = self._client.chat.completions.create(**request)
        except (openai.APIConnectionError, httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ExtractionNetworkError(
                f"AI provider network error: {exc}"
            ) from exc
        except openai.APIError as exc:
            raise ExtractionNetworkError(
                f"AI provider API error: {exc}"
            ) from exc

        if not response.choices:
            raise ExtractionError("AI returned no choices")
        content = response.choices[0].message.content
        if content is None:
            raise ExtractionError("AI returned empty response")
        return content


def _user_content(user_prompt: str, images: list[PageImage]) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = [{"type": "text", "text": user_prompt}]
    for image in images:
        encoded = base64.b64encode(image.data).decode("ascii")
        content.append({"type": "text", "text": image.label})
        content.append(
            {
                "type": "image_url",
                "image_url": {"url": f"data:{image.mime_type};base64,{encoded}"},
            }
        )
    return content
