"""Example vision client adapter.

Use this module as a reference when implementing new provider adapters.
Implement BaseVisionClient and register the provider in ExtractorFactory.
"""

import json
import re
from typing import ClassVar

from smart_upload.extraction.client_base import BaseVisionClient
from smart_upload.pdf.models import PageImage

_TOTAL_PAGES = re.compile(r"Total pages[^:]*:\s*(\d+)")


class ExampleVisionClientAdapter(BaseVisionClient):
    """Example adapter that answers every call with a fixed, valid response.

    No network calls. The document is described as one full score covering
    every page; header-label calls get a null label for each image.
    """

    DEFAULT_RESPONSE: ClassVar[dict[str, object]] = {
        "title": "Example Piece",
        "composer": None,
        "fileType": "FULL_SCORE",
        "isMultiPart": False,
        "confidenceScore": 50,
        "cuttingInstructions": [],
    }

    def create_vision_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
        images: list[PageImage],
    ) -> str:
        _ = model, temperature, system_prompt
        if '"labels"' in user_prompt:
            return json.dumps(
                {
                    "labels": [
                        {"page": image.page_index + 1, "label": None, "confidence": 0}
                        for image in images
                    ]
                }
            )
        response = dict(self.DEFAULT_RESPONSE)
        match = _TOTAL_PAGES.search(user_prompt)
        if match:
            total = int(match.group(1))
            response["cuttingInstructions"] = [
                {
                    "partName": "Full Score",
                    "instrument": "Full Score",
                    "section": "Score",
                    "transposition": "C",
                    "partNumber": 1,
                    "pageRange": [1, total],
                }
            ]
        return json.dumps(response)
