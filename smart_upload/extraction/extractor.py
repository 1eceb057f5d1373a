"""Vision-model metadata extractor for sheet-music uploads."""

import json
from pathlib import Path

from smart_upload.extraction.base import BaseExtractor
from smart_upload.extraction.client_base import BaseVisionClient
from smart_upload.extraction.exceptions import ExtractionError, ExtractionNetworkError
from smart_upload.extraction.json_parser import parse_model_json
from smart_upload.extraction.models import (
    ExtractedMetadata,
    ExtractionOutcome,
    HeaderLabel,
    MalformedExtraction,
)
from smart_upload.extraction.prompt_loader import load_prompt_template
from smart_upload.extraction.validator import validate_and_build, validate_header_labels
from smart_upload.logging.logger import Log
from smart_upload.parts.models import CuttingInstruction
from smart_upload.pdf.models import PageImage

HEADER_LABEL_BATCH_SIZE = 30


class VisionExtractor(BaseExtractor):
    """Extracts catalogue metadata and cutting instructions using a vision model."""

    def __init__(
        self,
        *,
        client: BaseVisionClient,
        vision_model: str,
        verification_model: str = "",
        temperature: float = 0.1,
        prompt_dir: Path | None = None,
    ) -> None:
        self._client = client
        self._vision_model = vision_model
        self._verification_model = verification_model or vision_model
        self._temperature = max(0.0, min(0.2, temperature))
        self._vision_system = load_prompt_template("vision_system.txt", prompt_dir)
        self._vision_user = load_prompt_template("vision_user.txt", prompt_dir)
        self._vision_schema = load_prompt_template("extraction_schema.json", prompt_dir)
        self._header_system = load_prompt_template("header_label_system.txt", prompt_dir)
        self._header_user = load_prompt_template("header_label_user.txt", prompt_dir)
        self._header_schema = load_prompt_template("header_label_schema.json", prompt_dir)
        self._verify_system = load_prompt_template("verification_system.txt", prompt_dir)
        self._verify_user = load_prompt_template("verification_user.txt", prompt_dir)
        self._verify_schema = load_prompt_template("verification_schema.json", prompt_dir)

    @property
    def vision_model(self) -> str:
        return self._vision_model

    @property
    def verification_model(self) -> str:
        return self._verification_model

    def extract_metadata(
        self,
        images: list[PageImage],
        *,
        total_pages: int,
        seed_instructions: list[CuttingInstruction] | None = None,
    ) -> ExtractionOutcome:
        prompt = self._vision_user.format(
            total_pages=total_pages,
            sampled_pages=len(images),
            page_list=", ".join(image.label for image in images) or "none",
            seed_instructions=_format_seed(seed_instructions),
            json_schema=self._vision_schema,
        )
        Log.debug(f"Vision prompt:\n{prompt}")
        raw = self._call_ai(self._vision_model, self._vision_system, prompt, images)
        Log.debug(f"Vision raw response:\n{raw}")
        outcome = self._build_outcome(raw, self._vision_model, ("confidenceScore",))
        if outcome.kind == "parsed":
            Log.info(
                f"Extraction complete: confidence={outcome.confidence}, "
                f"{len(outcome.instructions)} cutting instructions"
            )
        return outcome

    def label_headers(self, crops: list[PageImage]) -> list[HeaderLabel]:
        labels: list[HeaderLabel] = []
        for offset in range(0, len(crops), HEADER_LABEL_BATCH_SIZE):
            batch = crops[offset : offset + HEADER_LABEL_BATCH_SIZE]
            prompt = self._header_user.format(
                page_labels=", ".join(crop.label for crop in batch),
                json_schema=self._header_schema,
            )
            raw = self._call_ai(self._vision_model, self._header_system, prompt, batch)
            try:
                batch_labels = validate_header_labels(parse_model_json(raw))
            except ExtractionError as exc:
                Log.warning(f"Header label batch at offset {offset} ignored: {exc}")
                continue
            wanted = {crop.page_index for crop in batch}
            labels.extend(label for label in batch_labels if label.page_index in wanted)
        Log.info(
            f"Header labelling complete: {sum(1 for x in labels if x.label)}/{len(crops)} labelled"
        )
        return labels

    def verify(
        self,
        images: list[PageImage],
        *,
        total_pages: int,
        previous_metadata: ExtractedMetadata,
        previous_instructions: list[CuttingInstruction],
    ) -> ExtractionOutcome:
        record = previous_metadata.to_dict()
        record["cuttingInstructions"] = [i.to_dict() for i in previous_instructions]
        prompt = self._verify_user.format(
            total_pages=total_pages,
            original_metadata_json=json.dumps(record, indent=2),
            json_schema=self._verify_schema,
        )
        Log.debug(f"Verification prompt:\n{prompt}")
        raw = self._call_ai(self._verification_model, self._verify_system, prompt, images)
        Log.debug(f"Verification raw response:\n{raw}")
        return self._build_outcome(
            raw,
            self._verification_model,
            ("verificationConfidence", "confidenceScore"),
        )

    def _call_ai(
        self, model: str, system_prompt: str, user_prompt: str, images: list[PageImage]
    ) -> str:
        try:
            return self._client.create_vision_completion(
                model=model,
                temperature=self._temperature,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                images=images,
            )
        except ExtractionNetworkError:
            raise
        except ExtractionError as exc:
            Log.warning(f"Provider returned an unusable response: {exc}")
            return ""

    @staticmethod
    def _build_outcome(
        raw: str, model: str, confidence_keys: tuple[str, ...]
    ) -> ExtractionOutcome:
        try:
            return validate_and_build(
                parse_model_json(raw), confidence_keys=confidence_keys, model=model
            )
        except ExtractionError as exc:
            Log.warning(f"Malformed model response from {model}: {exc}")
            return MalformedExtraction(reason=str(exc), raw_response=raw, model=model)


def _format_seed(seed: list[CuttingInstruction] | None) -> str:
    if not seed:
        return "none"
    return json.dumps([instruction.to_dict() for instruction in seed], indent=2)
