from smart_upload.extraction.base import BaseExtractor
from smart_upload.extraction.extractor import VisionExtractor
from smart_upload.extraction.factory import ExtractorFactory

__all__ = ["BaseExtractor", "ExtractorFactory", "VisionExtractor"]
