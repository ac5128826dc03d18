from .base import BaseExtractor
from .factory import ExtractorFactory

__all__ = ["BaseExtractor", "ExtractorFactory"]
