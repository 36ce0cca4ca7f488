import re
import threading
from typing import Awaitable, Callable, Iterable, Optional

from lingua import IsoCode639_1, LanguageDetectorBuilder

from lingobridge.translation.models import LanguageDetectionResult
from lingobridge.utils.async_wrappers import run_in_thread
from lingobridge.utils.constants import UNKNOWN_LANGUAGE
from lingobridge.utils.logger.custom_logging import LoggerMixin


# Union of what the configured providers can translate
DEFAULT_DETECTION_LANGUAGES = (
    "en", "es", "fr", "de", "it", "pt", "ru", "zh", "ja", "ko", "ar", "hi",
    "nl", "pl", "tr", "vi", "th", "id", "ms", "lt", "lv", "et", "bg", "cs",
    "da", "el", "fi", "hu", "nb", "ro", "sk", "sl", "sv", "uk", "bn", "ta",
)

ProviderDetectFallback = Callable[[str], Awaitable[Optional[LanguageDetectionResult]]]


class LanguageDetector(LoggerMixin):
    """
    Local language detection with lingua, falling back to providers.

    The lingua model is built lazily on first use; building it for a few
    dozen languages takes a moment and most requests carry an explicit
    source language.
    """

    def __init__(self, languages: Iterable[str] = DEFAULT_DETECTION_LANGUAGES, min_confidence: float = 0.5):
        super().__init__()
        self.languages = tuple(languages)
        self.min_confidence = min_confidence
        self._language_detector = None
        self._build_lock = threading.Lock()

    def _get_detector(self):
        if self._language_detector is None:
            with self._build_lock:
                if self._language_detector is None:
                    iso_codes = [
                        getattr(IsoCode639_1, code.upper())
                        for code in self.languages
                        if hasattr(IsoCode639_1, code.upper())
                    ]
                    self._language_detector = LanguageDetectorBuilder.from_iso_codes_639_1(*iso_codes).build()
                    self.logger.info(f"Language detector initialized for {len(iso_codes)} languages")
        return self._language_detector

    @staticmethod
    def _clean_text_for_detection(text: str) -> str:
        """Strip code, URLs, mentions and symbols that skew detection."""
        text = re.sub(r'```[\s\S]*?```', ' ', text)
        text = re.sub(r'`[^`]+`', ' ', text)
        text = re.sub(r'https?://\S+', ' ', text)
        text = re.sub(r'[@#]\w+', ' ', text)
        text = re.sub(r'\d+', ' ', text)
        text = re.sub(r'[^\w\s]', ' ', text)
        return ' '.join(text.split())

    def detect_with_library(self, text: str) -> Optional[LanguageDetectionResult]:
        clean_text = self._clean_text_for_detection(text)
        if not clean_text:
            return None

        detector = self._get_detector()
        detected = detector.detect_language_of(clean_text)
        if detected is None:
            return None

        confidence = detector.compute_language_confidence(clean_text, detected)
        if confidence < self.min_confidence:
            self.logger.debug(f"Library detection below threshold: {detected} ({confidence:.2f})")
            return None

        return LanguageDetectionResult(
            language=detected.iso_code_639_1.name.lower(),
            confidence=round(confidence, 4),
            source="local",
        )

    async def detect(
        self,
        text: str,
        fallback: Optional[ProviderDetectFallback] = None,
    ) -> LanguageDetectionResult:
        """
        Detect the language of `text`; returns "und" with confidence 0 when
        neither the library nor any provider could tell.
        """
        if not text or not text.strip():
            return LanguageDetectionResult(language=UNKNOWN_LANGUAGE, confidence=0.0)

        try:
            result = await run_in_thread(self.detect_with_library, text)
        except Exception as e:
            self.logger.error(f"Error in library language detection: {e}")
            result = None

        if result is None and fallback is not None:
            self.logger.info("Library detection inconclusive, asking providers")
            result = await fallback(text)

        if result is None:
            self.logger.warning("All detection methods failed")
            return LanguageDetectionResult(language=UNKNOWN_LANGUAGE, confidence=0.0)

        self.logger.debug(f"Detected language {result.language} via {result.source}")
        return result
