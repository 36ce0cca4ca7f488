"""
Request/response models shared by providers, router, cache and engine.
"""

import re
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lingobridge.utils.constants import AUTO_LANGUAGE, MAX_TEXT_LENGTH, QualityTier


MONEY_QUANTUM = Decimal("0.000001")
MAX_CONTEXT_LENGTH = 4_000

# ISO 639-1 (or 639-3) with an optional region/script subtag: en, pt-br, zh-hant
_LANGUAGE_CODE_RE = re.compile(r"^[a-z]{2,3}(-[a-z0-9]{2,8})?$")


def quantize_money(value) -> Decimal:
    """Round to the ledger's 6 decimal places."""
    return Decimal(str(value)).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def normalize_language_code(code: str) -> str:
    return code.strip().replace("_", "-").lower()


class CostEstimate(BaseModel):
    amount: Decimal = Decimal("0")
    currency: str = "EUR"
    units: int = 0


class TranslationCost(BaseModel):
    amount: Decimal = Decimal("0")
    currency: str = "EUR"
    units_used: int = 0


class ResponseMetadata(BaseModel):
    duration_ms: float = 0.0
    cache_hit: bool = False
    request_id: Optional[str] = None
    degraded: bool = False
    attempts: List[str] = Field(default_factory=list, description="Provider ids tried, in order")


class TranslationRequest(BaseModel):
    """
    One translation call.

    `source_lang` may stay "auto" until detection resolves it; `target_lang`
    is always concrete. A request whose source equals its target is valid and
    is answered as a no-op.
    """

    model_config = ConfigDict(use_enum_values=False)

    text: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    source_lang: str = Field(default=AUTO_LANGUAGE, description="ISO 639-1 code or 'auto'")
    target_lang: str = Field(..., description="ISO 639-1 code")
    context: Optional[str] = Field(default=None, max_length=MAX_CONTEXT_LENGTH)
    quality_tier: QualityTier = QualityTier.BALANCED
    max_cost: Optional[Decimal] = Field(default=None, ge=0)
    timeout_ms: Optional[int] = Field(default=None, gt=0, le=120_000)

    workspace_id: str = Field(default="default", min_length=1, max_length=128)
    user_id: Optional[str] = None
    channel_id: Optional[str] = None
    message_id: Optional[str] = None
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex, min_length=1, max_length=128)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must contain non-whitespace characters")
        return value

    @field_validator("source_lang")
    @classmethod
    def validate_source_lang(cls, value: str) -> str:
        value = normalize_language_code(value)
        if value != AUTO_LANGUAGE and not _LANGUAGE_CODE_RE.match(value):
            raise ValueError(f"invalid source language code: {value!r}")
        return value

    @field_validator("target_lang")
    @classmethod
    def validate_target_lang(cls, value: str) -> str:
        value = normalize_language_code(value)
        if value == AUTO_LANGUAGE:
            raise ValueError("target language must be a concrete language code")
        if not _LANGUAGE_CODE_RE.match(value):
            raise ValueError(f"invalid target language code: {value!r}")
        return value


class TranslationResponse(BaseModel):
    translated_text: str
    original_text: str
    source_lang: str
    target_lang: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    provider: str
    model: str
    cost: TranslationCost = Field(default_factory=TranslationCost)
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


class LanguageDetectionResult(BaseModel):
    language: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: str = Field(default="local", description="'local' detector or a provider id")
