from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from lingobridge.routers.dependencies import get_engine
from lingobridge.services.translation_engine import TranslationEngine
from lingobridge.translation.models import LanguageDetectionResult, TranslationRequest, TranslationResponse
from lingobridge.utils.constants import MAX_TEXT_LENGTH
from lingobridge.utils.exceptions import InsufficientCreditsError, LedgerWriteError, TranslationValidationError
from lingobridge.utils.logger.custom_logging import LogHandler


router = APIRouter()
logger = LogHandler().get_logger(__name__)


class DetectLanguageAPIRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)


@router.post("/translate", response_model=TranslationResponse)
async def translate_text(
    request: TranslationRequest,
    engine: TranslationEngine = Depends(get_engine),
) -> TranslationResponse:
    try:
        return await engine.translate(request)
    except TranslationValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except InsufficientCreditsError as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "Insufficient credits",
                "workspace_id": e.workspace_id,
                "required": str(e.required),
                "available": str(e.available),
            },
        )
    except LedgerWriteError as e:
        logger.error(f"event=translate-ledger-unavailable request_id={request.request_id} error={e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Billing temporarily unavailable")


@router.post("/detect-language", response_model=LanguageDetectionResult)
async def detect_language(
    request: DetectLanguageAPIRequest,
    engine: TranslationEngine = Depends(get_engine),
) -> LanguageDetectionResult:
    return await engine.detect_language(request.text)
