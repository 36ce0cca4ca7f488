from fastapi import Depends, status
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from lingobridge.routers.dependencies import get_engine
from lingobridge.services.translation_engine import TranslationEngine
from lingobridge.utils.config import settings
from lingobridge.utils.logger.custom_logging import LogHandler


router = APIRouter()
logger = LogHandler().get_logger(__name__)


@router.get('/ping', responses={200: {
            'description': 'Healthcheck Service',
            'content': {
                'application/json': {
                    'example': {'REVISION': '0.1.0'}
                }
            }
        }})
async def health_check() -> JSONResponse:
    logger.info('event=health-check-success message="Successful health check. "')
    content = {'REVISION': settings.API_VERSION}
    return JSONResponse(content=content, status_code=status.HTTP_200_OK)


@router.get('/providers/health')
async def providers_health(engine: TranslationEngine = Depends(get_engine)) -> JSONResponse:
    """Latest health snapshot and circuit state per configured provider."""
    return JSONResponse(
        content={
            'providers': engine.get_provider_status(),
            'cache': engine.cache.stats(),
            'context': engine.context_manager.stats(),
            'usage_pending': engine.usage_tracker.pending,
        },
        status_code=status.HTTP_200_OK,
    )
