class LoggerInstance(object):
    def __new__(cls):
        from lingobridge.utils.logger.custom_logging import LogHandler
        return LogHandler()


class IncludeAPIRouter(object):
    def __new__(cls):
        from fastapi.routing import APIRouter

        # =============================================================================
        # IMPORT ALL ROUTERS
        # =============================================================================
        from lingobridge.routers.health_check import router as router_health_check
        from lingobridge.routers.translation import router as router_translation
        from lingobridge.routers.billing import router as router_billing

        # =============================================================================
        # API V1
        # =============================================================================
        router = APIRouter(prefix='/api/v1')
        router.include_router(router_health_check, tags=['Health Check'])
        router.include_router(router_translation, tags=['Translation'])
        router.include_router(router_billing, tags=['Billing'])

        return router


# Instance creation
logger_instance = LoggerInstance()
