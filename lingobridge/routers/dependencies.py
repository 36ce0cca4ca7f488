from fastapi import Request

from lingobridge.services.translation_engine import TranslationEngine


def get_engine(request: Request) -> TranslationEngine:
    """The engine built in the app lifespan."""
    return request.app.state.engine
