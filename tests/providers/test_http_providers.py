"""
Provider adapter tests against httpx.MockTransport; no network access.
"""

import json
from decimal import Decimal

import httpx
import pytest

from lingobridge.providers.claude_provider import ClaudeProvider
from lingobridge.providers.deepl_provider import DEEPL_FREE_URL, DEEPL_PRO_URL, DeepLProvider
from lingobridge.translation.models import TranslationRequest
from lingobridge.utils.constants import HealthStatus
from lingobridge.utils.exceptions import ProviderError, ProviderTimeoutError


def mock_client(provider, handler):
    """Swap the provider's HTTP client for one backed by `handler`."""
    provider._client = httpx.AsyncClient(
        base_url=provider.base_url,
        headers=provider._default_headers(),
        transport=httpx.MockTransport(handler),
    )
    return provider


def respond(status_code, payload=None):
    def handler(request):
        return httpx.Response(status_code, json=payload if payload is not None else {})
    return handler


# ============================================================================
# DEEPL
# ============================================================================

class TestDeepLProvider:

    def test_free_keys_use_free_endpoint(self):
        assert DeepLProvider(api_key="secret:fx").base_url == DEEPL_FREE_URL
        assert DeepLProvider(api_key="secret").base_url == DEEPL_PRO_URL

    def test_missing_key_is_rejected(self):
        with pytest.raises(ValueError):
            DeepLProvider(api_key="")

    def test_language_code_mapping(self):
        assert DeepLProvider.map_target_code("en") == "EN-US"
        assert DeepLProvider.map_target_code("pt-br") == "PT-BR"
        assert DeepLProvider.map_target_code("es-mx") == "ES"
        assert DeepLProvider.map_source_code("auto") is None
        assert DeepLProvider.map_source_code("pt-br") == "PT"

    def test_supported_pairs(self):
        provider = DeepLProvider(api_key="secret")
        assert provider.supports_language_pair("en", "es")
        assert provider.supports_language_pair("auto", "pt-br")
        assert not provider.supports_language_pair("en", "th")

    @pytest.mark.asyncio
    async def test_translate(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "translations": [{"detected_source_language": "EN", "text": "Hola mundo"}],
            })

        provider = mock_client(DeepLProvider(api_key="secret:fx"), handler)
        request = TranslationRequest(text="Hello world", target_lang="es")

        response = await provider.translate(request)

        assert seen["path"] == "/v2/translate"
        assert seen["auth"] == "DeepL-Auth-Key secret:fx"
        assert seen["body"]["target_lang"] == "ES"
        assert "source_lang" not in seen["body"]
        assert response.translated_text == "Hola mundo"
        assert response.source_lang == "en"
        assert response.provider == "deepl"
        # (11 input + 10 output) characters at 0.000025
        assert response.cost.amount == Decimal("0.000525")
        assert response.cost.units_used == 21

    @pytest.mark.asyncio
    async def test_empty_translation_list_is_transient(self):
        provider = mock_client(DeepLProvider(api_key="secret"), respond(200, {"translations": []}))

        with pytest.raises(ProviderError) as exc_info:
            await provider.translate(TranslationRequest(text="Hello", target_lang="es"))
        assert exc_info.value.transient

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code, fatal", [
        (401, True),
        (403, True),
        (400, True),
        (429, False),
        (500, False),
        (503, False),
    ])
    async def test_status_classification(self, status_code, fatal):
        provider = mock_client(DeepLProvider(api_key="secret"), respond(status_code))

        with pytest.raises(ProviderError) as exc_info:
            await provider.translate(TranslationRequest(text="Hello", target_lang="es"))

        assert exc_info.value.fatal is fatal
        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        provider = mock_client(DeepLProvider(api_key="secret"), handler)

        with pytest.raises(ProviderTimeoutError) as exc_info:
            await provider.translate(TranslationRequest(text="Hello", target_lang="es"))
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = mock_client(DeepLProvider(api_key="secret"), handler)

        with pytest.raises(ProviderError) as exc_info:
            await provider.translate(TranslationRequest(text="Hello", target_lang="es"))
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_detect_language(self):
        provider = mock_client(
            DeepLProvider(api_key="secret"),
            respond(200, {"translations": [{"detected_source_language": "DE", "text": "Hello"}]}),
        )
        result = await provider.detect_language("Hallo")

        assert result.language == "de"
        assert result.source == "deepl"

    @pytest.mark.asyncio
    async def test_health_check_healthy(self):
        provider = mock_client(DeepLProvider(api_key="secret"), respond(200, {"character_count": 10}))
        health = await provider.health_check()

        assert health.status == HealthStatus.HEALTHY
        assert health.available is True
        assert health.latency_ms is not None

    @pytest.mark.asyncio
    async def test_health_check_bad_credentials_marks_unavailable(self):
        provider = mock_client(DeepLProvider(api_key="secret"), respond(403))
        health = await provider.health_check()

        assert health.status == HealthStatus.UNHEALTHY
        assert health.available is False
        assert "403" in health.last_error

    @pytest.mark.asyncio
    async def test_health_check_outage_keeps_provider_available(self):
        provider = mock_client(DeepLProvider(api_key="secret"), respond(503))
        health = await provider.health_check()

        assert health.status == HealthStatus.UNHEALTHY
        assert health.available is True

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        provider = mock_client(DeepLProvider(api_key="secret"), respond(200))
        await provider.close()
        await provider.close()


# ============================================================================
# CLAUDE
# ============================================================================

class TestClaudeProvider:

    def test_text_extraction_ignores_non_text_blocks(self):
        message = {"content": [
            {"type": "text", "text": " Hola"},
            {"type": "tool_use", "id": "x"},
            {"type": "text", "text": " mundo "},
        ]}
        assert ClaudeProvider._text_of(message) == "Hola mundo"
        assert ClaudeProvider._text_of({}) == ""

    @pytest.mark.asyncio
    async def test_translate_sends_context_in_system_prompt(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["api_key"] = request.headers["x-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "model": "claude-test",
                "content": [{"type": "text", "text": "Reinicia el `worker_pool`"}],
            })

        provider = mock_client(ClaudeProvider(api_key="sk-ant"), handler)
        request = TranslationRequest(
            text="Restart the `worker_pool`",
            source_lang="en",
            target_lang="es",
            context="Technical terms: worker_pool",
        )

        response = await provider.translate(request)

        assert seen["path"] == "/v1/messages"
        assert seen["api_key"] == "sk-ant"
        assert "English to Spanish" in seen["body"]["system"]
        assert "Technical terms: worker_pool" in seen["body"]["system"]
        assert seen["body"]["messages"] == [{"role": "user", "content": "Restart the `worker_pool`"}]
        assert response.translated_text == "Reinicia el `worker_pool`"
        assert response.model == "claude-test"

    @pytest.mark.asyncio
    async def test_empty_content_is_transient(self):
        provider = mock_client(ClaudeProvider(api_key="sk-ant"), respond(200, {"content": []}))

        with pytest.raises(ProviderError) as exc_info:
            await provider.translate(TranslationRequest(text="Hello", target_lang="es"))
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_detect_language_parses_code(self):
        provider = mock_client(
            ClaudeProvider(api_key="sk-ant"),
            respond(200, {"content": [{"type": "text", "text": "\"FR\"."}]}),
        )
        result = await provider.detect_language("Bonjour tout le monde")

        assert result.language == "fr"
        assert result.source == "claude"

    @pytest.mark.asyncio
    async def test_detect_language_rejects_garbage(self):
        provider = mock_client(
            ClaudeProvider(api_key="sk-ant"),
            respond(200, {"content": [{"type": "text", "text": "I think it is French"}]}),
        )
        with pytest.raises(ProviderError):
            await provider.detect_language("Bonjour")
