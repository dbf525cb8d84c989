from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .config import OpenAISettings
from .utils import setup_logging

logger = setup_logging()

# Cache for Azure AD token
_token_cache: Dict[str, Any] = {}

RATE_LIMIT_WAIT_SECONDS = 62  # Azure asks for 60s, plus a small buffer


class OpenAIClientError(Exception):
    pass


def _get_azure_ad_token() -> str:
    """Get Azure AD token for Azure OpenAI using DefaultAzureCredential."""
    if _token_cache.get("token") and _token_cache.get("expires_at", 0) > time.time() + 60:
        return _token_cache["token"]

    try:
        from azure.identity import DefaultAzureCredential
        credential = DefaultAzureCredential()
        token = credential.get_token("https://cognitiveservices.azure.com/.default")
    except Exception as e:
        logger.error("Failed to get Azure AD token: %s", e)
        raise OpenAIClientError(f"Failed to get Azure AD token: {e}") from e

    _token_cache["token"] = token.token
    _token_cache["expires_at"] = token.expires_on
    logger.info("Obtained Azure AD token for OpenAI")
    return token.token


@dataclass
class _Endpoint:
    """One chat-completions target (primary, fallback or mini)."""
    name: str
    url: str
    params: Dict[str, str]
    headers: Dict[str, str]
    model: str


def _auth_headers(use_azure_ad: bool, api_key: Optional[str]) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if use_azure_ad:
        headers["Authorization"] = f"Bearer {_get_azure_ad_token()}"
    else:
        headers["api-key"] = api_key or ""
    return headers


def _build_endpoints(
    settings: OpenAISettings,
    deployment: str,
    model: str,
    api_version: str,
) -> List[_Endpoint]:
    """Primary first, then the fallback endpoint, then the mini deployment."""
    endpoints = [
        _Endpoint(
            name="primary",
            url=f"{settings.endpoint}/openai/deployments/{deployment}/chat/completions",
            params={"api-version": api_version},
            headers=_auth_headers(settings.use_azure_ad, settings.api_key),
            model=model,
        )
    ]

    if settings.fallback_endpoint and (settings.fallback_api_key or settings.fallback_use_azure_ad):
        fallback_deployment = settings.fallback_deployment_name or deployment
        endpoints.append(_Endpoint(
            name="fallback",
            url=f"{settings.fallback_endpoint}/openai/deployments/{fallback_deployment}/chat/completions",
            params={"api-version": settings.fallback_api_version or api_version},
            headers=_auth_headers(settings.fallback_use_azure_ad, settings.fallback_api_key),
            model=model,
        ))

    if settings.chat_deployment_name:
        endpoints.append(_Endpoint(
            name="mini",
            url=f"{settings.endpoint}/openai/deployments/{settings.chat_deployment_name}/chat/completions",
            params={"api-version": settings.chat_api_version or api_version},
            headers=_auth_headers(settings.use_azure_ad, settings.api_key),
            model=settings.chat_model_name or "gpt-4.1-mini",
        ))

    return endpoints


def _call_openai_endpoint(endpoint: _Endpoint, body: Dict[str, Any], timeout: float) -> Dict[str, Any]:
    """Make a single call to an OpenAI endpoint."""
    payload = dict(body, model=endpoint.model)
    resp = requests.post(
        endpoint.url,
        headers=endpoint.headers,
        params=endpoint.params,
        json=payload,
        timeout=timeout,
    )
    if resp.status_code >= 400:
        raise OpenAIClientError(f"OpenAI API error {resp.status_code}: {resp.text}")

    data = resp.json()
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise OpenAIClientError(f"Unexpected OpenAI response: {json.dumps(data)}") from exc

    logger.debug("Successfully called %s endpoint", endpoint.name)
    return {"content": content, "usage": data.get("usage", {})}


def chat_completion(
    settings: OpenAISettings,
    messages: List[Dict[str, str]],
    temperature: float = 0.0,
    max_tokens: int = 1200,
    max_retries: int = 3,
    retry_backoff: float = 1.5,
    json_mode: bool = False,
    timeout: float = 60,
    deployment_override: str | None = None,
    model_override: str | None = None,
    api_version_override: str | None = None,
) -> Dict[str, Any]:
    """Call Azure OpenAI / Foundry chat completions with retry logic and fallback.

    Uses the deployments chat completions endpoint:
        POST {endpoint}/openai/deployments/{deployment_name}/chat/completions?api-version=...

    A 429 on the primary endpoint moves the request to the fallback endpoint,
    and a 429 there moves it to the mini deployment. Endpoint switches do not
    count as attempts.

    Args:
        settings: OpenAI configuration settings
        messages: List of chat messages
        temperature: Sampling temperature (0.0 = deterministic)
        max_tokens: Maximum tokens in response
        max_retries: Number of attempts before giving up
        retry_backoff: Exponential backoff multiplier
        json_mode: Ask the model for a single JSON object
        timeout: Per-request timeout in seconds
        deployment_override: Optional deployment name to use instead of settings.deployment_name
        model_override: Optional model name to use instead of settings.model_name
        api_version_override: Optional API version to use instead of settings.api_version
    """
    if not settings.endpoint or not settings.deployment_name:
        raise OpenAIClientError(
            "Azure OpenAI settings are incomplete. "
            "Please set AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_DEPLOYMENT_NAME."
        )

    if not settings.use_azure_ad and not settings.api_key:
        raise OpenAIClientError(
            "Azure OpenAI authentication not configured. "
            "Either set AZURE_OPENAI_API_KEY or enable Azure AD auth with AZURE_OPENAI_USE_AZURE_AD=true."
        )

    endpoints = _build_endpoints(
        settings,
        deployment=deployment_override or settings.deployment_name,
        model=model_override or settings.model_name,
        api_version=api_version_override or settings.api_version,
    )

    body: Dict[str, Any] = {
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        body["response_format"] = {"type": "json_object"}

    current = 0
    attempts = 0
    last_err: Exception | None = None

    while attempts < max_retries:
        endpoint = endpoints[current]
        try:
            return _call_openai_endpoint(endpoint, body, timeout)
        except (OpenAIClientError, requests.RequestException, ValueError) as exc:
            last_err = exc
            is_rate_limited = "429" in str(exc) or "RateLimitReached" in str(exc)
            logger.warning("OpenAI chat_completion attempt on %s failed: %s", endpoint.name, exc)

            if is_rate_limited and current + 1 < len(endpoints):
                current += 1
                logger.info("Rate limited on %s endpoint - switching to %s", endpoint.name, endpoints[current].name)
                continue

            attempts += 1
            if attempts < max_retries:
                wait_time = RATE_LIMIT_WAIT_SECONDS if is_rate_limited else retry_backoff ** attempts
                time.sleep(wait_time)

    raise OpenAIClientError(f"OpenAI chat_completion failed after {attempts} attempts: {last_err}")
