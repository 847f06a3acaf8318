from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi.responses import JSONResponse


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-webhook-signature",
    "Access-Control-Allow-Methods": "GET, HEAD, POST, OPTIONS",
}


@dataclass(frozen=True)
class ProviderPolicy:
    # Answer 200 on unexpected failures so the provider does not retry.
    suppress_error_status: bool

    def internal_error_status(self) -> int:
        return 200 if self.suppress_error_status else 500


PROVIDER_POLICIES: dict[str, ProviderPolicy] = {
    "thrivecart": ProviderPolicy(suppress_error_status=True),
    "fanbases": ProviderPolicy(suppress_error_status=False),
}


def json_response(content: dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=CORS_HEADERS)


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return json_response({"error": message, **extra}, status_code=status_code)


def internal_error_response(provider: str, message: str) -> JSONResponse:
    policy = PROVIDER_POLICIES[provider]
    return error_response(policy.internal_error_status(), message or "Internal server error")
