from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, HTTPException, Request

from ..catalog import WooCommerceCatalog
from ..completion_client import CompletionClient
from ..config import CategorizerSettings
from .jobs import JobRegistry
from .settings import WebUISettings


@dataclass(frozen=True)
class Services:
    settings: WebUISettings
    categorizer: CategorizerSettings
    registry: JobRegistry
    # Both return fresh instances so missing credentials surface per request.
    catalog_factory: Callable[[], WooCommerceCatalog]
    client_factory: Callable[[], CompletionClient]


def require_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Web UI services are not initialized.")
    return services


def require_token(request: Request, services: Services = Depends(require_services)) -> None:
    expected = services.settings.api_token
    if not expected:
        return
    header = request.headers.get("Authorization", "").strip()
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Authentication required.")
    if not secrets.compare_digest(token.strip(), expected):
        raise HTTPException(status_code=403, detail="Invalid API token.")
