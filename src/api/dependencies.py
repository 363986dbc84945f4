from typing import Optional

from fastapi import Request

from api.config import Settings
from api.services import Services
from storage.durable_queue import DurableQueue


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    services = getattr(request.app.state, "services", None)
    if services is not None:
        return services.settings
    return request.app.state.settings


def get_durable_queue(request: Request) -> Optional[DurableQueue]:
    return get_services(request).queue
