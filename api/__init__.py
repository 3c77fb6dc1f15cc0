"""HTTP layer: response envelope, data/actions routers and the app factory."""

from api.base import APIResponse, ErrorCodes, success_response, error_response
from api.app import build_services, create_app, create_app_from_vault
