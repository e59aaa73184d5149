"""Shared request parsing, field validation and authentication helpers for routers."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from task_bidder_service.core.exceptions import ServiceError
from task_bidder_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request

    from task_bidder_service.models import User


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure. Numbers with a fraction become Decimal."""
    try:
        data = json.loads(raw_body, parse_float=Decimal)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def require_string(data: dict[str, Any], field_name: str) -> str:
    """Extract a required non-empty string field."""
    value = data.get(field_name)
    if value is None:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Missing required field: {field_name}",
            400,
            {"field": field_name},
        )
    if not isinstance(value, str) or not value.strip():
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' must be a non-empty string",
            400,
            {"field": field_name},
        )
    return value


def optional_string(data: dict[str, Any], field_name: str) -> str | None:
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' must be a string",
            400,
            {"field": field_name},
        )
    return value


def optional_int(data: dict[str, Any], field_name: str) -> int | None:
    value = data.get(field_name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' must be an integer",
            400,
            {"field": field_name},
        )
    return value


def optional_bool(data: dict[str, Any], field_name: str) -> bool | None:
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' must be a boolean",
            400,
            {"field": field_name},
        )
    return value


def optional_string_list(data: dict[str, Any], field_name: str) -> list[str] | None:
    value = data.get(field_name)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' must be a list of strings",
            400,
            {"field": field_name},
        )
    return value


def extract_bearer_token(authorization: str | None) -> str | None:
    """
    Extract the session token from the Authorization header.

    Returns None if no header exists. Raises UNAUTHORIZED if the header
    exists but is malformed.
    """
    if authorization is None:
        return None

    if not authorization.startswith("Bearer "):
        raise ServiceError(
            "UNAUTHORIZED",
            "Authorization header must use Bearer scheme",
            401,
            {},
        )

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise ServiceError(
            "UNAUTHORIZED",
            "Bearer token must not be empty",
            401,
            {},
        )

    return token


async def require_user(request: Request) -> User:
    """Authenticate the request's bearer session and return the caller."""
    token = extract_bearer_token(request.headers.get("authorization"))

    state = get_app_state()
    if state.session_authenticator is None:
        msg = "SessionAuthenticator not initialized"
        raise RuntimeError(msg)

    return await state.session_authenticator.authenticate(token)
