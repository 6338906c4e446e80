"""
Input Validation and Normalization Utilities.

Validation in the Portfolio Live API is deliberately shallow: required fields
must be present and non-blank, usernames and emails are normalized (trimmed,
lowercased), `theme` must be one of the known themes and JSON-encoded
multi-part fields must be well-formed JSON of the expected shape. Everything
else a client sends is stored as given.

Key Components:
- `InputValidator`: static helpers for presence checks and the small set of
  normalizations the services rely on (username, email, theme, booleans sent
  as form strings, JSON sub-documents).
- `RequestValidator`: request-level checks (content type, body size) used by
  `RequestValidationMiddleware`.

All failures raise `core.exceptions.ValidationError`, which carries the
offending field name and renders as a 400 response.
"""

import json
from typing import Any, Dict, List, Optional

from core.logging_config import get_logger
from core.exceptions import ValidationError
from core.models import THEMES

logger = get_logger(__name__)


class InputValidator:
    """Presence checks and field normalization"""

    @staticmethod
    def require(data: Dict[str, Any], *fields: str) -> Dict[str, Any]:
        """Ensure every named field is present and not blank"""
        for field in fields:
            value = data.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(field, f"{field} is required")
        return data

    @staticmethod
    def normalize_username(username: Optional[str]) -> str:
        """Usernames are case-insensitive keys: trimmed and lowercased"""
        if not isinstance(username, str) or not username.strip():
            raise ValidationError("username", "username is required")
        return username.strip().lower()

    @staticmethod
    def normalize_email(email: Optional[str]) -> str:
        if not isinstance(email, str) or not email.strip():
            raise ValidationError("email", "email is required")
        return email.strip().lower()

    @staticmethod
    def validate_theme(theme: Optional[str]) -> str:
        """Missing theme falls back to light; unknown themes are rejected"""
        if theme is None or not str(theme).strip():
            return "light"

        theme = str(theme).strip().lower()
        if theme not in THEMES:
            raise ValidationError(
                "theme", f"Theme must be one of: {', '.join(THEMES)}", theme
            )
        return theme

    @staticmethod
    def validate_boolean(field: str, value: Any, default: bool = False) -> bool:
        """Accept real booleans and their usual form encodings"""
        if value is None or value == "":
            return default

        if isinstance(value, bool):
            return value

        if isinstance(value, str):
            lower_val = value.strip().lower()
            if lower_val in ("true", "1", "yes", "on"):
                return True
            elif lower_val in ("false", "0", "no", "off"):
                return False

        if isinstance(value, int):
            return bool(value)

        raise ValidationError(field, "Invalid boolean value", value)

    @staticmethod
    def parse_json_field(
        field: str, raw: Any, expected_type: type, max_size: int = 1024 * 1024
    ) -> Any:
        """Decode a JSON-encoded form field, or pass through an already decoded value"""
        if raw is None or raw == "":
            return expected_type()

        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")

        if isinstance(raw, str):
            if len(raw) > max_size:
                raise ValidationError(
                    field, f"JSON data too large (max {max_size} bytes)"
                )
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning(f"Malformed JSON in field {field}: {e}")
                raise ValidationError(field, f"Invalid JSON format: {str(e)}")

        if raw is None:
            return expected_type()

        if not isinstance(raw, expected_type):
            raise ValidationError(
                field, f"Must be a JSON {expected_type.__name__}"
            )

        return raw

    @staticmethod
    def clean_string_list(values: List[Any]) -> List[str]:
        """Keep non-blank strings, trimmed, in their original order"""
        return [
            str(value).strip()
            for value in values
            if value is not None and str(value).strip()
        ]

    @staticmethod
    def clean_string_map(values: Dict[str, Any]) -> Dict[str, str]:
        """Drop entries whose value is empty"""
        cleaned = {}
        for key, value in values.items():
            if value is None:
                continue
            text = str(value).strip()
            if text:
                cleaned[str(key)] = text
        return cleaned


class RequestValidator:
    """Request-specific validation"""

    ALLOWED_CONTENT_TYPES = [
        "application/json",
        "application/x-www-form-urlencoded",
        "multipart/form-data",
    ]

    @staticmethod
    def validate_content_type(
        content_type: str, allowed_types: Optional[List[str]] = None
    ) -> str:
        """Validate request content type"""
        if allowed_types is None:
            allowed_types = RequestValidator.ALLOWED_CONTENT_TYPES

        # Extract main content type (ignore charset, boundary, etc.)
        main_type = content_type.split(";")[0].strip().lower()

        if main_type not in allowed_types:
            raise ValidationError(
                "content_type",
                f"Content type must be one of: {', '.join(allowed_types)}",
                content_type,
            )

        return main_type

    @staticmethod
    def validate_request_size(
        content_length: int, max_size: int = 10 * 1024 * 1024
    ) -> int:
        """Validate request body size"""
        if content_length > max_size:
            raise ValidationError(
                "content_length",
                f"Request body too large (max {max_size} bytes)",
                content_length,
            )

        return content_length
