"""
Input validation and sanitization utilities for Notify.

This module validates request payloads against simple schemas and checks
Brazilian identifiers (CPF/CNPJ check digits, phone numbers).
"""

import re
from datetime import datetime
from functools import wraps
from typing import Any, Dict, List, Optional, Union

from flask import request

from .helpers import only_digits


class ValidationError(Exception):
    """Custom exception for validation errors"""

    def __init__(self, message: str, field: Optional[str] = None, code: Optional[str] = None):
        self.message = message
        self.field = field
        self.code = code or "VALIDATION_ERROR"
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "field": self.field, "code": self.code}


def is_valid_cpf(digits: str) -> bool:
    if len(digits) != 11 or digits == digits[0] * 11:
        return False
    for size in (9, 10):
        total = sum(int(digits[i]) * (size + 1 - i) for i in range(size))
        check = (total * 10) % 11 % 10
        if check != int(digits[size]):
            return False
    return True


_CNPJ_WEIGHTS = [6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]


def is_valid_cnpj(digits: str) -> bool:
    if len(digits) != 14 or digits == digits[0] * 14:
        return False
    for size in (12, 13):
        weights = _CNPJ_WEIGHTS[13 - size :]
        total = sum(int(digits[i]) * weights[i] for i in range(size))
        remainder = total % 11
        check = 0 if remainder < 2 else 11 - remainder
        if check != int(digits[size]):
            return False
    return True


class InputValidator:
    """Input validation and sanitization"""

    EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
    ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]{0,127}$")
    TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

    def sanitize_string(self, value: Any, max_length: Optional[int] = None, strip_whitespace: bool = True) -> str:
        """
        Normalize string input.

        Output is escaped where it is rendered (email HTML), so stored text
        keeps the characters the user typed.
        """
        if value is None:
            return ""
        if not isinstance(value, str):
            value = str(value)
        if strip_whitespace:
            value = value.strip()
        value = value.replace("\x00", "")
        if max_length and len(value) > max_length:
            value = value[:max_length]
        return value

    def validate_entity_id(self, value: Any, field_name: str = "id") -> str:
        if not value:
            raise ValidationError(f"{field_name} is required", field_name, "REQUIRED")
        if not isinstance(value, str) or not self.ID_PATTERN.match(value.strip()):
            raise ValidationError(f"Invalid {field_name} format", field_name, "INVALID_FORMAT")
        return value.strip()

    def validate_document(self, value: Any, field_name: str = "document", required: bool = True) -> Optional[str]:
        """
        Validate a CPF (11 digits) or CNPJ (14 digits) and return its digits.

        Raises:
            ValidationError: If the number is malformed or fails its check digits
        """
        if not value:
            if required:
                raise ValidationError("CPF/CNPJ is required", field_name, "REQUIRED")
            return None

        digits = only_digits(value)
        if len(digits) == 11:
            valid = is_valid_cpf(digits)
        elif len(digits) == 14:
            valid = is_valid_cnpj(digits)
        else:
            raise ValidationError("CPF/CNPJ must have 11 or 14 digits", field_name, "INVALID_FORMAT")

        if not valid:
            raise ValidationError("Invalid CPF/CNPJ check digits", field_name, "INVALID_CHECK_DIGIT")
        return digits

    def validate_email(self, email: Any, field_name: str = "email", required: bool = True) -> Optional[str]:
        if not email:
            if required:
                raise ValidationError("Email is required", field_name, "REQUIRED")
            return None

        if not isinstance(email, str):
            raise ValidationError("Email must be a string", field_name, "INVALID_TYPE")

        sanitized = self.sanitize_string(email, max_length=254).lower()
        if not self.EMAIL_PATTERN.match(sanitized):
            raise ValidationError("Invalid email format", field_name, "INVALID_FORMAT")
        return sanitized

    def validate_phone(self, phone: Any, field_name: str = "phone", required: bool = False) -> Optional[str]:
        """Brazilian phone: area code plus number, optionally with the 55 country code. Returns digits."""
        if not phone:
            if required:
                raise ValidationError("Phone number is required", field_name, "REQUIRED")
            return None

        digits = only_digits(phone).lstrip("0")
        if len(digits) not in (10, 11, 12, 13):
            raise ValidationError("Invalid phone number format", field_name, "INVALID_FORMAT")
        return digits

    def validate_boolean_param(self, value: Optional[Union[str, bool]], field_name: str, default: bool = False) -> bool:
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            value_lower = value.lower()
            if value_lower in ("true", "1", "yes", "on"):
                return True
            if value_lower in ("false", "0", "no", "off"):
                return False
        raise ValidationError(f"{field_name} must be a boolean value", field_name, "INVALID_TYPE")

    def validate_date(self, value: Any, field_name: str = "date") -> str:
        try:
            return datetime.strptime(str(value).strip(), "%Y-%m-%d").date().isoformat()
        except ValueError:
            raise ValidationError(f"{field_name} must be a date (YYYY-MM-DD)", field_name, "INVALID_FORMAT")

    def validate_time(self, value: Any, field_name: str = "time") -> str:
        text = str(value).strip()
        if not self.TIME_PATTERN.match(text):
            raise ValidationError(f"{field_name} must be a time (HH:MM)", field_name, "INVALID_FORMAT")
        return text

    def _validate_float_field(self, value: Any, field: str) -> float:
        try:
            return float(value)
        except (ValueError, TypeError):
            raise ValidationError(f"{field} must be a number", field, "INVALID_TYPE")

    def _validate_integer_field(self, value: Any, field: str) -> int:
        try:
            return int(value)
        except (ValueError, TypeError):
            raise ValidationError(f"{field} must be an integer", field, "INVALID_TYPE")

    def _validate_field_by_type(self, value: Any, field: str, field_type: str, max_length: Optional[int] = None) -> Any:
        """Validate a field based on its type."""
        if field_type == "string":
            if not isinstance(value, str):
                raise ValidationError(f"{field} must be a string", field, "INVALID_TYPE")
            return self.sanitize_string(value, max_length=max_length)
        elif field_type == "email":
            return self.validate_email(value, field)
        elif field_type == "phone":
            return self.validate_phone(value, field, True)
        elif field_type == "document":
            return self.validate_document(value, field)
        elif field_type == "id":
            return self.validate_entity_id(value, field)
        elif field_type == "date":
            return self.validate_date(value, field)
        elif field_type == "time":
            return self.validate_time(value, field)
        elif field_type == "integer":
            return self._validate_integer_field(value, field)
        elif field_type == "float":
            return self._validate_float_field(value, field)
        elif field_type == "boolean":
            return self.validate_boolean_param(value, field)
        elif field_type == "dict":
            if not isinstance(value, dict):
                raise ValidationError(f"{field} must be an object", field, "INVALID_TYPE")
            return value
        else:
            return self.sanitize_string(str(value), max_length=max_length)

    def _check_required_field(self, value: Any, field: str, required: bool) -> bool:
        """Raise if a required field is missing; return True when the field is empty."""
        if required and (value is None or value == ""):
            raise ValidationError(f"{field} is required", field, "REQUIRED")
        return value is None or value == ""

    def _check_allowed_values(self, value: Any, field: str, allowed_values: Optional[List[str]]) -> None:
        if allowed_values and value not in allowed_values:
            raise ValidationError(
                f"Invalid {field} value. Allowed values: {', '.join(map(str, allowed_values))}",
                field,
                "INVALID_VALUE",
            )

    def validate_request_data(self, data: Dict[str, Any], schema: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Validate request data against a schema

        Args:
            data: Request data to validate
            schema: Mapping of field name to rules (type, required, max_length, allowed_values, default)

        Returns:
            Validated data

        Raises:
            ValidationError: If data is invalid
        """
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object", None, "INVALID_TYPE")

        validated: Dict[str, Any] = {}
        for field, rules in schema.items():
            value = data.get(field)
            if self._check_required_field(value, field, rules.get("required", False)):
                validated[field] = rules.get("default")
                continue

            validated[field] = self._validate_field_by_type(
                value, field, rules.get("type", "string"), rules.get("max_length")
            )
            self._check_allowed_values(validated[field], field, rules.get("allowed_values"))

        return validated


# Global validator instance
validator = InputValidator()


def validate_json(schema: Dict[str, Dict[str, Any]]):
    """
    Decorator validating the JSON body of a request.

    The validated payload is passed to the view as the ``data`` keyword.
    ValidationError propagates to the registered error handler.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            payload = request.get_json(silent=True)
            kwargs["data"] = validator.validate_request_data(payload if payload is not None else {}, schema)
            return func(*args, **kwargs)

        return wrapper

    return decorator
