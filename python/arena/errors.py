"""Error codes returned by the HTTP layer.

Request-boundary problems (bad backend, malformed routing hint, oversized
skill, missing key) are ``ApiError``s and map to a fixed status. Failures of
the generation run itself are ``GenerationError``s from
``arena.services.generation.errors``; they are reported as
``E_GENERATION_FAILED`` with the status the run ended on (400, 404, 422, 429,
502, 504...), so E_GENERATION_FAILED's entry below is only a fallback.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Error codes in the ``error.code`` field, formatted E_CATEGORY_NAME."""

    E_API_KEY_MISSING = "E_API_KEY_MISSING"
    E_NOT_FOUND = "E_NOT_FOUND"

    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_PROVIDER_INVALID = "E_PROVIDER_INVALID"
    E_MODEL_REQUIRED = "E_MODEL_REQUIRED"
    E_PROVIDER_HINT_INVALID = "E_PROVIDER_HINT_INVALID"
    E_BILL_TO_INVALID = "E_BILL_TO_INVALID"
    E_SKILL_TOO_LARGE = "E_SKILL_TOO_LARGE"
    E_IMAGE_INVALID = "E_IMAGE_INVALID"

    E_UNSUPPORTED_MEDIA_TYPE = "E_UNSUPPORTED_MEDIA_TYPE"

    E_GENERATION_FAILED = "E_GENERATION_FAILED"
    E_INTERNAL = "E_INTERNAL"


_VALIDATION_CODES = (
    ApiErrorCode.E_INVALID_REQUEST,
    ApiErrorCode.E_PROVIDER_INVALID,
    ApiErrorCode.E_MODEL_REQUIRED,
    ApiErrorCode.E_PROVIDER_HINT_INVALID,
    ApiErrorCode.E_BILL_TO_INVALID,
    ApiErrorCode.E_SKILL_TOO_LARGE,
    ApiErrorCode.E_IMAGE_INVALID,
)

ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    **{code: 400 for code in _VALIDATION_CODES},
    ApiErrorCode.E_API_KEY_MISSING: 401,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_UNSUPPORTED_MEDIA_TYPE: 415,
    ApiErrorCode.E_GENERATION_FAILED: 502,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """An error the caller can fix by changing the request.

    Attributes:
        code: Error code.
        message: User-facing message.
        status_code: HTTP status looked up from the code.
    """

    def __init__(self, code: ApiErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)


class InvalidRequestError(ApiError):
    """A generation request field failed boundary validation (400)."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class MissingApiKeyError(ApiError):
    """No key in the body, the Authorization header, or server config (401)."""

    def __init__(self, message: str = "Missing API key"):
        super().__init__(ApiErrorCode.E_API_KEY_MISSING, message)
