"""Generation request models for the Explainer Relay.

Numeric limits are clamped during validation, so downstream code only ever
sees values inside the configured bounds. Bounds come from the validation
context (``{"limits": LimitsConfig}``) and fall back to the module defaults.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from .enums import GenerationMode

DEFAULT_TOKEN_BOUNDS = (256, 8000, 1200)
DEFAULT_CHAR_BOUNDS = (500, 50000, 4000)
DEFAULT_PRIOR_TEXT_MAX_CHARS = 20000


def clamp_int(value: Any, low: int, high: int, default: int) -> int:
    """Coerce ``value`` to an int inside ``[low, high]``.

    Missing or non-numeric values use ``default`` before clamping.
    """
    if value is None or isinstance(value, bool):
        number = default
    else:
        try:
            number = int(float(value))
        except (TypeError, ValueError, OverflowError):
            number = default
    return max(low, min(high, number))


def _limits(info: ValidationInfo) -> Any:
    return (info.context or {}).get("limits")


class UsedLimits(BaseModel):
    """Effective limits that were applied to a generation."""

    model_config = ConfigDict(populate_by_name=True)

    max_tokens: int = Field(..., alias="maxTokens")
    max_chars: int = Field(..., alias="maxChars")


class GenerationRequest(BaseModel):
    """One caller request, validated and clamped."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    concept: str = Field(..., description="What to explain")
    target_description: str = Field(..., alias="targetDescription", description="Who the explanation is for")
    mode: GenerationMode = Field(default=GenerationMode.START)
    prior_text: str = Field(default="", alias="priorText")
    max_tokens: int = Field(default=DEFAULT_TOKEN_BOUNDS[2], alias="maxTokens")
    max_chars: int = Field(default=DEFAULT_CHAR_BOUNDS[2], alias="maxChars")

    @field_validator("concept", "target_description")
    @classmethod
    def validate_required_text(cls, v: str, info: ValidationInfo) -> str:
        if not v:
            raise ValueError(f"{info.field_name} must not be empty")
        return v

    @field_validator("mode", mode="before")
    @classmethod
    def validate_mode(cls, v: Any) -> Any:
        if v is None or v == "":
            return GenerationMode.START
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("prior_text", mode="before")
    @classmethod
    def validate_prior_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("max_tokens", mode="before")
    @classmethod
    def clamp_max_tokens(cls, v: Any, info: ValidationInfo) -> int:
        limits = _limits(info)
        if limits is None:
            low, high, default = DEFAULT_TOKEN_BOUNDS
        else:
            low, high, default = limits.min_max_tokens, limits.max_max_tokens, limits.default_max_tokens
        return clamp_int(v, low, high, default)

    @field_validator("max_chars", mode="before")
    @classmethod
    def clamp_max_chars(cls, v: Any, info: ValidationInfo) -> int:
        limits = _limits(info)
        if limits is None:
            low, high, default = DEFAULT_CHAR_BOUNDS
        else:
            low, high, default = limits.min_max_chars, limits.max_max_chars, limits.default_max_chars
        return clamp_int(v, low, high, default)

    @model_validator(mode="after")
    def validate_continuation(self, info: ValidationInfo) -> "GenerationRequest":
        if self.mode is GenerationMode.CONTINUE:
            if not self.prior_text:
                raise ValueError("priorText is required when mode is 'continue'")
            limits = _limits(info)
            cap = DEFAULT_PRIOR_TEXT_MAX_CHARS if limits is None else limits.prior_text_max_chars
            if len(self.prior_text) > cap:
                # The tail is what the continuation has to follow on from.
                self.prior_text = self.prior_text[-cap:]
        else:
            self.prior_text = ""
        return self

    @property
    def used_limits(self) -> UsedLimits:
        return UsedLimits(max_tokens=self.max_tokens, max_chars=self.max_chars)

    def summary(self) -> dict:
        """Loggable view without the free text fields."""
        return {
            "mode": self.mode.value,
            "max_tokens": self.max_tokens,
            "max_chars": self.max_chars,
            "prior_text_chars": len(self.prior_text),
        }


def describe_validation_error(exc: Exception) -> Optional[str]:
    """Turn a pydantic ``ValidationError`` into one caller-facing sentence."""
    errors = getattr(exc, "errors", None)
    if errors is None:
        return None
    messages = []
    for error in errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
        message = error.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or None
