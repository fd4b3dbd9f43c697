"""Configuration schema definitions for Fitness Pal.

This module defines Pydantic models for validating and parsing
the YAML stream configuration file.
"""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, ConfigDict


class GenerationKind(str, Enum):
    """Generation flows served by the streaming backend."""

    WORKOUT = "workout"
    KNOWLEDGE = "knowledge"
    PROFILE = "profile"

    @classmethod
    def _missing_(cls, value: object) -> Optional["GenerationKind"]:
        """Handle case-insensitive kind names."""
        if isinstance(value, str):
            value_lower = value.lower()
            for member in cls:
                if member.value == value_lower:
                    return member
        return None


class EndpointConfig(BaseModel):
    """Endpoint paths for one generation kind.

    ``feedback`` is only set for flows that can pause and resume.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    start: str = Field(..., min_length=1, description="Path that starts a session")
    feedback: Optional[str] = Field(
        default=None, description="Path that resumes a paused session"
    )

    @field_validator("start", "feedback")
    @classmethod
    def validate_path(cls, v: Optional[str]) -> Optional[str]:
        """Endpoint paths are relative to the API base URL."""
        if v is not None and not v.startswith("/"):
            raise ValueError(f"Endpoint path must start with '/': {v}")
        return v


def _default_endpoints() -> Dict[GenerationKind, EndpointConfig]:
    return {
        GenerationKind.WORKOUT: EndpointConfig(
            start="/workout/generate/stream",
            feedback="/workout/feedback/stream",
        ),
        GenerationKind.KNOWLEDGE: EndpointConfig(start="/ask"),
        GenerationKind.PROFILE: EndpointConfig(start="/fitness/profile/stream"),
    }


class StreamConfig(BaseModel):
    """Root configuration for the stream engine."""

    model_config = ConfigDict(str_strip_whitespace=False)

    endpoints: Dict[GenerationKind, EndpointConfig] = Field(
        default_factory=_default_endpoints,
        description="Endpoint paths keyed by generation kind",
    )
    data_prefix: str = Field(
        default="data: ",
        description="Marker stripped from the start of each record",
    )
    done_sentinel: str = Field(
        default="[DONE]",
        description="Bare record that terminates a stream",
    )
    title_max_length: int = Field(
        default=25,
        gt=0,
        description="Length at which conversation titles are truncated",
    )
    error_message: str = Field(
        default="I'm sorry, I couldn't process your request. Please try again.",
        min_length=1,
        description="User-facing text attached to a failed assistant message",
    )

    @field_validator("endpoints")
    @classmethod
    def fill_missing_endpoints(
        cls, v: Dict[GenerationKind, EndpointConfig]
    ) -> Dict[GenerationKind, EndpointConfig]:
        """Kinds left out of the file keep their default endpoints."""
        merged = _default_endpoints()
        merged.update(v)
        return merged

    def endpoint_for(self, kind: GenerationKind) -> EndpointConfig:
        """Get the endpoint configuration for a generation kind.

        Args:
            kind: Generation kind.

        Returns:
            Endpoint configuration for the kind.
        """
        return self.endpoints[GenerationKind(kind)]
