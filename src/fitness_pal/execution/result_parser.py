"""Structured result parsing for generation streams.

Backends report structured output in two ways: discrete ``result`` and
``reasoning`` frames, or a single JSON document streamed as plain tokens.
The first is handled frame by frame by the dispatcher; the second is
recovered once, at termination, by ``reconstruct_result_from_buffer``.
Both paths share the helpers here.
"""

import json
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from fitness_pal.state.schema import Exercise, Workout
from fitness_pal.utils.logging import get_logger

logger = get_logger(__name__)

RESULT_FIELDS = ("workouts", "exercises", "reasoning")

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def parse_structured_content(content: Any) -> Optional[Dict[str, Any]]:
    """Interpret a frame's content as a JSON object.

    Args:
        content: A JSON string or an already structured value.

    Returns:
        The object, or None if the content is not a JSON object.
    """
    if isinstance(content, dict):
        return content
    if not isinstance(content, str):
        return None
    try:
        value = json.loads(content)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def has_result_fields(data: Dict[str, Any]) -> bool:
    """True if the object carries any recognizable result field."""
    return (
        isinstance(data.get("workouts"), list)
        or isinstance(data.get("exercises"), list)
        or isinstance(data.get("reasoning"), str)
    )


def parse_workouts(items: List[Any]) -> List[Workout]:
    """Validate workout entries, skipping any that are not objects."""
    workouts = []
    for item in items:
        if not isinstance(item, dict):
            logger.debug(f"Skipping non-object workout entry: {item!r}")
            continue
        try:
            workouts.append(Workout.model_validate(item))
        except PydanticValidationError as e:
            logger.warning(f"Skipping invalid workout entry: {e}")
    return workouts


def parse_exercises(items: List[Any]) -> List[Exercise]:
    """Validate exercise entries, skipping any that are not objects."""
    exercises = []
    for item in items:
        if not isinstance(item, dict):
            logger.debug(f"Skipping non-object exercise entry: {item!r}")
            continue
        try:
            exercises.append(Exercise.model_validate(item))
        except PydanticValidationError as e:
            logger.warning(f"Skipping invalid exercise entry: {e}")
    return exercises


def reconstruct_result_from_buffer(buffer: str) -> Optional[Dict[str, Any]]:
    """Recover a structured result from the whole accumulated token text.

    Used only when a session terminates without ever sending a discrete
    ``result`` or ``reasoning`` frame. The buffer is tried as plain JSON
    first, then as a markdown-fenced JSON block.

    Args:
        buffer: Entire concatenated token output of the session.

    Returns:
        The parsed object if it contains result fields, otherwise None.
        Never raises.
    """
    text = buffer.strip()
    if not text:
        return None

    data = parse_structured_content(text)
    if data is None:
        match = _FENCED_JSON.search(text)
        if match:
            data = parse_structured_content(match.group(1))

    if data is None:
        logger.debug("Token buffer is not a JSON document, no result to recover")
        return None

    if not has_result_fields(data):
        logger.debug(
            f"Token buffer JSON has no result fields (keys: {list(data.keys())[:10]})"
        )
        return None

    logger.info("Recovered structured result from token buffer")
    return data
