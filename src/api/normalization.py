"""
Boundary normalization for medical-history submissions.

Older clients send the medical-history stage in several shapes: camelCase
keys, comma separated strings where lists are expected, and the exercise
field as an array, a single object or stringified (often single-quoted)
JSON. ``normalize_medical_history`` converts all of them into the one
canonical snake_case shape the domain stores.
"""

import json
import logging
import re
from typing import Any

from pydantic.alias_generators import to_snake

from src.domain.models import clean_value

logger = logging.getLogger(__name__)

CHRONIC_CONDITION_FLAGS = (
    "diabetes",
    "heart_disease",
    "arthritis",
    "kidney_disease",
    "cancer",
    "thyroid_disorder",
    "hypertension",
    "depression",
    "anxiety",
)
FAMILY_HISTORY_FLAGS = ("diabetes", "heart_disease", "cancer", "hypertension", "mental_health")
ALLERGY_TYPES = ("food", "drug", "environmental", "seasonal", "other")

_UNQUOTED_KEY = re.compile(r"(['\"])?([a-zA-Z0-9_]+)(['\"])?:")


def snake_keys(value: Any) -> Any:
    """Recursively convert dict keys to snake_case."""
    if isinstance(value, dict):
        return {to_snake(str(key)): snake_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [snake_keys(item) for item in value]
    return value


def as_list(value: Any) -> list[str]:
    """Accept a list or a comma separated string; drop blanks."""
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list):
        items = value
    else:
        return []
    return [item.strip() for item in items if isinstance(item, str) and item.strip()]


def parse_loose_json(text: str) -> Any:
    """
    Parse JSON that may use single quotes or unquoted keys.

    Returns None when the text cannot be parsed.
    """
    try:
        return json.loads(text)
    except ValueError:
        pass
    repaired = _UNQUOTED_KEY.sub(r'"\2":', text).replace("'", '"')
    try:
        return json.loads(repaired)
    except ValueError:
        logger.debug("Discarding unparseable exercise payload: %r", text)
        return None


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _entries(value: Any, required: str, optional: tuple[str, ...]) -> list[dict[str, Any]]:
    """Keep dict entries whose ``required`` field is non-blank."""
    if not isinstance(value, list):
        return []
    entries = []
    for item in value:
        if not isinstance(item, dict) or not _text(item.get(required)):
            continue
        entry = {required: _text(item[required])}
        for name in optional:
            entry[name] = _text(item.get(name))
        entries.append(entry)
    return entries


def _flags(value: Any, names: tuple[str, ...]) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        return None
    flags: dict[str, Any] = {name: value.get(name) is True for name in names}
    flags["other"] = as_list(value.get("other"))
    return flags


def normalize_exercise(value: Any) -> list[dict[str, Any]]:
    """Accept an array, a single object or stringified JSON."""
    if isinstance(value, str):
        value = parse_loose_json(value)
        value = snake_keys(value)
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        return []

    exercises = []
    for item in value:
        if not isinstance(item, dict):
            continue
        entry = {
            "frequency": _text(item.get("frequency")),
            "type": as_list(item.get("type")),
            "duration": _text(item.get("duration")),
        }
        if entry["frequency"] or entry["type"] or entry["duration"]:
            exercises.append(entry)
    return exercises


def _lifestyle(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        return None

    lifestyle: dict[str, Any] = {}
    smoking = value.get("smoking")
    if isinstance(smoking, dict):
        lifestyle["smoking"] = {
            "status": _text(smoking.get("status")) or "Never",
            "details": _text(smoking.get("details")),
        }
    alcohol = value.get("alcohol")
    if isinstance(alcohol, dict):
        lifestyle["alcohol"] = {
            "frequency": _text(alcohol.get("frequency")) or "Never",
            "amount": _text(alcohol.get("amount")),
        }
    if "exercise" in value:
        lifestyle["exercise"] = normalize_exercise(value["exercise"])
    diet = value.get("diet")
    if isinstance(diet, dict):
        lifestyle["diet"] = {
            "type": _text(diet.get("type")),
            "preferences": as_list(diet.get("preferences")),
            "restrictions": as_list(diet.get("restrictions")),
        }
    sleep = value.get("sleep")
    if isinstance(sleep, dict):
        lifestyle["sleep"] = {
            "average_hours": _hours(sleep.get("average_hours")),
            "quality": _text(sleep.get("quality")),
            "issues": as_list(sleep.get("issues")),
        }
    stress = value.get("stress")
    if isinstance(stress, dict):
        lifestyle["stress"] = {
            "level": _text(stress.get("level")),
            "management_techniques": as_list(stress.get("management_techniques")),
        }
    return lifestyle


def _hours(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_medical_history(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Convert a medical-history submission to its canonical shape.

    Unknown keys are dropped. Empty strings, nulls and empty containers are
    removed; condition maps become strict booleans.
    """
    data = snake_keys(payload)

    history: dict[str, Any] = {
        "current_health_concerns": _entries(
            data.get("current_health_concerns"), "concern", ("severity", "duration")
        ),
        "chronic_conditions": _flags(data.get("chronic_conditions"), CHRONIC_CONDITION_FLAGS),
        "current_medications": _entries(
            data.get("current_medications"),
            "name",
            ("dosage", "frequency", "prescribed_by", "start_date", "notes"),
        ),
        "previous_surgeries": _entries(
            data.get("previous_surgeries"), "surgery", ("date", "hospital", "notes")
        ),
        "recent_hospitalizations": _entries(
            data.get("recent_hospitalizations"),
            "reason",
            ("hospital", "admission_date", "discharge_date", "notes"),
        ),
        "lifestyle": _lifestyle(data.get("lifestyle")),
    }

    allergies = data.get("allergies")
    if isinstance(allergies, dict):
        history["allergies"] = {kind: as_list(allergies.get(kind)) for kind in ALLERGY_TYPES}

    family = _flags(data.get("family_medical_history"), FAMILY_HISTORY_FLAGS)
    if family is not None:
        family["notes"] = _text(data["family_medical_history"].get("notes"))
    history["family_medical_history"] = family

    if "ayurvedic_experience" in data:
        history["ayurvedic_experience"] = data["ayurvedic_experience"] is True

    return clean_value(history) or {}
