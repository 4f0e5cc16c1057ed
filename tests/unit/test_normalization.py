"""
Unit tests for medical-history boundary normalization.

Tests verify:
- camelCase keys become snake_case
- Comma separated strings become lists, blanks are dropped
- The exercise field accepts arrays, objects and stringified JSON
- Condition maps become strict booleans
"""

from src.api.normalization import (
    as_list,
    normalize_exercise,
    normalize_medical_history,
    parse_loose_json,
    snake_keys,
)


class TestHelpers:
    """Tests for the small coercion helpers."""

    def test_snake_keys_is_recursive(self) -> None:
        assert snake_keys({"sleepInfo": {"averageHours": 7}, "list": [{"doshaType": "vata"}]}) == {
            "sleep_info": {"average_hours": 7},
            "list": [{"dosha_type": "vata"}],
        }

    def test_as_list(self) -> None:
        assert as_list("peanuts, shellfish, ,") == ["peanuts", "shellfish"]
        assert as_list([" dust ", "", 3]) == ["dust"]
        assert as_list(None) == []

    def test_parse_loose_json(self) -> None:
        assert parse_loose_json('{"frequency": "Daily"}') == {"frequency": "Daily"}
        assert parse_loose_json("{frequency: 'Daily'}") == {"frequency": "Daily"}
        assert parse_loose_json("not json at all") is None


class TestNormalizeExercise:
    """Tests for the exercise field shapes."""

    def test_array(self) -> None:
        assert normalize_exercise([{"frequency": "Daily", "type": ["Yoga"], "duration": 30}]) == [
            {"frequency": "Daily", "type": ["Yoga"], "duration": "30"}
        ]

    def test_single_object(self) -> None:
        assert normalize_exercise({"frequency": "Weekly"}) == [
            {"frequency": "Weekly", "type": [], "duration": None}
        ]

    def test_stringified_single_quoted_json(self) -> None:
        value = "[{'frequency': 'Daily', 'type': 'Yoga, Walking'}]"
        assert normalize_exercise(value) == [
            {"frequency": "Daily", "type": ["Yoga", "Walking"], "duration": None}
        ]

    def test_empty_entries_dropped(self) -> None:
        assert normalize_exercise([{"frequency": "", "type": []}, "junk"]) == []
        assert normalize_exercise("{{{") == []


class TestNormalizeMedicalHistory:
    """Tests for normalize_medical_history()."""

    def test_legacy_payload(self) -> None:
        payload = {
            "currentHealthConcerns": [
                {"concern": "Back pain", "severity": "Mild", "duration": ""},
                {"concern": "  "},
            ],
            "chronicConditions": {"diabetes": True, "hypertension": "yes", "other": "asthma, ,migraine"},
            "allergies": {"food": "peanuts, shellfish", "drug": []},
            "familyMedicalHistory": {"diabetes": True, "notes": "  "},
            "lifestyle": {
                "smoking": {"status": ""},
                "exercise": "[{'frequency': 'Daily', 'type': 'Yoga, Walking'}]",
                "sleep": {"averageHours": "7", "issues": ""},
            },
            "ayurvedicExperience": "true",
            "favouriteColour": "green",
        }

        history = normalize_medical_history(payload)

        assert history["current_health_concerns"] == [{"concern": "Back pain", "severity": "Mild"}]
        conditions = history["chronic_conditions"]
        assert conditions["diabetes"] is True
        assert conditions["hypertension"] is False
        assert conditions["other"] == ["asthma", "migraine"]
        assert history["allergies"] == {"food": ["peanuts", "shellfish"]}
        assert history["family_medical_history"] == {
            "diabetes": True,
            "heart_disease": False,
            "cancer": False,
            "hypertension": False,
            "mental_health": False,
        }
        assert history["lifestyle"] == {
            "smoking": {"status": "Never"},
            "exercise": [{"frequency": "Daily", "type": ["Yoga", "Walking"]}],
            "sleep": {"average_hours": 7.0},
        }
        assert history["ayurvedic_experience"] is False
        assert "favourite_colour" not in history

    def test_medications_need_a_name(self) -> None:
        history = normalize_medical_history(
            {"currentMedications": [{"name": "Metformin", "prescribedBy": "Dr Rao"}, {"dosage": "5mg"}]}
        )
        assert history == {
            "current_medications": [{"name": "Metformin", "prescribed_by": "Dr Rao"}]
        }

    def test_empty_payload(self) -> None:
        assert normalize_medical_history({}) == {}
