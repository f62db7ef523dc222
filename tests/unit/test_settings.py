"""Tests for Settings loading, merging and validation."""

import json

import pytest

from storyspec.settings import AUTO_FIX_TYPES, MODEL_ROLES, Settings


class TestSettingsDefaults:
    """Tests for the default values the pipeline relies on."""

    def test_defaults_validate(self):
        """Default settings should pass validation unchanged."""
        settings = Settings()
        assert settings.validate() is False

    def test_core_thresholds(self):
        """Loop, gate and auto-fix defaults should match the documented policy."""
        settings = Settings()
        assert settings.max_refinement_rounds == 3
        assert settings.relationship_confidence_threshold == 0.75
        assert settings.quality_pass_threshold == 3.5
        assert settings.max_rewrites == 1
        assert settings.auto_fix_confidence_threshold == 0.8
        assert settings.auto_fix_types == list(AUTO_FIX_TYPES)
        assert settings.classification_preference == ["component", "stateModel", "event"]

    def test_every_role_has_model_and_temperature(self):
        """Both role dicts should cover every model role."""
        settings = Settings()
        assert set(settings.role_models) == set(MODEL_ROLES)
        assert set(settings.role_temperatures) == set(MODEL_ROLES)


class TestSettingsLoad:
    """Tests for Settings.load and the JSON file round trip."""

    def test_creates_file_when_missing(self, isolate_settings_file):
        """Loading with no file should write the defaults."""
        settings = Settings.load()
        assert isolate_settings_file.exists()
        assert settings.default_model == Settings().default_model

    def test_uses_cache(self):
        """A second load should return the cached instance."""
        first = Settings.load()
        assert Settings.load() is first
        assert Settings.load(use_cache=False) is not first

    def test_merges_unknown_and_missing_keys(self, isolate_settings_file):
        """Obsolete keys are dropped and missing ones filled from defaults."""
        isolate_settings_file.write_text(
            json.dumps({"obsolete_option": 1, "max_refinement_rounds": 2})
        )
        settings = Settings.load()
        assert settings.max_refinement_rounds == 2
        assert settings.quality_pass_threshold == 3.5
        stored = json.loads(isolate_settings_file.read_text())
        assert "obsolete_option" not in stored

    def test_adds_missing_roles(self, isolate_settings_file):
        """A role missing from a stored role dict should be added back."""
        isolate_settings_file.write_text(json.dumps({"role_models": {"judge": "big-model"}}))
        settings = Settings.load()
        assert settings.role_models["judge"] == "big-model"
        assert set(settings.role_models) == set(MODEL_ROLES)

    def test_corrupt_file_falls_back_to_defaults(self, isolate_settings_file):
        """Invalid JSON should be backed up and defaults used."""
        isolate_settings_file.write_text("{not json")
        settings = Settings.load()
        assert settings.max_rewrites == 1
        assert isolate_settings_file.with_suffix(".json.corrupt").exists()

    def test_invalid_value_raises(self, isolate_settings_file):
        """Out-of-range values should raise ValueError naming the field."""
        isolate_settings_file.write_text(json.dumps({"quality_pass_threshold": 9}))
        with pytest.raises(ValueError, match="quality_pass_threshold"):
            Settings.load()


class TestSettingsValidation:
    """Tests for individual validation rules."""

    @pytest.mark.parametrize(
        ("field", "value", "message"),
        [
            ("ollama_url", "ftp://host", "ollama_url"),
            ("log_level", "LOUD", "log_level"),
            ("max_refinement_rounds", 0, "max_refinement_rounds"),
            ("relationship_confidence_threshold", 1.5, "relationship_confidence_threshold"),
            ("max_rewrites", 5, "max_rewrites"),
            ("auto_fix_types", ["delete-story"], "auto_fix_types"),
            ("classification_preference", ["component", "event"], "classification_preference"),
            ("product_type", "toaster", "product_type"),
        ],
    )
    def test_rejects_invalid_values(self, field, value, message):
        """Each invalid value should raise a ValueError naming its field."""
        settings = Settings()
        setattr(settings, field, value)
        with pytest.raises(ValueError, match=message):
            settings.validate()

    @pytest.mark.parametrize("value", [0, 1, 3])
    def test_max_rewrites_range_accepted(self, value):
        """max_rewrites defaults to 1 and accepts anything from 0 to 3."""
        assert Settings().max_rewrites == 1
        settings = Settings(max_rewrites=value)
        settings.validate()
        assert settings.max_rewrites == value

    def test_refusal_phrases_lowercased(self):
        """Refusal phrases should be normalized to lower case."""
        settings = Settings(refusal_phrases=["I Cannot ", ""])
        assert settings.validate() is True
        assert settings.refusal_phrases == ["i cannot"]


class TestRoleResolution:
    """Tests for per-role model and temperature lookup."""

    def test_falls_back_to_default_model(self):
        """An empty role entry should resolve to default_model."""
        settings = Settings(default_model="base-model")
        assert settings.get_model_for_role("judge") == "base-model"

    def test_role_model_and_override(self):
        """A configured role model wins over the default; an override wins over both."""
        settings = Settings(default_model="base-model")
        settings.role_models["judge"] = "judge-model"
        assert settings.get_model_for_role("judge") == "judge-model"
        assert settings.get_model_for_role("judge", override="forced") == "forced"

    def test_unknown_role_raises(self):
        """Unknown roles should raise ValueError."""
        with pytest.raises(ValueError, match="Unknown model role"):
            Settings().get_model_for_role("poet")
        with pytest.raises(ValueError, match="Unknown model role"):
            Settings().get_temperature_for_role("poet")

    def test_judge_temperature_is_low(self):
        """The judge should run cooler than the generator."""
        settings = Settings()
        assert settings.get_temperature_for_role("judge") < settings.get_temperature_for_role(
            "generator"
        )
