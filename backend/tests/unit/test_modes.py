"""Unit tests for intelligence mode presets."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from autopilot.core.config import Settings
from autopilot.modules.processing.agent_schemas import CheckType
from autopilot.modules.processing.modes import IntelligenceMode


def test_thorough_is_default() -> None:
    mode = IntelligenceMode.thorough()
    assert mode == IntelligenceMode()
    assert mode.enable_ensemble and mode.parallel_extraction
    assert mode.enable_self_correction and mode.max_retries == 2
    assert mode.enable_external_validation
    assert not mode.use_llm_judgment
    assert mode.min_classification_confidence == 0.3
    assert mode.vat_rate_tolerance_bp == 50


def test_fast_preset() -> None:
    mode = IntelligenceMode.fast()
    assert not mode.enable_ensemble
    assert not mode.enable_self_correction
    assert mode.max_retries == 0
    assert not mode.enable_external_validation


def test_offline_preset_drops_registry_checks() -> None:
    mode = IntelligenceMode.offline()
    assert not mode.enable_external_validation
    assert CheckType.COMPANY_EXISTS not in mode.enabled_checks
    assert CheckType.MATH in mode.enabled_checks


def test_development_preset() -> None:
    mode = IntelligenceMode.development()
    assert not mode.parallel_extraction
    assert mode.use_llm_judgment


def test_for_name() -> None:
    assert IntelligenceMode.for_name(" Offline ").name == "offline"
    with pytest.raises(ValueError, match="Unknown intelligence mode"):
        IntelligenceMode.for_name("turbo")


def test_modes_are_frozen() -> None:
    mode = IntelligenceMode.fast()
    with pytest.raises(ValidationError):
        mode.max_retries = 5


def test_negative_retries_invalid() -> None:
    with pytest.raises(ValidationError):
        IntelligenceMode(max_retries=-1)


def test_from_settings_needs_registry_credentials() -> None:
    without_key = Settings(intelligence_mode="thorough", registry_api_key="", _env_file=None)
    with_key = Settings(intelligence_mode="thorough", registry_api_key="k", _env_file=None)

    assert not IntelligenceMode.from_settings(without_key).enable_external_validation
    assert IntelligenceMode.from_settings(with_key).enable_external_validation
