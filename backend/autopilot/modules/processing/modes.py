"""Intelligence modes: one frozen bundle of pipeline toggles per profile.

The coordinator reads every behavioural switch from the mode it was built
with; nothing else carries pipeline configuration.

  fast         single agent, no self-correction, no external validation
  thorough     ensemble in parallel, self-correction, registry checks (default)
  offline      ensemble, self-correction, no registry, no LLM judgment
  development  ensemble run sequentially, LLM judgment on
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from autopilot.core.config import Settings
from autopilot.modules.processing.agent_schemas import CheckType, JudgmentConfig


class IntelligenceMode(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "thorough"
    enable_ensemble: bool = True
    parallel_extraction: bool = True
    enable_self_correction: bool = True
    max_retries: int = Field(2, ge=0)
    enable_external_validation: bool = True
    use_llm_judgment: bool = False
    min_classification_confidence: float = Field(0.3, ge=0.0, le=1.0)
    fail_fast_on_unknown_type: bool = True
    enabled_checks: frozenset[CheckType] = frozenset(CheckType)
    amount_epsilon: Decimal = Decimal("0.005")
    vat_rate_tolerance_bp: int = Field(50, ge=0)
    judgment: JudgmentConfig = Field(default_factory=JudgmentConfig.default)

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    @classmethod
    def fast(cls) -> IntelligenceMode:
        return cls(
            name="fast",
            enable_ensemble=False,
            enable_self_correction=False,
            max_retries=0,
            enable_external_validation=False,
        )

    @classmethod
    def thorough(cls) -> IntelligenceMode:
        return cls(name="thorough")

    @classmethod
    def offline(cls) -> IntelligenceMode:
        return cls(
            name="offline",
            enable_external_validation=False,
            use_llm_judgment=False,
            enabled_checks=frozenset(CheckType) - {CheckType.COMPANY_EXISTS, CheckType.COMPANY_NAME},
        )

    @classmethod
    def development(cls) -> IntelligenceMode:
        return cls(
            name="development",
            parallel_extraction=False,
            enable_external_validation=False,
            use_llm_judgment=True,
        )

    @classmethod
    def for_name(cls, name: str) -> IntelligenceMode:
        presets = {
            "fast": cls.fast,
            "thorough": cls.thorough,
            "offline": cls.offline,
            "development": cls.development,
        }
        key = name.strip().lower()
        if key not in presets:
            raise ValueError(
                f"Unknown intelligence mode '{name}'. Choose from: {', '.join(presets)}"
            )
        return presets[key]()

    @classmethod
    def from_settings(cls, settings: Settings) -> IntelligenceMode:
        mode = cls.for_name(settings.intelligence_mode)
        if mode.enable_external_validation and not settings.registry_enabled:
            mode = mode.model_copy(update={"enable_external_validation": False})
        return mode
