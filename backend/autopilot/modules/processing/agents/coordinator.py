"""Autonomous Processing Coordinator.

Pure Python controller. Routes one scanned document through the pipeline:

    Classify ──► reject: classifier error, low confidence, UNKNOWN
       │
    Route by type (invoice / bill / receipt / expense strategy)
       │
    Extract ──► Perception Ensemble (fast + expert) or single agent
       │        reject: no agent, both tiers failed, no data
    Reconcile ──► Consensus Engine
       │
    Audit ──► Auditor (math, checksums, VAT rate, registry)
       │
    Self-correct ──► feedback-driven retry, then re-audit
       │
    Judge ──► AUTO_APPROVE / NEEDS_REVIEW / REJECT

Agents are bound once at construction; ``process`` keeps all its state in
local values, so one coordinator serves concurrent documents.  Collaborator
failures come back as ``Rejected`` or as judged outcomes, never as
exceptions; cancellation still propagates.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from autopilot.core.config import Settings, settings as default_settings
from autopilot.modules.processing.agent_schemas import (
    AuditReport,
    ConflictReport,
    CorrectedOnRetry,
    JudgmentContext,
    NoData,
    NoRetryNeeded,
    RetryResult,
    SingleSource,
    StillFailing,
    Unanimous,
    WithConflicts,
)
from autopilot.modules.processing.agents.auditor import AuditorAgent
from autopilot.modules.processing.agents.classifier import DocumentClassifier, LlmClassifierAgent
from autopilot.modules.processing.agents.consensus import ConsensusEngine
from autopilot.modules.processing.agents.ensemble import PerceptionEnsemble
from autopilot.modules.processing.agents.extractors import get_extractor
from autopilot.modules.processing.agents.judgment import JudgmentAgent, LlmJudgmentBackend
from autopilot.modules.processing.agents.retry import FeedbackDrivenRetryAgent
from autopilot.modules.processing.agents.strategies import (
    STRATEGIES,
    DocumentAgents,
    DocumentStrategy,
    route,
)
from autopilot.modules.processing.agents.vat_rules import get_jurisdiction
from autopilot.modules.processing.cost_tracker import CostTracker
from autopilot.modules.processing.modes import IntelligenceMode
from autopilot.modules.processing.registry import CbeRegistryClient, RegistryLookup
from autopilot.modules.processing.results import (
    AutonomousResult,
    Rejected,
    RejectionStage,
    Success,
    format_percent,
)
from autopilot.modules.processing.schemas import (
    DocumentClassification,
    DocumentFamily,
    ExtractedData,
    PageImage,
    TenantContext,
)

logger = structlog.get_logger()


class AutonomousProcessingCoordinator:
    """Drives classified documents through extraction, audit and judgment.

    Args:
        classifier: Decides the document type.
        mode: Pipeline toggles (ensemble, self-correction, thresholds).
        agents: Extraction agents per document family.
        registry: Business registry for the company checks (optional).
        judgment: Final judge; defaults to a rule-only judge on the mode's config.
        default_country: Jurisdiction used when the tenant's country is unknown.
        extraction_timeout_seconds: Per-tier deadline inside the ensemble.
    """

    agent_name = "Coordinator"

    def __init__(
        self,
        classifier: DocumentClassifier,
        mode: IntelligenceMode | None = None,
        agents: dict[DocumentFamily, DocumentAgents] | None = None,
        *,
        registry: RegistryLookup | None = None,
        judgment: JudgmentAgent | None = None,
        default_country: str = "BE",
        extraction_timeout_seconds: float | None = None,
    ) -> None:
        self.classifier = classifier
        self.mode = mode or IntelligenceMode.thorough()
        self.agents: dict[DocumentFamily, DocumentAgents] = dict(agents or {})
        self.registry = registry
        self.judgment = judgment or JudgmentAgent(config=self.mode.judgment)
        self.default_country = default_country
        self.consensus = ConsensusEngine(amount_epsilon=self.mode.amount_epsilon)

        self.ensembles: dict[DocumentFamily, PerceptionEnsemble] = {}
        if self.mode.enable_ensemble:
            for family, bound in self.agents.items():
                if bound.fast is not None and bound.expert is not None:
                    self.ensembles[family] = PerceptionEnsemble(
                        bound.fast,
                        bound.expert,
                        parallel=self.mode.parallel_extraction,
                        timeout_seconds=extraction_timeout_seconds,
                    )

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def process(
        self,
        images: list[PageImage],
        tenant_context: TenantContext,
    ) -> AutonomousResult:
        start = time.time()
        logger.info(
            "Coordinator: processing document",
            tenant=tenant_context.tenant_id,
            pages=len(images),
            mode=self.mode.name,
        )

        result = await self._process(images, tenant_context)

        duration_ms = int((time.time() - start) * 1000)
        if isinstance(result, Success):
            logger.info(
                "Coordinator: document processed",
                tenant=tenant_context.tenant_id,
                doc_type=result.document_type.value,
                outcome=result.judgment.outcome.value,
                confidence=round(result.confidence, 3),
                retry_attempts=result.retry_attempts,
                duration_ms=duration_ms,
            )
        else:
            logger.warning(
                "Coordinator: document rejected",
                tenant=tenant_context.tenant_id,
                stage=result.stage.value,
                reason=result.reason,
                duration_ms=duration_ms,
            )
        return result

    async def _process(
        self,
        images: list[PageImage],
        tenant_context: TenantContext,
    ) -> AutonomousResult:
        # Step 1: Classify
        try:
            classification = await self.classifier.classify(images, tenant_context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Coordinator: classification failed", error=str(e))
            return Rejected.classification_failed(e)

        logger.info(
            "Coordinator: classified",
            doc_type=classification.document_type.value,
            confidence=format_percent(classification.confidence),
        )

        if classification.confidence < self.mode.min_classification_confidence:
            return Rejected.low_confidence(classification, self.mode.min_classification_confidence)

        # Step 2: Route
        strategy = route(classification.document_type)
        if strategy is None:
            if self.mode.fail_fast_on_unknown_type:
                return Rejected.unknown_document_type(classification)
            return Rejected.manual_classification_required(classification)

        try:
            return await self._run_pipeline(strategy, images, classification, tenant_context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Coordinator: pipeline failed", doc_type=strategy.family.value)
            return Rejected(
                reason=f"Processing failed: {str(e) or type(e).__name__}",
                classification=classification,
                stage=RejectionStage.VALIDATION,
                details={"error": type(e).__name__},
            )

    # ------------------------------------------------------------------
    # Generic per-family pipeline
    # ------------------------------------------------------------------

    async def _run_pipeline(
        self,
        strategy: DocumentStrategy,
        images: list[PageImage],
        classification: DocumentClassification,
        tenant_context: TenantContext,
    ) -> AutonomousResult:
        family = strategy.family
        bound = self.agents.get(family, DocumentAgents())

        # Step 3: Extract (+ reconcile)
        extracted = await self._extract(strategy, bound, images, classification)
        if isinstance(extracted, Rejected):
            return extracted
        extraction, conflict_report = extracted

        # Step 4: Audit
        auditor = self._auditor_for(tenant_context)
        audit_report = await strategy.audit(auditor, extraction)

        # Step 5: Self-correct
        retry_result = await self._self_correct(bound, auditor, images, extraction, audit_report)
        if isinstance(retry_result, CorrectedOnRetry):
            extraction = retry_result.data
            audit_report = await strategy.audit(auditor, extraction)
        elif isinstance(retry_result, StillFailing):
            extraction = retry_result.data
            audit_report = retry_result.last_audit_report

        # Step 6: Judge
        missing = strategy.missing_fields(extraction)
        context = JudgmentContext(
            extraction_confidence=extraction.confidence,
            conflict_report=conflict_report,
            audit_report=audit_report,
            retry_result=retry_result,
            document_type=classification.document_type.value,
            has_essential_fields=not missing,
            missing_essential_fields=missing,
        )
        decision = await self.judgment.judge(context, use_llm=self.mode.use_llm_judgment)

        return Success(
            classification=classification,
            extraction=extraction,
            conflict_report=conflict_report,
            audit_report=audit_report,
            retry_result=retry_result,
            judgment=decision,
        )

    async def _extract(
        self,
        strategy: DocumentStrategy,
        bound: DocumentAgents,
        images: list[PageImage],
        classification: DocumentClassification,
    ) -> tuple[ExtractedData, ConflictReport | None] | Rejected:
        family = strategy.family
        ensemble = self.ensembles.get(family)

        if ensemble is not None:
            ensemble_result = await ensemble.extract(images)
            if not ensemble_result.has_any_candidate:
                return Rejected.extraction_failed(
                    classification, ensemble_result.fast_error, ensemble_result.expert_error,
                )
            consensus = strategy.merge(
                self.consensus, ensemble_result.fast_candidate, ensemble_result.expert_candidate,
            )
            if isinstance(consensus, NoData):
                return Rejected.no_data_extracted(classification)
            if isinstance(consensus, WithConflicts):
                logger.info(
                    "Coordinator: tiers disagree",
                    doc_type=family.value,
                    fields=consensus.report.conflicting_fields,
                    critical=len(consensus.report.critical_conflicts),
                )
                return consensus.data, consensus.report
            if isinstance(consensus, (SingleSource, Unanimous)):
                return consensus.data, None
            raise TypeError(f"Unexpected consensus result {type(consensus).__name__}")

        # Single-agent mode: expert preferred
        agent = bound.expert or bound.fast
        if agent is None:
            return Rejected.no_agent_configured(classification, family.value)

        logger.info("Coordinator: single-agent extraction", doc_type=family.value, agent=agent.agent_name)
        try:
            return await agent.extract(images), None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Coordinator: extraction failed", doc_type=family.value, error=str(e))
            if agent is bound.expert:
                return Rejected.extraction_failed(classification, None, e)
            return Rejected.extraction_failed(classification, e, None)

    async def _self_correct(
        self,
        bound: DocumentAgents,
        auditor: AuditorAgent,
        images: list[PageImage],
        extraction: ExtractedData,
        audit_report: AuditReport,
    ) -> RetryResult:
        if not self.mode.enable_self_correction:
            return NoRetryNeeded(reason="self_correction_disabled")
        if audit_report.is_passed:
            return NoRetryNeeded(reason="audit_passed")
        if not audit_report.critical_failures:
            return NoRetryNeeded(reason="no_critical_failures")
        if bound.corrector is None:
            logger.warning("Coordinator: self-correction requested but no corrector configured")
            return NoRetryNeeded(reason="no_retry_agent")
        if self.mode.max_retries == 0:
            return NoRetryNeeded(reason="no_retry_budget")

        retry_agent = FeedbackDrivenRetryAgent(bound.corrector, auditor, self.mode.max_retries)
        try:
            return await retry_agent.attempt_correction(images, extraction, audit_report)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Coordinator: self-correction crashed", error=str(e))
            return StillFailing(
                data=extraction,
                attempts=0,
                remaining_failures=audit_report.critical_failures,
                last_audit_report=audit_report,
                errors=[str(e) or type(e).__name__],
            )

    def _auditor_for(self, tenant_context: TenantContext) -> AuditorAgent:
        return AuditorAgent(
            get_jurisdiction(tenant_context.country, default=self.default_country),
            enabled_checks=self.mode.enabled_checks,
            registry=self.registry,
            external_validation=self.mode.enable_external_validation,
            vat_rate_tolerance_bp=self.mode.vat_rate_tolerance_bp,
        )


# ---------------------------------------------------------------------------
# Wiring from settings
# ---------------------------------------------------------------------------


def build_coordinator(
    settings: Settings | None = None,
    *,
    mode: IntelligenceMode | None = None,
    cost_tracker: CostTracker | None = None,
    registry: RegistryLookup | None = None,
) -> AutonomousProcessingCoordinator:
    """Coordinator with LLM agents for every family, configured from settings."""
    settings = settings or default_settings
    mode = mode or IntelligenceMode.from_settings(settings)
    cost_tracker = cost_tracker or CostTracker()

    provider = settings.extraction_provider
    agents: dict[DocumentFamily, DocumentAgents] = {}
    for family in STRATEGIES:
        fast = get_extractor(family, "fast", provider, settings.fast_model or None, cost_tracker)
        expert = get_extractor(family, "expert", provider, settings.expert_model or None, cost_tracker)
        agents[family] = DocumentAgents(
            fast=fast,
            expert=expert,
            corrector=expert if mode.enable_self_correction else None,
        )

    classifier = LlmClassifierAgent(
        provider=settings.classifier_provider or provider,
        model=settings.classifier_model or None,
        cost_tracker=cost_tracker,
    )

    backend = None
    if mode.use_llm_judgment:
        backend = LlmJudgmentBackend(
            provider=settings.judgment_provider or provider,
            model=settings.judgment_model or None,
            cost_tracker=cost_tracker,
        )

    if registry is None and mode.enable_external_validation:
        registry = CbeRegistryClient(
            base_url=settings.registry_api_url,
            api_key=settings.registry_api_key,
            timeout=settings.registry_timeout_seconds,
        )

    logger.info(
        "Coordinator: built from settings",
        mode=mode.name,
        provider=provider,
        ensemble=mode.enable_ensemble,
        self_correction=mode.enable_self_correction,
        external_validation=mode.enable_external_validation,
    )
    return AutonomousProcessingCoordinator(
        classifier,
        mode,
        agents,
        registry=registry,
        judgment=JudgmentAgent(config=mode.judgment, backend=backend),
        default_country=settings.default_country,
        extraction_timeout_seconds=float(settings.llm_timeout_seconds),
    )
