"""Multi-expert document review with concurrent per-section critiques."""

# Public API
from expert_panel.review.orchestrator import ReviewOrchestrator, ReviewRun
from expert_panel.review.team_selector import TeamSelector
from expert_panel.review.critique import CritiqueInvoker, build_fallback_critique
from expert_panel.review.report import (
    compile_report,
    generate_consolidated_report,
    render_report,
)

# Catalogue
from expert_panel.review.catalog import (
    ExpertRegistry,
    ReviewCatalog,
    SectionCatalog,
    TemplateCatalog,
    default_catalog,
)

# Reasoning
from expert_panel.review.config import ReviewSettings
from expert_panel.review.reasoning import (
    AnthropicReasoningClient,
    ReasoningClient,
    ReasoningError,
    ReasoningRequest,
    ReasoningResponse,
)

# Logging
from expert_panel.review.logging_utils import ReviewLogger
from expert_panel.review.progress_logger import SectionProgressLogger

# Contracts
from expert_panel.review.contracts import (
    BusinessTemplate,
    ConsolidatedReport,
    Critique,
    ExpertPanelError,
    ExpertPersona,
    ReviewContractError,
    ReviewState,
    SectionDefinition,
    SectionReview,
    SectionStatus,
    TeamMember,
    TeamSelection,
)

__all__ = [
    "ReviewOrchestrator",
    "ReviewRun",
    "TeamSelector",
    "CritiqueInvoker",
    "build_fallback_critique",
    "compile_report",
    "generate_consolidated_report",
    "render_report",
    "ExpertRegistry",
    "ReviewCatalog",
    "SectionCatalog",
    "TemplateCatalog",
    "default_catalog",
    "ReviewSettings",
    "AnthropicReasoningClient",
    "ReasoningClient",
    "ReasoningError",
    "ReasoningRequest",
    "ReasoningResponse",
    "ReviewLogger",
    "SectionProgressLogger",
    "BusinessTemplate",
    "ConsolidatedReport",
    "Critique",
    "ExpertPanelError",
    "ExpertPersona",
    "ReviewContractError",
    "ReviewState",
    "SectionDefinition",
    "SectionReview",
    "SectionStatus",
    "TeamMember",
    "TeamSelection",
]
