"""Section, template and expert catalogues.

Catalogues are built once at process start and passed explicitly into the
orchestrator and team selector. They are read-only after construction and
safe to share across concurrent review runs without locking.

Usage:
    catalog = default_catalog()

    section = catalog.sections.get("market-analysis")
    experts = catalog.experts_for_section("market-analysis")
    template = catalog.templates.get("saas")

    # Swap in a smaller catalogue for tests
    catalog = ReviewCatalog(
        sections=SectionCatalog([...]),
        experts=ExpertRegistry([...]),
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Iterator, List, Mapping, Sequence, Tuple

from expert_panel.review.contracts import (
    BusinessTemplate,
    ExpertPersona,
    ReviewContractError,
    SectionDefinition,
)

logger = logging.getLogger(__name__)


class _Catalog:
    """Ordered, read-only collection keyed by ``id``."""

    kind = "entry"

    def __init__(self, entries: Iterable) -> None:
        ordered = tuple(entries)
        by_id = {}
        for entry in ordered:
            if entry.id in by_id:
                raise ReviewContractError(f"Duplicate {self.kind} id '{entry.id}'")
            by_id[entry.id] = entry
        self._entries = ordered
        self._by_id: Mapping = MappingProxyType(by_id)

    def get(self, entry_id: str):
        """Get an entry by id.

        Raises:
            ReviewContractError: If the id is not in the catalogue
        """
        try:
            return self._by_id[entry_id]
        except KeyError:
            raise ReviewContractError(
                f"Unknown {self.kind} '{entry_id}'. Available: {list(self._by_id)}"
            ) from None

    def ids(self) -> List[str]:
        return [entry.id for entry in self._entries]

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._by_id

    def __iter__(self) -> Iterator:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class SectionCatalog(_Catalog):
    kind = "section"

    def __iter__(self) -> Iterator[SectionDefinition]:
        return iter(self._entries)

    def get(self, entry_id: str) -> SectionDefinition:
        return super().get(entry_id)


class ExpertRegistry(_Catalog):
    kind = "expert"

    def __iter__(self) -> Iterator[ExpertPersona]:
        return iter(self._entries)

    def get(self, entry_id: str) -> ExpertPersona:
        return super().get(entry_id)

    def for_categories(self, categories: Iterable[str]) -> List[ExpertPersona]:
        """Experts whose category is in ``categories``, in registry order."""
        wanted = set(categories)
        return [expert for expert in self._entries if expert.category in wanted]

    def subset(self, expert_ids: Iterable[str]) -> "ExpertRegistry":
        """Registry restricted to ``expert_ids``, keeping registry order.

        Raises:
            ReviewContractError: If any id is unknown
        """
        wanted = set(expert_ids)
        unknown = wanted - set(self._by_id)
        if unknown:
            raise ReviewContractError(f"Unknown experts {sorted(unknown)}")
        return ExpertRegistry(e for e in self._entries if e.id in wanted)


class TemplateCatalog(_Catalog):
    kind = "template"

    def __iter__(self) -> Iterator[BusinessTemplate]:
        return iter(self._entries)

    def get(self, entry_id: str) -> BusinessTemplate:
        return super().get(entry_id)


@dataclass(frozen=True)
class ReviewCatalog:
    """Everything a review run needs to know about sections, experts and templates."""

    sections: SectionCatalog
    experts: ExpertRegistry
    templates: TemplateCatalog = field(default_factory=lambda: TemplateCatalog(()))

    def experts_for_section(self, section_id: str) -> List[ExpertPersona]:
        """Experts eligible for a section, in registry order.

        Raises:
            ReviewContractError: If the section id is unknown
        """
        section = self.sections.get(section_id)
        return self.experts.for_categories(section.expert_categories)


def _section(
    section_id: str,
    name: str,
    description: str,
    categories: Sequence[str],
    questions: Sequence[str],
) -> SectionDefinition:
    return SectionDefinition(
        id=section_id,
        name=name,
        description=description,
        guiding_questions=tuple(questions),
        expert_categories=frozenset(categories),
    )


STRATEGY = "Strategy & Leadership"
FINANCE = "Investment & Finance"
MARKETING = "Marketing & Growth"
SALES = "Sales & Revenue"
TECHNOLOGY = "Technology & Innovation"
OPERATIONS = "Operations & Execution"
LEGAL = "Legal & Compliance"


BUSINESS_PLAN_SECTIONS: Tuple[SectionDefinition, ...] = (
    _section(
        "executive-summary",
        "Executive Summary",
        "High-level overview and key value propositions",
        [STRATEGY, FINANCE],
        [
            "Is the value proposition clear and compelling?",
            "Does it capture the essence of the business?",
            "Are the key differentiators evident?",
        ],
    ),
    _section(
        "market-analysis",
        "Market Analysis & Opportunity",
        "Market size, trends, and opportunity assessment",
        [STRATEGY, FINANCE],
        [
            "Is the TAM/SAM/SOM analysis credible?",
            "Are market trends properly identified?",
            "Is the timing opportunity validated?",
        ],
    ),
    _section(
        "competitive-landscape",
        "Competitive Landscape",
        "Competitor analysis and positioning strategy",
        [STRATEGY, MARKETING],
        [
            "Are all key competitors identified?",
            "Is the competitive moat defensible?",
            "What are the barriers to entry?",
        ],
    ),
    _section(
        "go-to-market",
        "Go-to-Market Strategy",
        "Launch strategy, channels, and customer acquisition",
        [MARKETING, SALES],
        [
            "Is the GTM strategy realistic and executable?",
            "Are customer acquisition costs justified?",
            "What are the key milestones?",
        ],
    ),
    _section(
        "pricing-strategy",
        "Pricing Strategy",
        "Pricing model, unit economics, and revenue projections",
        [FINANCE, SALES],
        [
            "Is the pricing competitive yet profitable?",
            "Are unit economics sustainable?",
            "What pricing power exists?",
        ],
    ),
    _section(
        "product-technology",
        "Product & Technology",
        "Product roadmap, technology stack, and IP",
        [TECHNOLOGY, OPERATIONS],
        [
            "Is the technology stack appropriate?",
            "What is the product differentiation?",
            "Is the roadmap achievable?",
        ],
    ),
    _section(
        "financial-projections",
        "Financial Projections",
        "Revenue forecasts, costs, and funding requirements",
        [FINANCE],
        [
            "Are projections realistic and defensible?",
            "What are the key assumptions?",
            "Is the burn rate sustainable?",
        ],
    ),
    _section(
        "team-operations",
        "Team & Operations",
        "Leadership team, org structure, and operational plan",
        [OPERATIONS, STRATEGY],
        [
            "Does the team have the right capabilities?",
            "What are the key hires needed?",
            "Is the operational plan sound?",
        ],
    ),
    _section(
        "risk-assessment",
        "Risk Assessment",
        "Risk identification and mitigation strategies",
        [LEGAL, FINANCE],
        [
            "Are all material risks identified?",
            "Are mitigation strategies adequate?",
            "What are the regulatory considerations?",
        ],
    ),
    _section(
        "funding-requirements",
        "Funding Requirements",
        "Capital needs, use of funds, and investor terms",
        [FINANCE],
        [
            "Is the funding ask justified?",
            "Is the use of funds clear?",
            "What is the expected ROI?",
        ],
    ),
)


REVIEW_EXPERTS: Tuple[ExpertPersona, ...] = (
    ExpertPersona(
        id="inv-001",
        name="Victor Sterling",
        specialty="Value Investing & Long-term Wealth",
        category=FINANCE,
        avatar="👨‍💼",
        persona_instructions=(
            "You are Victor Sterling, a value investor combining the wisdom of Warren Buffett, "
            "Charlie Munger, and Peter Lynch. Focus on intrinsic value, competitive moats, "
            "and long-term sustainability."
        ),
    ),
    ExpertPersona(
        id="inv-002",
        name="Marcus Macro",
        specialty="Global Macro & Economic Cycles",
        category=FINANCE,
        avatar="📊",
        persona_instructions=(
            "You are Marcus Macro, a macro economist combining Ray Dalio, George Soros, "
            "and Howard Marks. Focus on economic cycles, market timing, and risk management."
        ),
    ),
    ExpertPersona(
        id="str-001",
        name="Alexandra Strategy",
        specialty="Corporate Strategy & Transformation",
        category=STRATEGY,
        avatar="🎯",
        persona_instructions=(
            "You are Alexandra Strategy, a corporate strategist with McKinsey-level rigor. "
            "Focus on competitive positioning, strategic options, and execution feasibility."
        ),
    ),
    ExpertPersona(
        id="mkt-001",
        name="Maya Marketing",
        specialty="Growth Marketing & Brand Strategy",
        category=MARKETING,
        avatar="📈",
        persona_instructions=(
            "You are Maya Marketing, a growth marketing expert. Focus on customer acquisition, "
            "brand positioning, and go-to-market effectiveness."
        ),
    ),
    ExpertPersona(
        id="sal-001",
        name="Simon Sales",
        specialty="Enterprise Sales & Revenue Operations",
        category=SALES,
        avatar="🤝",
        persona_instructions=(
            "You are Simon Sales, an enterprise sales expert. Focus on sales strategy, "
            "pricing optimization, and revenue scalability."
        ),
    ),
    ExpertPersona(
        id="tech-001",
        name="Theo Tech",
        specialty="Technology Strategy & Architecture",
        category=TECHNOLOGY,
        avatar="💻",
        persona_instructions=(
            "You are Theo Tech, a technology strategist. Focus on technical feasibility, "
            "scalability, and innovation potential."
        ),
    ),
    ExpertPersona(
        id="ops-001",
        name="Oliver Operations",
        specialty="Operations Excellence & Scaling",
        category=OPERATIONS,
        avatar="⚙️",
        persona_instructions=(
            "You are Oliver Operations, an operations expert. Focus on execution capability, "
            "operational efficiency, and scalability."
        ),
    ),
    ExpertPersona(
        id="leg-001",
        name="Laura Legal",
        specialty="Corporate Law & Regulatory Compliance",
        category=LEGAL,
        avatar="⚖️",
        persona_instructions=(
            "You are Laura Legal, a corporate lawyer. Focus on legal risks, regulatory "
            "compliance, and contractual considerations."
        ),
    ),
)


BUSINESS_TEMPLATES: Tuple[BusinessTemplate, ...] = (
    BusinessTemplate(
        id="saas",
        name="SaaS / Software",
        description="Software-as-a-Service and subscription-based software businesses",
        section_weights={
            "executive-summary": 1.0,
            "market-analysis": 1.0,
            "competitive-landscape": 1.2,
            "go-to-market": 1.1,
            "pricing-strategy": 1.3,
            "product-technology": 1.4,
            "financial-projections": 1.2,
            "team-operations": 1.0,
            "risk-assessment": 0.9,
            "funding-requirements": 1.0,
        },
        key_metrics=("MRR/ARR", "Churn Rate", "CAC/LTV Ratio", "Net Revenue Retention", "Gross Margin"),
        preferred_experts=("tech-001", "inv-001", "mkt-001"),
        guidance={
            "pricing-strategy": "Focus on subscription tiers, annual vs monthly pricing, and expansion revenue potential.",
            "financial-projections": "Emphasize MRR growth, churn assumptions, and path to profitability.",
            "product-technology": "Detail the tech stack, scalability architecture, and product roadmap.",
        },
    ),
    BusinessTemplate(
        id="ecommerce",
        name="E-Commerce / Retail",
        description="Online retail, D2C brands, and omnichannel commerce",
        section_weights={
            "executive-summary": 1.0,
            "market-analysis": 1.1,
            "competitive-landscape": 1.2,
            "go-to-market": 1.3,
            "pricing-strategy": 1.1,
            "product-technology": 0.9,
            "financial-projections": 1.2,
            "team-operations": 1.3,
            "risk-assessment": 1.0,
            "funding-requirements": 1.0,
        },
        key_metrics=("AOV", "Conversion Rate", "Customer Acquisition Cost", "Gross Margin", "Inventory Turnover"),
        preferred_experts=("ops-001", "mkt-001", "sal-001"),
        guidance={
            "go-to-market": "Detail customer acquisition channels, influencer strategy, and brand positioning.",
            "team-operations": "Focus on fulfillment, inventory management, and supply chain resilience.",
            "pricing-strategy": "Address margin structure, promotional strategy, and competitive pricing.",
        },
    ),
    BusinessTemplate(
        id="marketplace",
        name="Marketplace / Platform",
        description="Two-sided marketplaces and platform businesses",
        section_weights={
            "executive-summary": 1.0,
            "market-analysis": 1.2,
            "competitive-landscape": 1.3,
            "go-to-market": 1.4,
            "pricing-strategy": 1.2,
            "product-technology": 1.1,
            "financial-projections": 1.1,
            "team-operations": 1.0,
            "risk-assessment": 1.1,
            "funding-requirements": 1.0,
        },
        key_metrics=("GMV", "Take Rate", "Liquidity", "Supply/Demand Ratio", "Repeat Transaction Rate"),
        preferred_experts=("str-001", "mkt-001", "tech-001"),
        guidance={
            "go-to-market": "Address the chicken-and-egg problem and initial liquidity strategy.",
            "competitive-landscape": "Focus on network effects, switching costs, and winner-take-all dynamics.",
            "pricing-strategy": "Detail take rate structure, pricing for both sides, and monetization timeline.",
        },
    ),
    BusinessTemplate(
        id="fintech",
        name="FinTech / Financial Services",
        description="Financial technology and digital financial services",
        section_weights={
            "executive-summary": 1.0,
            "market-analysis": 1.1,
            "competitive-landscape": 1.1,
            "go-to-market": 1.0,
            "pricing-strategy": 1.2,
            "product-technology": 1.2,
            "financial-projections": 1.3,
            "team-operations": 1.1,
            "risk-assessment": 1.5,
            "funding-requirements": 1.1,
        },
        key_metrics=("AUM", "Transaction Volume", "Default Rate", "Regulatory Compliance", "Customer Trust Score"),
        preferred_experts=("inv-001", "inv-002", "leg-001"),
        guidance={
            "risk-assessment": "Thoroughly address regulatory requirements, compliance framework, and risk management.",
            "financial-projections": "Detail unit economics, capital requirements, and path to profitability.",
            "product-technology": "Focus on security, data protection, and integration capabilities.",
        },
    ),
    BusinessTemplate(
        id="healthcare",
        name="Healthcare / HealthTech",
        description="Healthcare technology, digital health, and medical devices",
        section_weights={
            "executive-summary": 1.0,
            "market-analysis": 1.2,
            "competitive-landscape": 1.0,
            "go-to-market": 1.1,
            "pricing-strategy": 1.1,
            "product-technology": 1.3,
            "financial-projections": 1.1,
            "team-operations": 1.2,
            "risk-assessment": 1.5,
            "funding-requirements": 1.2,
        },
        key_metrics=(
            "Patient Outcomes",
            "Regulatory Approval Status",
            "Reimbursement Rate",
            "Clinical Evidence",
            "Market Access",
        ),
        preferred_experts=("leg-001", "tech-001", "ops-001"),
        guidance={
            "risk-assessment": "Address FDA/regulatory pathway, clinical trial requirements, and liability considerations.",
            "product-technology": "Detail clinical validation, efficacy data, and integration with healthcare systems.",
            "team-operations": "Emphasize clinical advisory board, regulatory expertise, and healthcare partnerships.",
        },
    ),
    BusinessTemplate(
        id="b2b-services",
        name="B2B Services / Consulting",
        description="Professional services, consulting, and B2B service businesses",
        section_weights={
            "executive-summary": 1.0,
            "market-analysis": 1.0,
            "competitive-landscape": 1.1,
            "go-to-market": 1.2,
            "pricing-strategy": 1.1,
            "product-technology": 0.8,
            "financial-projections": 1.1,
            "team-operations": 1.4,
            "risk-assessment": 1.0,
            "funding-requirements": 0.9,
        },
        key_metrics=(
            "Utilization Rate",
            "Average Contract Value",
            "Client Retention",
            "Revenue per Employee",
            "Gross Margin",
        ),
        preferred_experts=("sal-001", "ops-001", "str-001"),
        guidance={
            "team-operations": "Focus on talent acquisition, training, and scaling service delivery.",
            "go-to-market": "Detail enterprise sales strategy, partnership channels, and thought leadership.",
            "pricing-strategy": "Address pricing models, value-based pricing, and margin optimization.",
        },
    ),
)


def default_catalog() -> ReviewCatalog:
    """Build the built-in business plan catalogue."""
    catalog = ReviewCatalog(
        sections=SectionCatalog(BUSINESS_PLAN_SECTIONS),
        experts=ExpertRegistry(REVIEW_EXPERTS),
        templates=TemplateCatalog(BUSINESS_TEMPLATES),
    )
    logger.debug(
        f"Built default catalog: {len(catalog.sections)} sections, "
        f"{len(catalog.experts)} experts, {len(catalog.templates)} templates"
    )
    return catalog
