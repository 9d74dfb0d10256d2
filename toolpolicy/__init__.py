"""Tool policy resolution: which support tools a student may use, and why."""

from .config import ResolverConfig  # noqa: F401
from .context import (  # noqa: F401
    AssessmentContext,
    ContextLevel,
    ContextShapeError,
    ElementContext,
    ItemContext,
    PassageContext,
    RubricContext,
    SectionContext,
    ToolContext,
    context_from_mapping,
    extract_text,
    has_choice_interaction,
    has_math_content,
    has_readable_text,
    has_science_content,
)
from .defaults import create_default_registry  # noqa: F401
from .inputs import (  # noqa: F401
    AccommodationProfile,
    InstitutionalPolicy,
    ItemSettings,
    PolicyInput,
    PolicyInputError,
    SessionOverride,
)
from .loader import PolicyDocument, PolicyDocumentError, load_policy_document  # noqa: F401
from .mapping import STANDARD_ACCOMMODATION_MAP, AccommodationMapper  # noqa: F401
from .models import (  # noqa: F401
    ConfigSource,
    DecisionAction,
    PolicyRule,
    ResolvedToolConfig,
    RuleOutcome,
    SourceType,
    ToolDescriptor,
)
from .provenance import (  # noqa: F401
    NullProvenanceBuilder,
    ProvenanceBuilder,
    ProvenanceTrail,
    format_json,
    format_markdown,
)
from .registry import (  # noqa: F401
    DuplicateToolError,
    RegistryError,
    ToolRegistry,
    UnknownToolError,
    import_module_loader,
)
from .resolver import CatalogUnavailableError, PolicyResolver, Resolution  # noqa: F401

__all__ = [
    "AccommodationMapper",
    "AccommodationProfile",
    "AssessmentContext",
    "CatalogUnavailableError",
    "ConfigSource",
    "ContextLevel",
    "ContextShapeError",
    "DecisionAction",
    "DuplicateToolError",
    "ElementContext",
    "InstitutionalPolicy",
    "ItemContext",
    "ItemSettings",
    "NullProvenanceBuilder",
    "PassageContext",
    "PolicyDocument",
    "PolicyDocumentError",
    "PolicyInput",
    "PolicyInputError",
    "PolicyResolver",
    "PolicyRule",
    "ProvenanceBuilder",
    "ProvenanceTrail",
    "RegistryError",
    "Resolution",
    "ResolvedToolConfig",
    "ResolverConfig",
    "RubricContext",
    "RuleOutcome",
    "STANDARD_ACCOMMODATION_MAP",
    "SectionContext",
    "SessionOverride",
    "SourceType",
    "ToolContext",
    "ToolDescriptor",
    "ToolRegistry",
    "UnknownToolError",
    "context_from_mapping",
    "create_default_registry",
    "extract_text",
    "format_json",
    "format_markdown",
    "has_choice_interaction",
    "has_math_content",
    "has_readable_text",
    "has_science_content",
    "import_module_loader",
    "load_policy_document",
]
