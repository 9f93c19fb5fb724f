"""Prompt composition from persisted caller state.

The active COMPOSE spec selects the sections and their order::

    {"sections": ["identity", "personality", "memories", "targets"],
     "maxMemories": 10, "identity": "You are a warm, patient companion."}

Each section is rendered by a registered function from the caller's
stored personality, memories and targets. Sections with nothing to say are
left out; unknown section names are skipped.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from callsense.models import OutputType
from callsense.storage import PipelineStore

logger = structlog.get_logger(__name__)

DEFAULT_SECTIONS = ["identity", "personality", "memories", "targets"]
DEFAULT_MAX_MEMORIES = 10
DEFAULT_IDENTITY = "You are a helpful conversational agent. Adapt to this caller as described below."

HIGH_THRESHOLD = 0.65
LOW_THRESHOLD = 0.35


@dataclass
class ComposeConfig:
    """Resolved composition settings."""

    sections: list[str] = field(default_factory=lambda: list(DEFAULT_SECTIONS))
    max_memories: int = DEFAULT_MAX_MEMORIES
    identity: str = DEFAULT_IDENTITY
    spec_slug: Optional[str] = None


@dataclass
class Composition:
    """Rendered prompt and the sections that made it in."""

    prompt: str
    sections_rendered: list[str]
    sections_skipped: list[str]


SectionRenderer = Callable[[PipelineStore, str, ComposeConfig], Optional[str]]
_RENDERERS: dict[str, SectionRenderer] = {}


def section(name: str) -> Callable[[SectionRenderer], SectionRenderer]:
    """Register a section renderer under ``name``."""
    def register(fn: SectionRenderer) -> SectionRenderer:
        _RENDERERS[name] = fn
        return fn
    return register


def _level(value: float) -> str:
    if value >= HIGH_THRESHOLD:
        return "high"
    if value <= LOW_THRESHOLD:
        return "low"
    return "moderate"


@section("identity")
def render_identity(store: PipelineStore, caller_id: str, config: ComposeConfig) -> Optional[str]:
    return f"## Identity\n\n{config.identity}"


@section("personality")
def render_personality(store: PipelineStore, caller_id: str, config: ComposeConfig) -> Optional[str]:
    personality = store.get_caller_personality(caller_id)
    if personality is None or not personality.traits:
        return None
    lines = [
        f"- {trait}: {_level(value)} ({value:.2f})"
        for trait, value in sorted(personality.traits.items())
        if isinstance(value, (int, float))
    ]
    if not lines:
        return None
    return "## Caller Personality\n\n" + "\n".join(lines)


@section("memories")
def render_memories(store: PipelineStore, caller_id: str, config: ComposeConfig) -> Optional[str]:
    memories = store.memories_for_caller(caller_id, limit=config.max_memories)
    if not memories:
        return None
    by_category: dict[str, list[str]] = {}
    for memory in memories:
        by_category.setdefault(memory.category, []).append(f"{memory.key}: {memory.value}")
    parts = ["## What You Know About This Caller"]
    for category in sorted(by_category):
        parts.append(f"\n**{category.title()}**")
        parts.extend(f"- {item}" for item in by_category[category])
    return "\n".join(parts)


@section("targets")
def render_targets(store: PipelineStore, caller_id: str, config: ComposeConfig) -> Optional[str]:
    targets = store.caller_targets(caller_id)
    if not targets:
        return None
    names = store.parameters(t.parameter_id for t in targets)
    lines = []
    for target in targets:
        name = names[target.parameter_id].name if target.parameter_id in names else target.parameter_id
        lines.append(f"- {name}: aim for {_level(target.target_value)} ({target.target_value:.2f})")
    return "## Behaviour Targets\n\n" + "\n".join(lines)


def load_compose_config(store: PipelineStore) -> ComposeConfig:
    """Composition settings from the active COMPOSE spec, or defaults."""
    spec = store.first_active_spec(OutputType.COMPOSE)
    if spec is None:
        return ComposeConfig()

    raw: dict[str, Any] = spec.config or {}
    sections = raw.get("sections")
    if isinstance(sections, list) and sections:
        sections = [s["id"] if isinstance(s, dict) else str(s) for s in sections]
    else:
        sections = list(DEFAULT_SECTIONS)

    return ComposeConfig(
        sections=sections,
        max_memories=int(raw.get("maxMemories", DEFAULT_MAX_MEMORIES)),
        identity=raw.get("identity") or DEFAULT_IDENTITY,
        spec_slug=spec.slug,
    )


def compose_prompt(store: PipelineStore, caller_id: str, config: ComposeConfig) -> Composition:
    """Render the configured sections in order."""
    rendered: list[str] = []
    included: list[str] = []
    skipped: list[str] = []

    for name in config.sections:
        renderer = _RENDERERS.get(name)
        if renderer is None:
            logger.warning("compose_section_unknown", section=name)
            skipped.append(name)
            continue
        text = renderer(store, caller_id, config)
        if not text:
            skipped.append(name)
            continue
        rendered.append(text)
        included.append(name)

    prompt = "# SESSION PROMPT\n\n" + "\n\n".join(rendered)
    return Composition(prompt=prompt, sections_rendered=included, sections_skipped=skipped)
