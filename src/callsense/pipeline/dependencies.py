"""Rule-spec prerequisite checks.

A spec may list the slugs it depends on in ``depends_on``. A spec is
flagged when a prerequisite is not among the enabled specs, or when it
sits on a dependency cycle. Flags are warnings only, the run goes on.
"""

from typing import Iterable, Mapping

import structlog

from callsense.models import DependencyValidation

logger = structlog.get_logger(__name__)


def _find_cycle_members(graph: Mapping[str, list[str]]) -> set[str]:
    """Slugs that belong to at least one cycle (iterative DFS, three colours)."""
    WHITE, GREY, BLACK = 0, 1, 2
    colour = {slug: WHITE for slug in graph}
    on_cycle: set[str] = set()

    for root in graph:
        if colour[root] != WHITE:
            continue
        path: list[str] = [root]
        stack = [(root, iter(graph[root]))]
        colour[root] = GREY

        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                colour[node] = BLACK
                stack.pop()
                path.pop()
                continue
            if child not in colour:
                continue
            if colour[child] == GREY:
                on_cycle.update(path[path.index(child):])
            elif colour[child] == WHITE:
                colour[child] = GREY
                path.append(child)
                stack.append((child, iter(graph[child])))

    return on_cycle


def validate_spec_dependencies(specs: Iterable) -> DependencyValidation:
    """Check declared prerequisites of the enabled specs.

    Args:
        specs: Enabled rule specs (anything with ``slug`` and ``depends_on``).

    Returns:
        DependencyValidation with a warning per problem and the flagged slugs.
    """
    graph: dict[str, list[str]] = {}
    for spec in specs:
        graph[spec.slug] = [dep for dep in (getattr(spec, "depends_on", None) or []) if dep]

    warnings: list[str] = []
    skipped: list[str] = []

    for slug, deps in graph.items():
        missing = [dep for dep in deps if dep not in graph]
        if missing:
            warnings.append(f"{slug}: missing prerequisite(s) {', '.join(missing)}")
            skipped.append(slug)

    for slug in sorted(_find_cycle_members(graph)):
        warnings.append(f"{slug}: dependency cycle")
        if slug not in skipped:
            skipped.append(slug)

    result = DependencyValidation(valid=not warnings, warnings=warnings, skipped=skipped)
    if warnings:
        logger.warning("spec_dependencies_invalid", warnings=warnings)
    return result
