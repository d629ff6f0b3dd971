"""
milestone_weights.py — Template snapshots and milestone weight lookup.

A TemplateSnapshot is an immutable view of every progress template in force
at one moment (system templates plus project overrides). It is passed into
each computation explicitly; nothing here reads global mutable state.

Resolution order for a component:
  1. project-level template for (project, component_type)
  2. the component's linked template id
  3. system template for component_type
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple

from pipetrak.config import LEGACY_MILESTONE_ALIASES, SYSTEM_TEMPLATE_SEED
from pipetrak.exceptions import MissingTemplate
from pipetrak.models.component_schema import MilestoneConfig, ProgressTemplate

logger = logging.getLogger("pipetrak-progress")


# ---------------------------------------------------------------------------
# Weight table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WeightTable:
    """Ordered milestones of one template plus legacy-name lookup."""

    template: ProgressTemplate
    aliases: Mapping[str, str]

    @property
    def milestones(self) -> Tuple[MilestoneConfig, ...]:
        return self.template.milestones

    @property
    def weights(self) -> Tuple[Tuple[str, float], ...]:
        return tuple((m.name, m.weight) for m in self.template.milestones)

    def get(self, name: str) -> Optional[MilestoneConfig]:
        for milestone in self.template.milestones:
            if milestone.name == name:
                return milestone
        return None

    def canonical_name(self, stored_name: str) -> Optional[str]:
        """
        Current template name for a stored milestone key, or None when the key
        no longer exists in the template (renamed with a unit change, removed).
        """
        if self.get(stored_name) is not None:
            return stored_name
        alias = self.aliases.get(stored_name)
        if alias is not None and self.get(alias) is not None:
            return alias
        return None

    def unrecognized(self, current_milestones: Mapping[str, object]) -> list:
        """Stored keys the live computation ignores."""
        return [k for k in current_milestones if self.canonical_name(k) is None]


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

class TemplateSnapshot:
    """Read-only set of templates; build a new snapshot after any admin edit."""

    def __init__(
        self,
        templates: Iterable[ProgressTemplate],
        aliases: Optional[Dict[str, Dict[str, str]]] = None,
    ) -> None:
        by_id: Dict[str, ProgressTemplate] = {}
        system: Dict[str, ProgressTemplate] = {}
        project: Dict[Tuple[str, str], ProgressTemplate] = {}
        for tpl in templates:
            by_id[tpl.id] = tpl
            if tpl.project_id is None:
                slot, key = system, tpl.component_type
            else:
                slot, key = project, (tpl.project_id, tpl.component_type)
            current = slot.get(key)
            # Latest version wins
            if current is None or tpl.version >= current.version:
                slot[key] = tpl
        self._by_id = MappingProxyType(by_id)
        self._system = MappingProxyType(system)
        self._project = MappingProxyType(project)
        source = LEGACY_MILESTONE_ALIASES if aliases is None else aliases
        self._aliases = MappingProxyType({k: MappingProxyType(dict(v)) for k, v in source.items()})

    @property
    def component_types(self) -> Tuple[str, ...]:
        return tuple(self._system.keys())

    @property
    def templates(self) -> Tuple[ProgressTemplate, ...]:
        return tuple(self._by_id.values())

    def find(
        self,
        component_type: str,
        project_id: Optional[str] = None,
        template_id: Optional[str] = None,
    ) -> Optional[ProgressTemplate]:
        if project_id is not None:
            tpl = self._project.get((project_id, component_type))
            if tpl is not None:
                return tpl
        if template_id is not None and template_id in self._by_id:
            return self._by_id[template_id]
        return self._system.get(component_type)

    def aliases_for(self, component_type: str) -> Mapping[str, str]:
        return self._aliases.get(component_type, MappingProxyType({}))

    def with_templates(self, templates: Iterable[ProgressTemplate]) -> "TemplateSnapshot":
        """New snapshot with ``templates`` added or superseding existing ones."""
        merged = {t.id: t for t in self._by_id.values()}
        for tpl in templates:
            merged[tpl.id] = tpl
        return TemplateSnapshot(merged.values(), {k: dict(v) for k, v in self._aliases.items()})


def build_system_templates(seed: Optional[Dict[str, dict]] = None) -> list:
    """Materialize seed data into validated ProgressTemplate objects."""
    templates = []
    for ctype, entry in (seed or SYSTEM_TEMPLATE_SEED).items():
        milestones = tuple(
            MilestoneConfig(name=name, weight=weight, order=i, kind=kind,
                            requires_welder=(name == "Weld Complete"))
            for i, (name, weight, kind) in enumerate(entry["milestones"], start=1)
        )
        templates.append(ProgressTemplate(
            id=f"system:{ctype}:v{entry.get('version', 1)}",
            component_type=ctype,
            version=entry.get("version", 1),
            workflow_type=entry["workflow_type"],
            milestones=milestones,
        ))
    return templates


def default_snapshot() -> TemplateSnapshot:
    return TemplateSnapshot(build_system_templates())


# ---------------------------------------------------------------------------
# MilestoneWeightResolver
# ---------------------------------------------------------------------------

class MilestoneWeightResolver:
    """Looks up a component's weight table in a snapshot."""

    def __init__(self, snapshot: TemplateSnapshot) -> None:
        self.snapshot = snapshot

    def resolve(
        self,
        component_type: str,
        project_id: Optional[str] = None,
        template_id: Optional[str] = None,
    ) -> WeightTable:
        """
        Return the weight table for a component.

        Raises MissingTemplate when neither the linked template, a project
        override nor a system template exists; progress is never defaulted.
        """
        template = self.snapshot.find(component_type, project_id, template_id)
        if template is None:
            logger.error(
                "No progress template for component type %s",
                component_type,
                extra={"project_id": project_id},
            )
            raise MissingTemplate(component_type, template_id)
        return WeightTable(template=template, aliases=self.snapshot.aliases_for(component_type))
