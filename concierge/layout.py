"""Pure LayoutPlan -> render instruction assembly.

assemble_layout validates each item against the component registry and produces the
instruction list consumed by the rendering layer:
- unknown or invalid items become inert "placeholder" instructions;
- consecutive valid CaseStudyTeasers collapse into one "group" with 1-3 grid columns;
- spacing after each top-level instruction follows adjacency rules;
- an empty plan yields a single "empty" instruction.

Spacing tokens: "wide", "tight", "default", "section", "none".
"""
from typing import List, Optional, Union

from concierge.components import ComponentType, UnsupportedComponent, ValidatedComponent, validate_component
from concierge.schemas import LayoutPlan, RenderInstruction

MAX_GROUP_COLUMNS = 3

Validated = Union[ValidatedComponent, UnsupportedComponent]


def _is_teaser(v: Validated) -> bool:
    return isinstance(v, ValidatedComponent) and v.type == ComponentType.CASE_STUDY_TEASER


def spacing_after(current: RenderInstruction, nxt: Optional[RenderInstruction]) -> str:
    """Spacing token between an instruction and the one that follows it."""
    if nxt is None:
        return "none"
    if current.kind == "group":
        return "section"
    if current.component == ComponentType.HERO_BLOCK.value:
        return "wide"
    if current.component == ComponentType.METRIC_GRID.value and nxt.component == ComponentType.VISUAL_ASSET.value:
        return "wide"
    if current.component == ComponentType.STRATEGY_CARD.value and nxt.component == ComponentType.STRATEGY_CARD.value:
        return "tight"
    return "default"


def _instruction(v: Validated) -> RenderInstruction:
    if isinstance(v, UnsupportedComponent):
        return RenderInstruction(kind="placeholder", component=v.name, reason=v.reason)
    return RenderInstruction(kind="component", component=v.type.value, props=v.wire_props())


def assemble_layout(plan: LayoutPlan) -> List[RenderInstruction]:
    """Turn a layout plan into render instructions.

    Args:
        plan: Layout plan as extracted by the orchestrator (unvalidated).

    Returns:
        List[RenderInstruction]: Top-level instructions in plan order. Never raises for
            unknown components or mismatched props.
    """
    if not plan.layout:
        return [RenderInstruction(kind="empty", reason="No content to display")]

    validated = [validate_component(item) for item in plan.layout]

    instructions: List[RenderInstruction] = []
    teasers: List[RenderInstruction] = []
    for v in validated:
        if _is_teaser(v):
            teasers.append(_instruction(v))
            continue
        if teasers:
            instructions.append(_group(teasers))
            teasers = []
        instructions.append(_instruction(v))
    if teasers:
        instructions.append(_group(teasers))

    for i, inst in enumerate(instructions):
        nxt = instructions[i + 1] if i + 1 < len(instructions) else None
        inst.spacing = spacing_after(inst, nxt)
    return instructions


def _group(teasers: List[RenderInstruction]) -> RenderInstruction:
    return RenderInstruction(
        kind="group",
        component=ComponentType.CASE_STUDY_TEASER.value,
        items=list(teasers),
        columns=min(len(teasers), MAX_GROUP_COLUMNS),
    )


def has_renderable_components(instructions: List[RenderInstruction]) -> bool:
    """True if at least one validated component or group survived assembly."""
    return any(inst.kind in ("component", "group") for inst in instructions)
