"""Closed component registry with prop schemas.

Defines:
- ComponentType: the only component names a layout may use.
- One pydantic props model per component (camelCase on the wire, unknown props rejected).
- ValidatedComponent / UnsupportedComponent: the two outcomes of validation.
- validate_component: check one LayoutComponent against the registry. Never raises.

Component names are never dispatched dynamically; anything outside the enum becomes
an UnsupportedComponent.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from concierge.schemas import LayoutComponent


class ComponentType(str, Enum):
    HERO_BLOCK = "HeroBlock"
    STRATEGY_CARD = "StrategyCard"
    VIDEO_PLAYER = "VideoPlayer"
    METRIC_GRID = "MetricGrid"
    VISUAL_ASSET = "VisualAsset"
    CASE_STUDY_TEASER = "CaseStudyTeaser"


class PropsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class HeroBlockProps(PropsModel):
    title: str = Field(min_length=1)
    subtitle: Optional[str] = None
    challenge_summary: Optional[str] = None
    background_variant: Optional[Literal["dark", "light", "gradient"]] = None


class StrategyCardProps(PropsModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    icon: Optional[Literal["lightbulb", "target", "chart", "users", "rocket"]] = None
    accent_color: Optional[str] = None


class VideoPlayerProps(PropsModel):
    url: str = Field(min_length=1)
    caption: Optional[str] = None
    aspect_ratio: Optional[Literal["16:9", "4:3", "1:1"]] = None
    autoplay: Optional[bool] = None


class MetricStat(PropsModel):
    label: str
    value: str
    context: Optional[str] = None


class MetricGridProps(PropsModel):
    stats: List[MetricStat] = Field(min_length=1)
    columns: Optional[Literal[2, 3, 4]] = None
    variant: Optional[Literal["default", "highlight", "minimal"]] = None


class VisualAssetProps(PropsModel):
    src: str = Field(min_length=1)
    alt: str
    caption: Optional[str] = None
    aspect_ratio: Optional[Literal["auto", "16:9", "4:3", "1:1", "3:2"]] = None
    loading: Optional[Literal["lazy", "eager"]] = None
    enable_lightbox: Optional[bool] = None


class CaseStudyTeaserProps(PropsModel):
    title: str = Field(min_length=1)
    client_name: Optional[str] = None
    summary: str
    capabilities: Optional[List[str]] = None
    industries: Optional[List[str]] = None
    thumbnail_url: Optional[str] = None
    slug: str = Field(min_length=1)


COMPONENT_PROPS: Dict[ComponentType, Type[PropsModel]] = {
    ComponentType.HERO_BLOCK: HeroBlockProps,
    ComponentType.STRATEGY_CARD: StrategyCardProps,
    ComponentType.VIDEO_PLAYER: VideoPlayerProps,
    ComponentType.METRIC_GRID: MetricGridProps,
    ComponentType.VISUAL_ASSET: VisualAssetProps,
    ComponentType.CASE_STUDY_TEASER: CaseStudyTeaserProps,
}


@dataclass
class ValidatedComponent:
    type: ComponentType
    props: PropsModel

    def wire_props(self) -> Dict[str, Any]:
        return self.props.model_dump(by_alias=True, exclude_none=True)


@dataclass
class UnsupportedComponent:
    """A layout item that failed validation; rendered inert."""
    name: str
    reason: str
    props: Dict[str, Any] = field(default_factory=dict)


def validate_component(item: LayoutComponent) -> Union[ValidatedComponent, UnsupportedComponent]:
    """Validate one layout item against the registry.

    Args:
        item: Extracted layout item (any component name, any props).

    Returns:
        ValidatedComponent for a known name with matching props, otherwise an
        UnsupportedComponent carrying the reason.
    """
    try:
        component_type = ComponentType(item.component)
    except ValueError:
        return UnsupportedComponent(name=item.component, reason="unknown component", props=item.props)
    try:
        props = COMPONENT_PROPS[component_type].model_validate(item.props)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'props'}: {err['msg']}" for err in e.errors()
        )
        return UnsupportedComponent(name=item.component, reason=f"invalid props: {problems}", props=item.props)
    return ValidatedComponent(type=component_type, props=props)
