"""
Storyframe Data Models

Dataclasses describing a storyboard project (scenes, groups, characters,
products, style settings) and the ephemeral objects that flow through one
generation: requests, results and continuity decisions.
"""

from __future__ import annotations

import base64
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from storyframe.core.constants import MetaCategory, UNFIXABLE_MARKERS


class SceneStatus(Enum):
    """Generation status of a scene."""
    IDLE = "idle"
    GENERATING = "generating"
    ERROR = "error"


class ContinuityAction(Enum):
    """What to do with a freshly generated image after validation."""
    CONTINUE = "continue"
    RETRY = "retry"
    ASK_USER = "ask_user"


class RaccordErrorType(Enum):
    """Kinds of continuity breaks the validator reports."""
    CHARACTER_MISMATCH = "character_mismatch"
    OUTFIT_CHANGE = "outfit_change"
    LIGHTING_CHANGE = "lighting_change"
    BACKGROUND_CHANGE = "background_change"
    STYLE_CHANGE = "style_change"


class ReferenceKind(Enum):
    """Role of a reference image inside a generation request."""
    SCENE_ANCHOR = "scene_anchor"
    SHOT_CONTINUITY = "shot_continuity"
    CONCEPT = "concept"
    CHARACTER_FACE = "character_face"
    CHARACTER_VIEW = "character_view"
    PRODUCT_PRIMARY = "product_primary"
    PRODUCT_VIEW = "product_view"


class Severity(Enum):
    """Severity of a continuity finding."""
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# IMAGE PAYLOADS
# =============================================================================

@dataclass
class ImageData:
    """Raw image bytes with their MIME type."""
    data: bytes
    mime_type: str = "image/png"

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


@dataclass
class ReferencePart:
    """One labelled reference image attached to a generation request."""
    instruction: str
    image: ImageData
    kind: ReferenceKind = ReferenceKind.CHARACTER_VIEW
    source: str = ""


@dataclass
class GenerationRequest:
    """Everything a backend needs to produce one image."""
    prompt: str
    model_id: str
    parts: List[ReferencePart] = field(default_factory=list)
    aspect_ratio: str = "16:9"
    resolution: str = "2K"

    @property
    def reference_count(self) -> int:
        return len(self.parts)


@dataclass
class GenerationResult:
    """Image produced by a backend, inline or as a URL."""
    model_id: str
    provider: str
    image: Optional[ImageData] = None
    image_url: Optional[str] = None
    job_id: Optional[str] = None

    def to_reference(self) -> str:
        """Storable reference string: a data URI for inline bytes, else the URL."""
        if self.image is not None:
            return self.image.to_data_uri()
        if self.image_url:
            return self.image_url
        raise ValueError(f"{self.provider} result for {self.model_id} carries no image")


# =============================================================================
# CONTINUITY DECISIONS
# =============================================================================

@dataclass
class RaccordError:
    """A single continuity finding."""
    type: RaccordErrorType
    description: str
    severity: Severity = Severity.WARNING


@dataclass
class ContinuityDecision:
    """Outcome of comparing a new image with its continuity anchor."""
    is_valid: bool
    score: float
    action: ContinuityAction
    errors: List[RaccordError] = field(default_factory=list)
    correction_prompt: Optional[str] = None

    @classmethod
    def passthrough(cls) -> "ContinuityDecision":
        """Fail-open decision used when validation cannot run."""
        return cls(is_valid=True, score=1.0, action=ContinuityAction.CONTINUE)

    @property
    def has_errors(self) -> bool:
        return any(e.severity == Severity.ERROR for e in self.errors)


# =============================================================================
# PROJECT ENTITIES
# =============================================================================

@dataclass
class Character:
    """A recurring character with tagged identity references."""
    id: str
    name: str
    description: str = ""
    face_image: Optional[str] = None
    body_image: Optional[str] = None
    side_image: Optional[str] = None
    back_image: Optional[str] = None
    master_image: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Character":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            face_image=data.get("face_image"),
            body_image=data.get("body_image"),
            side_image=data.get("side_image"),
            back_image=data.get("back_image"),
            master_image=data.get("master_image"),
        )

    def image_refs(self) -> List[str]:
        return [r for r in (self.face_image, self.body_image, self.side_image,
                            self.back_image, self.master_image) if r]


@dataclass
class Product:
    """A prop or product with tagged views."""
    id: str
    name: str
    description: str = ""
    front_image: Optional[str] = None
    back_image: Optional[str] = None
    left_image: Optional[str] = None
    right_image: Optional[str] = None
    top_image: Optional[str] = None
    master_image: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            front_image=data.get("front_image"),
            back_image=data.get("back_image"),
            left_image=data.get("left_image"),
            right_image=data.get("right_image"),
            top_image=data.get("top_image"),
            master_image=data.get("master_image"),
        )

    def image_refs(self) -> List[str]:
        return [r for r in (self.front_image, self.back_image, self.left_image, self.right_image,
                            self.top_image, self.master_image) if r]


@dataclass
class SceneGroup:
    """Shared location context for a run of scenes."""
    id: str
    name: str
    description: str = ""
    lighting: Optional[str] = None
    weather: Optional[str] = None
    time_of_day: Optional[str] = None
    concept_image: Optional[str] = None
    style_override: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SceneGroup":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            lighting=data.get("lighting"),
            weather=data.get("weather"),
            time_of_day=data.get("time_of_day"),
            concept_image=data.get("concept_image"),
            style_override=data.get("style_override"),
        )


@dataclass
class Scene:
    """One storyboard shot."""
    id: str
    sequence_number: int
    description: str = ""
    group_id: Optional[str] = None
    character_ids: List[str] = field(default_factory=list)
    product_ids: List[str] = field(default_factory=list)
    camera_angle: Optional[str] = None
    lens: Optional[str] = None
    camera_model: Optional[str] = None
    is_key_frame: bool = False
    generated_image: Optional[str] = None
    end_frame_image: Optional[str] = None
    provider_job_id: Optional[str] = None
    status: SceneStatus = SceneStatus.IDLE
    error: Optional[str] = None
    continuity_decision: Optional[ContinuityDecision] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scene":
        return cls(
            id=data["id"],
            sequence_number=int(data.get("sequence_number", 0)),
            description=data.get("description", ""),
            group_id=data.get("group_id"),
            character_ids=list(data.get("character_ids", [])),
            product_ids=list(data.get("product_ids", [])),
            camera_angle=data.get("camera_angle"),
            lens=data.get("lens"),
            camera_model=data.get("camera_model"),
            is_key_frame=bool(data.get("is_key_frame", False)),
            generated_image=data.get("generated_image"),
            end_frame_image=data.get("end_frame_image"),
            provider_job_id=data.get("provider_job_id"),
            status=SceneStatus(data.get("status", "idle")),
            error=data.get("error"),
        )

    @property
    def is_unfixable(self) -> bool:
        """True when a recorded error excludes this scene from the cascade."""
        if not self.error:
            return False
        return any(marker in self.error for marker in UNFIXABLE_MARKERS)


@dataclass
class StyleSettings:
    """Project-wide look and backend selection."""
    style_preset: Optional[str] = "cinematic-realistic"
    custom_style: Optional[str] = None
    camera_model: Optional[str] = None
    default_lens: Optional[str] = None
    meta_category: MetaCategory = MetaCategory.CUSTOM
    meta_tokens: Optional[str] = None
    image_model: Optional[str] = None
    aspect_ratio: str = "16:9"
    resolution: str = "2K"
    strict_outfit_lock: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StyleSettings":
        return cls(
            style_preset=data.get("style_preset", "cinematic-realistic"),
            custom_style=data.get("custom_style"),
            camera_model=data.get("camera_model"),
            default_lens=data.get("default_lens"),
            meta_category=MetaCategory(data.get("meta_category", "custom")),
            meta_tokens=data.get("meta_tokens"),
            image_model=data.get("image_model"),
            aspect_ratio=data.get("aspect_ratio", "16:9"),
            resolution=data.get("resolution", "2K"),
            strict_outfit_lock=bool(data.get("strict_outfit_lock", True)),
        )


@dataclass
class Storyboard:
    """Snapshot of a project, read by the orchestrator at call time."""
    scenes: List[Scene] = field(default_factory=list)
    groups: List[SceneGroup] = field(default_factory=list)
    characters: List[Character] = field(default_factory=list)
    products: List[Product] = field(default_factory=list)
    style: StyleSettings = field(default_factory=StyleSettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Storyboard":
        return cls(
            scenes=[Scene.from_dict(s) for s in data.get("scenes", [])],
            groups=[SceneGroup.from_dict(g) for g in data.get("groups", [])],
            characters=[Character.from_dict(c) for c in data.get("characters", [])],
            products=[Product.from_dict(p) for p in data.get("products", [])],
            style=StyleSettings.from_dict(data.get("style", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self, dict_factory=_enum_safe_dict)

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        return next((s for s in self.scenes if s.id == scene_id), None)

    def get_group(self, group_id: Optional[str]) -> Optional[SceneGroup]:
        if not group_id:
            return None
        return next((g for g in self.groups if g.id == group_id), None)

    def get_character(self, character_id: str) -> Optional[Character]:
        return next((c for c in self.characters if c.id == character_id), None)

    def get_product(self, product_id: str) -> Optional[Product]:
        return next((p for p in self.products if p.id == product_id), None)

    def ordered_scenes(self) -> List[Scene]:
        return sorted(self.scenes, key=lambda s: s.sequence_number)

    def scenes_in_group(self, group_id: str) -> List[Scene]:
        return [s for s in self.ordered_scenes() if s.group_id == group_id]

    def all_image_refs(self) -> List[str]:
        """Every reference image the project points at, for pre-warming."""
        refs: List[str] = []
        for character in self.characters:
            refs.extend(character.image_refs())
        for product in self.products:
            refs.extend(product.image_refs())
        refs.extend(g.concept_image for g in self.groups if g.concept_image)
        refs.extend(s.generated_image for s in self.scenes if s.generated_image)
        return refs


def _enum_safe_dict(items) -> Dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in items}
