"""
Prompt Assembler

Builds the layered instruction and the ordered reference images for one
scene generation.

Instruction order:
    style > shot scale > core action > location anchor > characters >
    scene visuals > style tokens > camera/lens > refinement

Reference order:
    continuity anchors > character identity views > product views

When a backend accepts fewer references than are available, images are kept
by importance (master anchor, face, body, shot continuity, product primary,
other views) and the survivors are emitted in the canonical order above.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from storyframe.core.constants import (
    ACTION_ENERGY_SUFFIX,
    CAMERA_ANGLES,
    CAMERA_MODELS,
    CONTINUITY_DIRECTIVE,
    DEFAULT_META_TOKENS,
    LENS_OPTIONS,
    NO_PEOPLE_DIRECTIVE,
    OUTFIT_LOCK_DIRECTIVE,
    REALISM_NEGATIVE,
    REALISTIC_STYLE_IDS,
    get_style_preset,
)
from storyframe.core.logging_config import get_logger
from storyframe.core.models import (
    Character,
    Product,
    ReferenceKind,
    ReferencePart,
    Scene,
    SceneGroup,
    Storyboard,
)
from storyframe.core.reference_store import ReferenceStore
from storyframe.providers.base import ProviderCapabilities
from storyframe.storyboard.continuity import AnchorKind, ContinuityAnchors
from storyframe.storyboard.learning import PromptLearningSink

logger = get_logger("storyboard.prompt_assembler")

CUSTOM_STYLE = "custom"

TIMESTAMP_PATTERN = re.compile(r"\[\d{2}:\d{2}-\d{2}:\d{2}\]")
SFX_PATTERN = re.compile(r"SFX:.*?(\.|$)", re.IGNORECASE | re.MULTILINE)
EMOTION_PATTERN = re.compile(r"Emotion:.*?(\.|$)", re.IGNORECASE | re.MULTILINE)
META_NOTE_PATTERN = re.compile(
    r"Referencing environment from.*?(consistency|logic|group|refgroup)\.?", re.IGNORECASE
)

# Importance tiers for truncation (lower survives first)
TIER_MASTER = 0
TIER_FACE = 1
TIER_BODY = 2
TIER_SHOT = 3
TIER_PRODUCT_PRIMARY = 4
TIER_OTHER_VIEW = 5


# =============================================================================
# TEXT CLEANING
# =============================================================================

def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def clean_description(text: Optional[str]) -> str:
    """Strip timestamps, SFX/Emotion clauses and authoring meta notes."""
    if not text:
        return ""
    text = META_NOTE_PATTERN.sub("", text)
    text = TIMESTAMP_PATTERN.sub("", text)
    text = SFX_PATTERN.sub("", text)
    text = EMOTION_PATTERN.sub("", text)
    return collapse_whitespace(text)


def scrub_names(text: Optional[str], unselected: Iterable[str], selected: Iterable[str] = ()) -> str:
    """
    Remove whole-word, case-insensitive mentions of unselected characters.

    Multi-word names are removed whole first, then word by word, so "Alice"
    and "Brown" do not survive on their own. A name or name word that is part
    of a selected character's name ("Ann" vs "Ann Lee") is left alone so the
    selected name survives intact.
    """
    if not text:
        return ""
    selected = [s for s in selected if s]
    for name in unselected:
        if not name or not name.strip():
            continue
        words = name.split()
        variants = [name] + (words if len(words) > 1 else [])
        for variant in variants:
            if len(variant) < 2:
                continue
            pattern = re.compile(rf"\b{re.escape(variant)}\b", re.IGNORECASE)
            if any(pattern.search(s) for s in selected):
                continue
            text = pattern.sub("", text)
    return collapse_whitespace(text)


def extract_core_action(text: str) -> str:
    """Text after the last ``->``, else the whole description."""
    if "->" in text:
        return text.split("->")[-1].strip()
    return text


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class AssembledPrompt:
    """Final instruction plus the labelled references that survived truncation."""
    prompt: str
    parts: List[ReferencePart] = field(default_factory=list)
    dropped_references: int = 0
    unresolved_references: int = 0


@dataclass
class _Candidate:
    order: int
    tier: int
    kind: ReferenceKind
    ref: str
    instruction: str
    follow_note: str = ""


class PromptAssembler:
    """
    Assembles prompts and reference images for scene generation.

    Usage:
        assembler = PromptAssembler(reference_store)
        assembled = await assembler.assemble(storyboard, scene, anchors, capabilities)
    """

    def __init__(self, reference_store: ReferenceStore, learning_sink: Optional[PromptLearningSink] = None):
        self.reference_store = reference_store
        self.learning_sink = learning_sink

    async def assemble(
        self,
        storyboard: Storyboard,
        scene: Scene,
        anchors: ContinuityAnchors,
        capabilities: ProviderCapabilities,
        refinement: Optional[str] = None
    ) -> AssembledPrompt:
        """
        Build the instruction and reference list for a scene.

        Args:
            storyboard: Project snapshot (characters, products, groups, style)
            scene: Target scene
            anchors: Continuity anchors from the resolver
            capabilities: Destination backend's reference limits
            refinement: Optional extra instruction (user or correction prompt)

        Returns:
            AssembledPrompt
        """
        selected_chars = [c for c in (storyboard.get_character(cid) for cid in scene.character_ids) if c]
        selected_products = [p for p in (storyboard.get_product(pid) for pid in scene.product_ids) if p]
        selected_names = [c.name for c in selected_chars]
        unselected_names = [c.name for c in storyboard.characters if c.id not in scene.character_ids]

        def scrub(text: Optional[str]) -> str:
            return scrub_names(text, unselected_names, selected_names)

        group = storyboard.get_group(scene.group_id)

        parts: List[ReferencePart] = []
        follow_notes: List[str] = []
        dropped = unresolved = 0
        if capabilities.supports_references and capabilities.max_references > 0:
            candidates = self._collect_candidates(anchors, selected_chars, selected_products, scrub)
            parts, follow_notes, dropped, unresolved = await self._resolve_and_truncate(
                candidates, capabilities.max_references
            )

        cleaned = scrub(clean_description(scene.description))
        keywords = await self._suggested_keywords(cleaned, self._negative_style(storyboard, group))

        segments = [
            self._style_segment(storyboard, group),
            self._scale_segment(scene),
            f"CORE ACTION: {extract_core_action(cleaned).upper()}. {ACTION_ENERGY_SUFFIX}",
            self._location_segment(group, follow_notes, scrub),
            self._character_segment(storyboard, selected_chars, cleaned, scrub),
            f"FULL SCENE VISUALS: {cleaned}." if cleaned else "",
            self._style_tokens_segment(storyboard, keywords, scrub),
            self._technical_segment(storyboard, scene),
        ]
        refinement_text = scrub(refinement)
        if refinement_text:
            segments.append(f"REFINEMENT: {refinement_text}.")

        prompt = collapse_whitespace(" ".join(s for s in segments if s))
        logger.debug(
            f"Scene {scene.id}: prompt {len(prompt)} chars, {len(parts)} references "
            f"({dropped} dropped, {unresolved} unresolved)"
        )
        return AssembledPrompt(prompt=prompt, parts=parts, dropped_references=dropped,
                               unresolved_references=unresolved)

    def build_concept_prompt(self, storyboard: Storyboard, group: SceneGroup) -> str:
        """People-free establishing image of a group's location, used as its moodboard."""
        roster = [c.name for c in storyboard.characters]

        def scrub(text: Optional[str]) -> str:
            return scrub_names(text, roster)

        focus = scrub(group.description) or scrub(group.name) or "ENVIRONMENT"
        segments = [
            self._style_segment(storyboard, group),
            "ESTABLISHING SHOT, ENVIRONMENT CONCEPT.",
            self._location_segment(group, [], scrub),
            NO_PEOPLE_DIRECTIVE.format(focus=focus.upper()),
            self._style_tokens_segment(storyboard, [], scrub),
            self._technical_segment(storyboard, Scene(id=f"concept-{group.id}", sequence_number=0)),
        ]
        return collapse_whitespace(" ".join(s for s in segments if s))

    # -------------------------------------------------------------------------
    # Instruction segments
    # -------------------------------------------------------------------------

    @staticmethod
    def _style_id(storyboard: Storyboard, group: Optional[SceneGroup]) -> str:
        style = storyboard.style
        return (group.style_override if group and group.style_override else style.style_preset) or CUSTOM_STYLE

    def _negative_style(self, storyboard: Storyboard, group: Optional[SceneGroup]) -> str:
        return REALISM_NEGATIVE if self._style_id(storyboard, group) in REALISTIC_STYLE_IDS else ""

    def _style_segment(self, storyboard: Storyboard, group: Optional[SceneGroup]) -> str:
        style = storyboard.style
        style_id = self._style_id(storyboard, group)

        preset = get_style_preset(style_id)
        instruction = preset.prompt if preset else (style.custom_style or "")
        negative = self._negative_style(storyboard, group)

        if not instruction:
            return negative
        return f"AUTHORITATIVE STYLE: {instruction.rstrip('.').upper()}. {negative}".strip()

    @staticmethod
    def _angle_label(scene: Scene) -> str:
        if not scene.camera_angle:
            return ""
        return CAMERA_ANGLES.get(scene.camera_angle, scene.camera_angle)

    def _scale_segment(self, scene: Scene) -> str:
        angle = self._angle_label(scene)
        return f"SHOT SCALE: {angle.upper()}." if angle else "CINEMATIC WIDE SHOT."

    def _location_segment(self, group: Optional[SceneGroup], follow_notes: Sequence[str], scrub) -> str:
        if group is None:
            return ""
        pieces = []
        description = scrub(group.description)
        if description:
            pieces.append(f"GLOBAL SETTING: {description.upper()}.")
        for label, value in (("LIGHTING", group.lighting), ("WEATHER", group.weather), ("TIME", group.time_of_day)):
            value = scrub(value)
            if value:
                pieces.append(f"{label}: {value}.")
        if follow_notes:
            pieces.append(f"{CONTINUITY_DIRECTIVE} {' '.join(follow_notes)}")
        return " ".join(pieces)

    def _character_segment(self, storyboard: Storyboard, characters: List[Character], cleaned: str, scrub) -> str:
        if not characters:
            return NO_PEOPLE_DIRECTIVE.format(focus=cleaned.upper() or "ENVIRONMENT")

        described = " ".join(f"[{c.name}: {scrub(c.description)}]" for c in characters)
        outfit = f" {OUTFIT_LOCK_DIRECTIVE}" if storyboard.style.strict_outfit_lock else ""
        return f"Appearing Characters: {described}{outfit}"

    def _style_tokens_segment(self, storyboard: Storyboard, keywords: List[str], scrub) -> str:
        style = storyboard.style
        tokens = style.meta_tokens or DEFAULT_META_TOKENS[style.meta_category]
        extra = [scrub(k) for k in keywords if k and k.lower() not in tokens.lower()]
        extra = [k for k in extra if k]
        if extra:
            tokens = f"{tokens}, {', '.join(extra)}"
        return f"STYLE DETAILS: {scrub(tokens)}."

    def _technical_segment(self, storyboard: Storyboard, scene: Scene) -> str:
        style = storyboard.style

        camera_id = scene.camera_model or style.camera_model
        camera = CAMERA_MODELS.get(camera_id, f"Shot on {camera_id}") if camera_id else ""

        lens_id = scene.lens or style.default_lens
        lens = LENS_OPTIONS.get(lens_id, lens_id) if lens_id else ""

        cinematography = ", ".join(p for p in (camera, lens, self._angle_label(scene)) if p)
        return f"TECHNICAL: (STRICT CAMERA: {cinematography or 'High Quality'})."

    async def _suggested_keywords(self, context: str, negative: str) -> List[str]:
        if self.learning_sink is None:
            return []
        keywords = await self.learning_sink.suggest_keywords(context)
        # A keyword the active style forbids ("NO ILLUSTRATION") is never added back
        return [
            k for k in keywords
            if k and not re.search(rf"\bNO {re.escape(k.upper())}\b", negative)
        ]

    # -------------------------------------------------------------------------
    # References
    # -------------------------------------------------------------------------

    def _collect_candidates(
        self,
        anchors: ContinuityAnchors,
        characters: List[Character],
        products: List[Product],
        scrub
    ) -> List[_Candidate]:
        candidates: List[_Candidate] = []

        def add(tier: int, kind: ReferenceKind, ref: Optional[str], instruction: str, note: str = "") -> None:
            if ref:
                candidates.append(_Candidate(len(candidates), tier, kind, ref, instruction, note))

        master = anchors.master
        if master is not None:
            if master.kind == AnchorKind.CONCEPT:
                add(TIER_MASTER, ReferenceKind.CONCEPT, master.image_ref,
                    "[MOODBOARD REFERENCE]: Match lighting, color palette, and architectural style.",
                    "(CONCEPT LOCK)")
            else:
                label = "SCENE_MASTER_LOCK (Set Anchor)"
                add(TIER_MASTER, ReferenceKind.SCENE_ANCHOR, master.image_ref,
                    f"[{label}]: AUTHORITATIVE STRICT BACKGROUND for the physical environment. "
                    "Match the architecture, props, weather, and lighting EXACTLY. This is a TIGHT SET LOCK. "
                    "IGNORE the action in this reference, only follow its GEOMETRY and LIGHTING.",
                    f"(STRICT SET LOCK: Follow {label})")

        for i, anchor in enumerate(anchors.shot_continuity):
            if anchor.kind == AnchorKind.START_FRAME:
                label = "SHOT_START_FRAME (Opening of this shot)"
                instruction = (f"[{label}]: This is the first frame of the same shot. Keep identity, clothing, "
                               "set and lighting identical and show where the action ends.")
            else:
                label = f"SHOT_CONTINUITY_{i + 1} ({'Last Shot' if i == 0 else 'Previous Shot'})"
                instruction = (f"[{label}]: Match character clothing, hair state, and immediate action from this "
                               "previous shot. Note: This shot is a PERSPECTIVE SHIFT from the Master Lock.")
            add(TIER_SHOT, ReferenceKind.SHOT_CONTINUITY, anchor.image_ref, instruction,
                f"(SHOT CONTINUITY: Follow {label})")

        for char in characters:
            views = [
                (TIER_FACE, ReferenceKind.CHARACTER_FACE, "FACE ID", char.face_image),
                (TIER_BODY, ReferenceKind.CHARACTER_VIEW, "FULL BODY", char.body_image),
                (TIER_OTHER_VIEW, ReferenceKind.CHARACTER_VIEW, "SIDE VIEW", char.side_image),
                (TIER_OTHER_VIEW, ReferenceKind.CHARACTER_VIEW, "BACK VIEW", char.back_image),
            ]
            views = [v for v in views if v[3]]
            if not views and char.master_image:
                views = [(TIER_FACE, ReferenceKind.CHARACTER_FACE, "PRIMARY", char.master_image)]
            for tier, kind, view, ref in views:
                add(tier, kind, ref,
                    f"[MASTER VISUAL: {char.name.upper()} {view}]: AUTHORITATIVE identity anchor for {char.name}. "
                    "Match these exact face features. For clothing and pose, defer to SCENE_MASTER_LOCK if present. "
                    f"Description: {scrub(char.description)}")

        for prod in products:
            views = [
                (TIER_PRODUCT_PRIMARY, ReferenceKind.PRODUCT_PRIMARY, "FRONT VIEW", prod.front_image),
                (TIER_OTHER_VIEW, ReferenceKind.PRODUCT_VIEW, "SIDE VIEW", prod.left_image or prod.right_image),
                (TIER_OTHER_VIEW, ReferenceKind.PRODUCT_VIEW, "BACK VIEW", prod.back_image),
                (TIER_OTHER_VIEW, ReferenceKind.PRODUCT_VIEW, "TOP VIEW", prod.top_image),
            ]
            views = [v for v in views if v[3]]
            if not views and prod.master_image:
                views = [(TIER_PRODUCT_PRIMARY, ReferenceKind.PRODUCT_PRIMARY, "PRIMARY", prod.master_image)]
            for tier, kind, view, ref in views:
                add(tier, kind, ref,
                    f"[MASTER VISUAL: {prod.name.upper()} {view}]: AUTHORITATIVE visual anchor for {prod.name}. "
                    "Match the design, colors, and branding from this image exactly.")

        return candidates

    async def _resolve_and_truncate(self, candidates: List[_Candidate], max_references: int):
        images = await asyncio.gather(*(self.reference_store.resolve(c.ref) for c in candidates))
        resolved = [(c, img) for c, img in zip(candidates, images) if img is not None]
        unresolved = len(candidates) - len(resolved)
        if unresolved:
            logger.warning(f"{unresolved} reference image(s) could not be resolved and were omitted")

        kept = sorted(resolved, key=lambda pair: (pair[0].tier, pair[0].order))[:max_references]
        dropped = len(resolved) - len(kept)
        if dropped:
            logger.info(f"Backend accepts {max_references} references; dropped {dropped} lower-priority image(s)")

        kept.sort(key=lambda pair: pair[0].order)
        parts = [ReferencePart(instruction=c.instruction, image=img, kind=c.kind, source=c.ref) for c, img in kept]
        notes = [c.follow_note for c, _ in kept if c.follow_note]
        return parts, notes, dropped, unresolved
