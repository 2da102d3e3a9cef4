"""
Continuity Resolver

Chooses the reference images that keep a scene consistent with the rest of
its group.

Master anchor cascade (first match wins):
1. Nearest key frame in the group by sequence distance (ties -> lower number)
2. Nearest generated scene before the target
3. Nearest generated scene after the target
4. The group's concept/moodboard image

Shot-continuity anchors are the most recent generated predecessors (up to
two), never repeating the master anchor scene. Scenes whose recorded error
marks them unfixable are invisible to both.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from storyframe.core.logging_config import get_logger
from storyframe.core.models import Scene, Storyboard

logger = get_logger("storyboard.continuity")


class AnchorKind(Enum):
    """How an anchor was selected."""
    KEY_FRAME = "key_frame"
    PREDECESSOR = "predecessor"
    SUCCESSOR = "successor"
    CONCEPT = "concept"
    START_FRAME = "start_frame"


@dataclass
class Anchor:
    """A reference image chosen for continuity."""
    kind: AnchorKind
    image_ref: str
    scene_id: Optional[str] = None
    sequence_number: Optional[int] = None


@dataclass
class ContinuityAnchors:
    """Master anchor plus shot-continuity anchors for one scene."""
    master: Optional[Anchor] = None
    shot_continuity: List[Anchor] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.master is None and not self.shot_continuity

    def validation_reference(self) -> Optional[Anchor]:
        """Image a new generation should be checked against: nearest predecessor, else the master scene."""
        if self.shot_continuity:
            return self.shot_continuity[0]
        if self.master is not None and self.master.kind != AnchorKind.CONCEPT:
            return self.master
        return None


class ContinuityResolver:
    """Resolves continuity anchors from a storyboard snapshot."""

    def __init__(self, max_shot_anchors: int = 2):
        self.max_shot_anchors = max_shot_anchors

    def candidates(self, storyboard: Storyboard, scene: Scene) -> List[Scene]:
        """Other usable generated scenes in the same group, in sequence order."""
        if not scene.group_id:
            return []
        return [
            s for s in storyboard.scenes_in_group(scene.group_id)
            if s.id != scene.id and s.generated_image and not s.is_unfixable
        ]

    def resolve_master(self, storyboard: Storyboard, scene: Scene) -> Optional[Anchor]:
        """Pick the master anchor via the key frame > before > after > concept cascade."""
        if not scene.group_id:
            return None

        candidates = self.candidates(storyboard, scene)
        target = scene.sequence_number

        key_frames = [s for s in candidates if s.is_key_frame]
        if key_frames:
            best = min(key_frames, key=lambda s: (abs(s.sequence_number - target), s.sequence_number))
            return self._scene_anchor(AnchorKind.KEY_FRAME, best)

        before = [s for s in candidates if s.sequence_number < target]
        if before:
            best = max(before, key=lambda s: s.sequence_number)
            return self._scene_anchor(AnchorKind.PREDECESSOR, best)

        after = [s for s in candidates if s.sequence_number > target]
        if after:
            best = min(after, key=lambda s: s.sequence_number)
            return self._scene_anchor(AnchorKind.SUCCESSOR, best)

        group = storyboard.get_group(scene.group_id)
        if group is not None and group.concept_image:
            logger.debug(f"Scene {scene.id}: using concept image of group {group.id}")
            return Anchor(kind=AnchorKind.CONCEPT, image_ref=group.concept_image)

        return None

    def resolve(self, storyboard: Storyboard, scene: Scene, for_end_frame: bool = False) -> ContinuityAnchors:
        """
        Resolve all anchors for a scene.

        Args:
            storyboard: Current project snapshot
            scene: Scene about to be generated
            for_end_frame: Prepend the scene's own start frame as the closest continuity anchor

        Returns:
            ContinuityAnchors (empty for scenes without a group)
        """
        anchors = ContinuityAnchors()
        if for_end_frame and scene.generated_image:
            anchors.shot_continuity.append(
                Anchor(AnchorKind.START_FRAME, scene.generated_image, scene.id, scene.sequence_number)
            )

        if not scene.group_id:
            return anchors

        anchors.master = self.resolve_master(storyboard, scene)
        master_scene_id = anchors.master.scene_id if anchors.master else None

        predecessors = sorted(
            (s for s in self.candidates(storyboard, scene)
             if s.sequence_number < scene.sequence_number and s.id != master_scene_id),
            key=lambda s: s.sequence_number,
            reverse=True,
        )
        for prev in predecessors:
            if len(anchors.shot_continuity) >= self.max_shot_anchors:
                break
            anchors.shot_continuity.append(self._scene_anchor(AnchorKind.PREDECESSOR, prev))

        logger.debug(
            f"Scene {scene.id}: master={master_scene_id or (anchors.master.kind.value if anchors.master else None)}, "
            f"shot anchors={[a.scene_id for a in anchors.shot_continuity]}"
        )
        return anchors

    @staticmethod
    def _scene_anchor(kind: AnchorKind, scene: Scene) -> Anchor:
        return Anchor(kind=kind, image_ref=scene.generated_image, scene_id=scene.id,
                      sequence_number=scene.sequence_number)
