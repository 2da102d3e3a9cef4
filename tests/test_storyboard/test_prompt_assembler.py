"""
Tests for Prompt Assembler

Tests for storyframe/storyboard/prompt_assembler.py
"""

import pytest

from storyframe.core.models import ReferenceKind
from storyframe.core.reference_store import ReferenceStore
from storyframe.providers.base import ProviderCapabilities
from storyframe.providers.router import NO_REFERENCES
from storyframe.storyboard.continuity import ContinuityResolver
from storyframe.storyboard.prompt_assembler import (
    PromptAssembler,
    clean_description,
    extract_core_action,
    scrub_names,
)


FULL = ProviderCapabilities(max_references=14)


class FixedKeywords:
    """Learning sink suggesting fixed keywords."""

    def __init__(self, keywords):
        self.keywords = keywords
        self.contexts = []

    async def suggest_keywords(self, context, limit=5):
        self.contexts.append(context)
        return self.keywords

    async def record_outcome(self, scene_id, prompt, model_id, approved, score=None):
        pass


async def assemble(storyboard, scene_id, capabilities=FULL, refinement=None, learning_sink=None):
    scene = storyboard.get_scene(scene_id)
    anchors = ContinuityResolver().resolve(storyboard, scene)
    assembler = PromptAssembler(ReferenceStore(), learning_sink=learning_sink)
    return await assembler.assemble(storyboard, scene, anchors, capabilities, refinement)


class TestTextHelpers:
    """Tests for description cleanup and name scrubbing."""

    def test_clean_description(self):
        text = "[00:01-00:04] Hero runs. SFX: thunder crack. Emotion: dread."
        assert clean_description(text) == "Hero runs."

    def test_meta_note_removed(self):
        text = "Referencing environment from Rooftop group. Hero waits."
        assert clean_description(text) == "Hero waits."

    def test_core_action(self):
        assert extract_core_action("Wide on the pier -> Hero dives into the water") == "Hero dives into the water"
        assert extract_core_action("Hero waits") == "Hero waits"

    def test_scrub_is_word_bounded(self):
        assert scrub_names("Annabel greets Ann at the door", ["Ann"]) == "Annabel greets at the door"

    def test_scrub_is_case_insensitive(self):
        assert scrub_names("BOB and bob", ["Bob"]) == "and"

    def test_scrub_keeps_selected_superstring(self):
        assert scrub_names("Ann Lee waves", ["Ann"], ["Ann Lee"]) == "Ann Lee waves"

    def test_scrub_removes_each_word_of_full_name(self):
        assert scrub_names("Alice waves at Brown", ["Alice Brown"]) == "waves at"

    def test_scrub_word_shared_with_selected_name_kept(self):
        assert scrub_names("Bob Lee meets Ann Lee", ["Bob Lee"], ["Ann Lee"]) == "meets Ann Lee"


class TestCharacterExclusion:
    """Tests for who may appear in the prompt."""

    @pytest.mark.asyncio
    async def test_no_characters_means_no_people(self, sample_storyboard):
        scene = sample_storyboard.get_scene("s1")
        scene.character_ids = []
        scene.description = "Alice Brown and Bob argue beside the water tower"

        assembled = await assemble(sample_storyboard, "s1")
        prompt = assembled.prompt.lower()

        assert "alice" not in prompt
        assert "bob" not in prompt
        assert "no people" in prompt
        assert all(p.kind not in (ReferenceKind.CHARACTER_FACE, ReferenceKind.CHARACTER_VIEW)
                   for p in assembled.parts)

    @pytest.mark.asyncio
    async def test_selected_names_kept_unselected_removed(self, sample_storyboard):
        sample_storyboard.get_scene("s1").description = "Alice Brown hands Bob the watch"

        assembled = await assemble(sample_storyboard, "s1")

        assert "Alice Brown" in assembled.prompt
        assert "red trench coat" in assembled.prompt
        assert "bob" not in assembled.prompt.lower()
        assert "no people" not in assembled.prompt.lower()

    @pytest.mark.asyncio
    async def test_unselected_names_removed_from_refinement(self, sample_storyboard):
        assembled = await assemble(sample_storyboard, "s1", refinement="Bob should not be visible")
        assert "bob" not in assembled.prompt.lower()


class TestInstructionLayout:
    """Tests for segment order and content."""

    @pytest.mark.asyncio
    async def test_segment_order(self, sample_storyboard):
        sample_storyboard.get_scene("s1").generated_image = sample_storyboard.characters[1].face_image
        sample_storyboard.get_scene("s2").camera_angle = "close-up"
        sample_storyboard.style.camera_model = "arri-alexa-35"
        sample_storyboard.style.default_lens = "50mm"

        assembled = await assemble(sample_storyboard, "s2", refinement="make the rain heavier")
        prompt = assembled.prompt

        markers = [
            "AUTHORITATIVE STYLE:",
            "SHOT SCALE: CLOSE-UP (CU).",
            "CORE ACTION:",
            "GLOBAL SETTING: RAINY ROOFTOP ABOVE A NEON CITY.",
            "CAMERA PERSPECTIVE SHIFT",
            "Appearing Characters:",
            "FULL SCENE VISUALS:",
            "STYLE DETAILS:",
            "TECHNICAL: (STRICT CAMERA: Shot on ARRI Alexa 35",
            "REFINEMENT: make the rain heavier.",
        ]
        positions = [prompt.index(m) for m in markers]
        assert positions == sorted(positions)
        assert prompt.endswith("REFINEMENT: make the rain heavier.")

    @pytest.mark.asyncio
    async def test_wide_shot_and_default_technical(self, sample_storyboard):
        assembled = await assemble(sample_storyboard, "s1")

        assert "CINEMATIC WIDE SHOT." in assembled.prompt
        assert "TECHNICAL: (STRICT CAMERA: High Quality)." in assembled.prompt
        assert "NO ANIME" in assembled.prompt

    @pytest.mark.asyncio
    async def test_group_style_override(self, sample_storyboard):
        sample_storyboard.groups[0].style_override = "anime-makoto"

        assembled = await assemble(sample_storyboard, "s1")

        assert "NO ANIME" not in assembled.prompt

    @pytest.mark.asyncio
    async def test_suggested_keywords(self, sample_storyboard):
        sink = FixedKeywords(["volumetric fog"])

        assembled = await assemble(sample_storyboard, "s1", learning_sink=sink)

        assert "volumetric fog" in assembled.prompt
        assert len(sink.contexts) == 1

    @pytest.mark.asyncio
    async def test_keyword_forbidden_by_style_dropped(self, sample_storyboard):
        sink = FixedKeywords(["illustration", "moody"])

        assembled = await assemble(sample_storyboard, "s1", learning_sink=sink)
        details = assembled.prompt.split("STYLE DETAILS:")[1].split("TECHNICAL:")[0]

        assert "moody" in details
        assert "illustration" not in details.lower()

    @pytest.mark.asyncio
    async def test_no_continuity_directive_without_anchors(self, sample_storyboard):
        assembled = await assemble(sample_storyboard, "s1")
        assert "CAMERA PERSPECTIVE SHIFT" not in assembled.prompt


class TestReferences:
    """Tests for reference collection and truncation."""

    @pytest.mark.asyncio
    async def test_canonical_order(self, sample_storyboard, image_uri):
        sample_storyboard.get_scene("s1").generated_image = image_uri((1, 2, 3))
        sample_storyboard.get_scene("s2").generated_image = image_uri((4, 5, 6))
        scene = sample_storyboard.get_scene("s3")
        scene.product_ids = ["p1"]

        assembled = await assemble(sample_storyboard, "s3")

        kinds = [p.kind for p in assembled.parts]
        assert kinds == [
            ReferenceKind.SCENE_ANCHOR,
            ReferenceKind.SHOT_CONTINUITY,
            ReferenceKind.CHARACTER_FACE,
            ReferenceKind.CHARACTER_VIEW,
            ReferenceKind.PRODUCT_PRIMARY,
        ]
        assert assembled.parts[0].instruction.startswith("[SCENE_MASTER_LOCK")
        assert assembled.parts[1].instruction.startswith("[SHOT_CONTINUITY_1")
        assert "ALICE BROWN FACE ID" in assembled.parts[2].instruction
        assert "AURORA WATCH FRONT VIEW" in assembled.parts[4].instruction
        assert assembled.dropped_references == 0

    @pytest.mark.asyncio
    async def test_truncation_keeps_most_important(self, sample_storyboard, image_uri):
        sample_storyboard.get_scene("s1").generated_image = image_uri((1, 2, 3))
        sample_storyboard.get_scene("s2").generated_image = image_uri((4, 5, 6))
        sample_storyboard.get_scene("s3").product_ids = ["p1"]

        assembled = await assemble(sample_storyboard, "s3", capabilities=ProviderCapabilities(max_references=3))

        assert [p.kind for p in assembled.parts] == [
            ReferenceKind.SCENE_ANCHOR,
            ReferenceKind.CHARACTER_FACE,
            ReferenceKind.CHARACTER_VIEW,
        ]
        assert assembled.dropped_references == 2
        assert "SHOT CONTINUITY" not in assembled.prompt

    @pytest.mark.asyncio
    async def test_no_references_for_text_only_models(self, sample_storyboard, image_uri):
        sample_storyboard.get_scene("s1").generated_image = image_uri((1, 2, 3))

        assembled = await assemble(sample_storyboard, "s2", capabilities=NO_REFERENCES)

        assert assembled.parts == []
        assert "CAMERA PERSPECTIVE SHIFT" not in assembled.prompt

    @pytest.mark.asyncio
    async def test_unresolvable_reference_omitted(self, sample_storyboard):
        sample_storyboard.characters[0].body_image = "data:image/png;base64,"

        assembled = await assemble(sample_storyboard, "s1")

        assert assembled.unresolved_references == 1
        assert [p.kind for p in assembled.parts] == [ReferenceKind.CHARACTER_FACE]

    @pytest.mark.asyncio
    async def test_concept_moodboard(self, sample_storyboard, image_uri):
        sample_storyboard.groups[0].concept_image = image_uri((9, 9, 9))

        assembled = await assemble(sample_storyboard, "s1")

        assert assembled.parts[0].kind == ReferenceKind.CONCEPT
        assert assembled.parts[0].instruction.startswith("[MOODBOARD REFERENCE]")
        assert "(CONCEPT LOCK)" in assembled.prompt


class TestConceptPrompt:

    def test_people_free(self, sample_storyboard):
        group = sample_storyboard.groups[0]
        group.description = "Rooftop where Alice Brown waits for Bob"

        prompt = PromptAssembler(ReferenceStore()).build_concept_prompt(sample_storyboard, group)

        assert "alice" not in prompt.lower()
        assert "bob" not in prompt.lower()
        assert "NO PEOPLE" in prompt
        assert "ESTABLISHING SHOT" in prompt
