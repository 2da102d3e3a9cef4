"""
Storyframe Storyboard Module

Continuity resolution, prompt assembly, per-scene generation and batch runs.
"""

from storyframe.storyboard.batch import BatchController, BatchReport
from storyframe.storyboard.continuity import (
    Anchor,
    AnchorKind,
    ContinuityAnchors,
    ContinuityResolver,
)
from storyframe.storyboard.learning import PromptLearningSink, PromptLearningStore
from storyframe.storyboard.orchestrator import GenerationLock, GenerationOrchestrator
from storyframe.storyboard.prompt_assembler import AssembledPrompt, PromptAssembler

__all__ = [
    "Anchor",
    "AnchorKind",
    "AssembledPrompt",
    "BatchController",
    "BatchReport",
    "ContinuityAnchors",
    "ContinuityResolver",
    "GenerationLock",
    "GenerationOrchestrator",
    "PromptAssembler",
    "PromptLearningSink",
    "PromptLearningStore",
]
