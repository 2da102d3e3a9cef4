"""
Storyframe Constants

Style presets, cinematography options and prompt vocabulary shared by the
prompt assembler and the generation orchestrator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


# =============================================================================
# STYLE PRESETS
# =============================================================================

@dataclass(frozen=True)
class StylePreset:
    """A named global look injected as the authoritative style line."""
    value: str
    label: str
    prompt: str


GLOBAL_STYLES: Tuple[StylePreset, ...] = (
    StylePreset(
        "cinematic-realistic", "Cinematic Realistic",
        "Cinematic movie screengrab, shot on Arri Alexa, photorealistic, 8k, highly detailed texture, "
        "dramatic lighting, shallow depth of field, color graded, film grain."
    ),
    StylePreset(
        "3d-pixar", "3D Animation (Pixar/Disney)",
        "3D render style, Pixar animation style, octane render, unreal engine 5, cute, vibrant lighting, "
        "soft smooth textures, expressive, volumetric lighting, masterpiece."
    ),
    StylePreset(
        "anime-makoto", "Anime (Makoto Shinkai Style)",
        "Anime style, Makoto Shinkai art style, high quality 2D animation, beautiful sky, detailed background, "
        "vibrant colors, emotional atmosphere, cell shading."
    ),
    StylePreset(
        "vintage-film", "Vintage 1980s Film",
        "1980s vintage movie look, film grain, retro aesthetic, warm tones, soft focus, kodak portra 400, "
        "nostalgia atmosphere."
    ),
    StylePreset(
        "cyberpunk", "Cyberpunk / Sci-Fi",
        "Cyberpunk aesthetic, neon lighting, dark atmosphere, futuristic, high contrast, wet streets, "
        "technological details, blade runner style."
    ),
    StylePreset(
        "watercolor", "Watercolor / Artistic",
        "Watercolor painting style, soft edges, artistic, painterly, dreamy atmosphere, paper texture, pastel colors."
    ),
    StylePreset(
        "dark-fantasy", "Dark Fantasy (Game Style)",
        "Dark fantasy art, elden ring style, gritty, atmospheric, ominous lighting, detailed armor and textures, "
        "epic scale, oil painting aesthetic."
    ),
)

# Presets that get the anti-illustration negative constraint
REALISTIC_STYLE_IDS = frozenset({"cinematic-realistic", "vintage-film"})

REALISM_NEGATIVE = (
    "!!! STRICT NEGATIVE: NO ANIME, NO CARTOON, NO 2D, NO DRAWING, "
    "NO ILLUSTRATION, NO PAINTING, NO CGI-LOOK !!!"
)


def get_style_preset(value: Optional[str]) -> Optional[StylePreset]:
    """Look up a style preset by id. Returns None for custom styles."""
    if not value:
        return None
    for preset in GLOBAL_STYLES:
        if preset.value == value:
            return preset
    return None


# =============================================================================
# CINEMATOGRAPHY
# =============================================================================

CAMERA_MODELS: Dict[str, str] = {
    "arri-alexa-35": "Shot on ARRI Alexa 35, rich cinematic colors, natural skin tones, wide dynamic range",
    "red-v-raptor": "Shot on RED V-Raptor 8K, high contrast, razor sharp details, vivid colors",
    "sony-venice-2": "Shot on Sony Venice 2, natural color science, beautiful skin tones, filmic look",
    "blackmagic-ursa": "Shot on Blackmagic URSA, organic film-like texture, Blackmagic color science",
    "canon-c70": "Shot on Canon C70, documentary style, natural colors, versatile look",
    "panasonic-s1h": "Shot on Panasonic S1H, natural tones, subtle film grain, professional video look",
}

LENS_OPTIONS: Dict[str, str] = {
    "16mm": "16mm ultra wide angle lens, expansive field of view, dramatic perspective",
    "24mm": "24mm wide angle lens, environmental context, slight distortion",
    "35mm": "35mm lens, natural perspective, slight wide angle",
    "50mm": "50mm lens, natural human perspective, minimal distortion",
    "85mm": "85mm portrait lens, shallow depth of field, beautiful bokeh, flattering compression",
    "135mm": "135mm telephoto lens, compressed background, intimate feel, creamy bokeh",
    "200mm": "200mm telephoto lens, extreme background compression, voyeuristic feel",
    "anamorphic": "anamorphic lens, horizontal lens flares, oval bokeh, cinematic widescreen 2.39:1 aspect ratio",
    "macro": "macro lens, extreme close-up, sharp details, shallow depth of field",
}

CAMERA_ANGLES: Dict[str, str] = {
    "wide-shot": "Wide Shot (WS)",
    "medium-shot": "Medium Shot (MS)",
    "close-up": "Close-Up (CU)",
    "extreme-cu": "Extreme Close-Up (ECU)",
    "ots": "Over-the-Shoulder (OTS)",
    "low-angle": "Low Angle (Hero Shot)",
    "high-angle": "High Angle (Vulnerable)",
    "dutch-angle": "Dutch Angle (Tension)",
    "pov": "POV (First Person)",
    "establishing": "Establishing Shot",
    "two-shot": "Two Shot",
    "insert": "Insert / Detail Shot",
}


class MetaCategory(Enum):
    """Production category used to pick default style tokens."""
    FILM = "film"
    DOCUMENTARY = "documentary"
    COMMERCIAL = "commercial"
    MUSIC_VIDEO = "music-video"
    CUSTOM = "custom"


DEFAULT_META_TOKENS: Dict[MetaCategory, str] = {
    MetaCategory.FILM: "cinematic lighting, depth of field, film grain, anamorphic lens flare, color graded, atmospheric haze",
    MetaCategory.DOCUMENTARY: "natural light, handheld camera feel, raw authentic look, observational style, candid moments",
    MetaCategory.COMMERCIAL: "product hero lighting, clean studio aesthetics, vibrant colors, high production value, aspirational mood",
    MetaCategory.MUSIC_VIDEO: "dramatic lighting, high contrast, stylized color palette, dynamic angles, music video aesthetic",
    MetaCategory.CUSTOM: "professional photography, detailed textures, balanced composition, thoughtful lighting",
}


# =============================================================================
# PROMPT VOCABULARY
# =============================================================================

# Markers that exclude a generated scene from the continuity cascade
UNFIXABLE_MARKERS: Tuple[str, ...] = ("UNFIXABLE", "DOP Skip")

DOP_SKIP_PREFIX = "DOP Skip"

NO_PEOPLE_DIRECTIVE = (
    "STRICT NEGATIVE: NO PEOPLE, NO CHARACTERS, NO HUMANS, NO FACES, NO BODY PARTS. "
    "EXPLICITLY REMOVE ALL HUMAN ELEMENTS. FOCUS ONLY ON {focus}."
)

OUTFIT_LOCK_DIRECTIVE = "(STRICT OUTFIT LOCK: Use EXACT clothes/colors from reference images.)"

CONTINUITY_DIRECTIVE = "CAMERA PERSPECTIVE SHIFT: Only change the camera angle. Everything else is LOCKED."

ACTION_ENERGY_SUFFIX = "(Ensure high dynamic energy, motion blur if applicable, realistic physics)."

DEFAULT_SUGGESTED_KEYWORDS: Tuple[str, ...] = ("cinematic", "detailed", "professional")

# Quality/style vocabulary the prompt learning store tracks
LEARNABLE_STYLE_KEYWORDS: Tuple[str, ...] = (
    "full body", "white background", "studio", "cinematic", "realistic",
    "8k", "4k", "detailed", "sharp", "professional", "lighting",
    "portrait", "landscape", "ultra", "high quality", "masterpiece",
    "anime", "cartoon", "pixar", "illustration", "photorealistic",
    "soft lighting", "golden hour", "dramatic", "vibrant", "moody",
)

# Aspect ratio to pixel size for OpenAI-compatible image endpoints
ASPECT_RATIO_SIZES: Dict[str, str] = {
    "1:1": "1024x1024",
    "16:9": "1280x720",
    "9:16": "720x1280",
    "4:3": "1216x896",
    "3:4": "896x1216",
}

# Aspect ratio to Fal.ai image_size presets
FAL_IMAGE_SIZES: Dict[str, str] = {
    "16:9": "landscape_16_9",
    "9:16": "portrait_16_9",
    "1:1": "square",
    "4:3": "landscape_4_3",
    "3:4": "portrait_4_3",
    "21:9": "landscape_21_9",
    "9:21": "portrait_21_9",
}
