from __future__ import annotations
"""Prompt templates for the studio features."""

VIDEO_DIRECTIVE = (
    "CRITICAL PRODUCTION DIRECTIVE:\n"
    "THE RESULTING VIDEO MUST BE EXACTLY 5 SECONDS LONG.\n"
    "Style: {style}.\n"
    "Subject: {subject}."
)

LOGO_DIRECTIVE = (
    "STRICT LOGO INTEGRITY DIRECTIVE:\n"
    "- THE PROVIDED IMAGE IS THE LOGO. IT IS SACRED.\n"
    "- USE THE LOGO EXACTLY AS IT APPEARS. DO NOT REDESIGN, RECOLOR, OR DISTORT ITS FORM.\n"
    "- THE TASK IS A CINEMATIC REVEAL ANIMATION FOR THIS SPECIFIC LOGO.\n"
    "- DURATION: EXACTLY 5 SECONDS.\n"
    "- NICHE: {niche}.\n"
    "- DIRECTION: {direction}"
)

VIDEO_REMEDY_DIRECTIVE = (
    "CINEMATIC REMEDY TASK: {prompt}. "
    "Reconstruct sequence with full visual integrity, removing unwanted elements."
)

MONTAGE_ANALYSIS = (
    "Analyze these video clips and identify cinematic highlights. Return a list of "
    "segments with start_timestamp, end_timestamp, and visual_description in JSON format."
)

MONTAGE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "start_timestamp": {"type": "STRING"},
            "end_timestamp": {"type": "STRING"},
            "visual_description": {"type": "STRING"},
        },
        "propertyOrdering": ["start_timestamp", "end_timestamp", "visual_description"],
    },
}


def video_prompt(subject: str, style: str) -> str:
    return VIDEO_DIRECTIVE.format(style=style, subject=subject.strip())


def logo_prompt(niche: str, direction: str = "") -> str:
    return LOGO_DIRECTIVE.format(niche=niche, direction=direction)


def image_instruction(mode: str, prompt: str | None = None) -> str:
    """Instruction for the image model; ``remedy`` removes, ``auto`` polishes."""
    if mode == "remedy":
        return (
            "Task: Remove watermark/logo/unwanted objects as specified. "
            f"Directive: {prompt or 'clean removal'}. Return the edited image."
        )
    return (
        "Task: Auto-enhance, sharpen, and clear the image. "
        f"Directive: {prompt or 'professional polish'}. Return the edited image."
    )


def video_remedy_prompt(prompt: str) -> str:
    return VIDEO_REMEDY_DIRECTIVE.format(prompt=prompt)
