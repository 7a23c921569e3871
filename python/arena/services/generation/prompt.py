"""Prompt building shared by every backend.

System Prompt (fixed):
    You are an expert frontend engineer. Return only one complete HTML document
    with embedded CSS and JS. No markdown fences, no explanations.

User prompt structure:
- Design prompt (optionally followed by a delimited user skill block)
- Baseline HTML fenced as input context, when a baseline is supplied
"""

PROMPT_VERSION = "v1"

SYSTEM_PROMPT = (
    "You are an expert frontend engineer. Return only one complete HTML document "
    "with embedded CSS and JS. No markdown fences, no explanations."
)

SHARED_PROMPT = (
    "Improve the design of this landing page while preserving all original content and "
    "section structure. Make it responsive, visually polished, and production-ready. "
    "Use strong typography, spacing, hierarchy, and modern layout patterns. Do not remove "
    "sections or alter product claims. Return a complete single HTML file including CSS "
    "and JS where needed."
)

# Maximum skill addendum size in characters
MAX_SKILL_CONTENT_CHARS = 20_000

SKILL_BEGIN_MARKER = "--- BEGIN USER SKILL ---"
SKILL_END_MARKER = "--- END USER SKILL ---"


class SkillTooLargeError(Exception):
    """Raised when a skill addendum exceeds MAX_SKILL_CONTENT_CHARS."""

    def __init__(self, actual_size: int, max_size: int = MAX_SKILL_CONTENT_CHARS):
        self.actual_size = actual_size
        self.max_size = max_size
        super().__init__(f"Skill size {actual_size} exceeds max {max_size}")


def build_prompt_with_skill(prompt: str, skill_content: str | None = None) -> str:
    """Append a delimited user skill block to the design prompt.

    Args:
        prompt: Base design prompt.
        skill_content: Optional user-provided design guidance.

    Returns:
        The prompt unchanged when the skill is blank, otherwise the prompt
        followed by the trimmed skill between BEGIN/END markers.

    Raises:
        SkillTooLargeError: If the trimmed skill exceeds MAX_SKILL_CONTENT_CHARS.
    """
    skill = (skill_content or "").strip()
    if not skill:
        return prompt
    if len(skill) > MAX_SKILL_CONTENT_CHARS:
        raise SkillTooLargeError(len(skill))

    return "\n".join(
        [
            prompt,
            "",
            "Additional user-provided design skill (follow it unless it conflicts with the "
            "requirements above):",
            SKILL_BEGIN_MARKER,
            skill,
            SKILL_END_MARKER,
        ]
    )


def build_user_prompt(prompt: str, baseline_html: str) -> str:
    """Render the user turn: prompt plus fenced baseline HTML context."""
    if not baseline_html.strip():
        return prompt

    return "\n".join(
        [
            prompt,
            "",
            "Use this baseline HTML as input context:",
            "```html",
            baseline_html,
            "```",
        ]
    )
