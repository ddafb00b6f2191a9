from __future__ import annotations

from typing import Tuple

from pydantic import BaseModel, ConfigDict


class ForbiddenConstruct(BaseModel):
    """A regex that must not match anywhere in the artifact."""

    model_config = ConfigDict(frozen=True)

    label: str
    pattern: str
    hint: str = ""


class ConstraintSet(BaseModel):
    """Structural and style rules a generated artifact has to satisfy.

    The loop treats this as opaque caller input and never mutates it.
    `rules` is free text handed to the generator verbatim; the remaining
    fields are what the structural validator can check mechanically.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "custom"
    rules: str = ""
    required_tags: Tuple[str, ...] = ()
    required_resources: Tuple[str, ...] = ()
    forbidden_constructs: Tuple[ForbiddenConstruct, ...] = ()
    icon_init_call: str = ""
    forbid_html_tag_classes: bool = False


TAILWIND_CDN = "https://cdn.tailwindcss.com"
LUCIDE_CDN = "https://unpkg.com/lucide@latest"


DIAGRAM_RULES = """\
1. OUTPUT FORMAT:
   - Only HTML with Tailwind CSS, in a single ```html code block
   - Inline styling only (Tailwind classes or the style attribute); no <style> tags
   - Always include a full document: html, head and body tags
   - Load the required scripts in the head

2. REQUIRED SCRIPTS:
   <script src="https://cdn.tailwindcss.com"></script>
   <script src="https://unpkg.com/lucide@latest"></script>

3. ICONS:
   - Lucide icons only, strokeWidth 1.5
   - Initialize with <script>lucide.createIcons();</script> at the end of body

4. DESIGN:
   - Modern, clean, minimalist; subtle 1px dividers and outlines
   - Avoid harsh pure black and pure white; keep contrast readable
   - Titles larger than 20px use tracking-tight; font weights one level lighter than usual

5. RESPONSIVENESS:
   - Fully responsive with sm:, md:, lg: breakpoints; nothing may scroll sideways on a phone

6. CSS STRUCTURE:
   - No classes on the <html> tag; put page-level classes on <body>

7. IMAGES AND ACCESSIBILITY:
   - Every image has descriptive alt text
   - Use semantic sectioning (header, main, section, footer) and aria-label on icon-only buttons

8. INTERACTIVITY:
   - No JavaScript animations; hover states and transitions via Tailwind only
   - Charts use Chart.js with animation: false inside a responsive container
   - No floating download buttons
"""


DEFAULT_DIAGRAM_CONSTRAINTS = ConstraintSet(
    name="tailwind-diagram",
    rules=DIAGRAM_RULES,
    required_tags=("html", "head", "body"),
    required_resources=(TAILWIND_CDN, LUCIDE_CDN),
    forbidden_constructs=(
        ForbiddenConstruct(
            label="<style>",
            pattern=r"<style[\s>]",
            hint="use inline Tailwind classes or style attributes instead",
        ),
        ForbiddenConstruct(
            label='<link rel="stylesheet">',
            pattern=r"<link\b[^>]*\brel\s*=\s*[\"']?stylesheet",
            hint="load styling through the Tailwind CDN script only",
        ),
    ),
    icon_init_call="lucide.createIcons()",
    forbid_html_tag_classes=True,
)
