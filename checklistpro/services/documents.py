"""
Checklist Documents

Content types for downloadable formats, on-the-fly conversion of markdown
checklist sources, and the placeholder checklist served when a product has
no usable file on disk.
"""

from io import BytesIO
import re
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import HRFlowable, ListFlowable, ListItem, Paragraph, SimpleDocTemplate, Spacer

from checklistpro.database.models import Product

CONTENT_TYPES = {
    "pdf": "application/pdf",
    "markdown": "text/markdown",
    "md": "text/markdown",
    "txt": "text/plain",
    "text": "text/plain",
    "excel": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "word": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "csv": "text/csv",
    "fig": "application/octet-stream",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Formats that can be produced from a markdown source
CONVERTIBLE_FORMATS = frozenset({"pdf", "txt", "text", "markdown", "md"})


def content_type_for(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


# =============================================================================
# MARKDOWN CONVERSION
# =============================================================================

_INLINE_BOLD = re.compile(r"\*\*(.+?)\*\*")
_INLINE_ITALIC = re.compile(r"(?<!\*)\*(?!\*)(.+?)\*")
_CHECKBOX = re.compile(r"^\[( |x|X)\]\s*")


def _inline(text: str) -> str:
    """Escape for reportlab's mini-markup and keep bold/italic"""
    text = escape(text)
    text = _INLINE_BOLD.sub(r"<b>\1</b>", text)
    return _INLINE_ITALIC.sub(r"<i>\1</i>", text)


def markdown_to_pdf(markdown: str, title: Optional[str] = None) -> bytes:
    """
    Render a markdown checklist to PDF.

    Handles the subset checklists use: ATX headings, bullet and checkbox
    lists, horizontal rules and paragraphs. Anything else is rendered as text.
    """
    styles = getSampleStyleSheet()
    heading_styles = {1: styles["Title"], 2: styles["Heading2"], 3: styles["Heading3"]}

    story: List = []
    bullets: List[ListItem] = []

    def flush_bullets():
        if bullets:
            story.append(ListFlowable(list(bullets), bulletType="bullet", leftIndent=12))
            bullets.clear()

    paragraph: List[str] = []

    def flush_paragraph():
        if paragraph:
            story.append(Paragraph(_inline(" ".join(paragraph)), styles["BodyText"]))
            paragraph.clear()

    for raw in markdown.splitlines():
        line = raw.strip()

        if not line:
            flush_paragraph()
            flush_bullets()
            continue

        heading = re.match(r"^(#{1,6})\s+(.*)$", line)
        if heading:
            flush_paragraph()
            flush_bullets()
            level = min(len(heading.group(1)), 3)
            story.append(Paragraph(_inline(heading.group(2)), heading_styles[level]))
            continue

        if re.match(r"^(-{3,}|\*{3,}|_{3,})$", line):
            flush_paragraph()
            flush_bullets()
            story.append(HRFlowable(width="100%", spaceBefore=6, spaceAfter=6))
            continue

        item = re.match(r"^[-*+]\s+(.*)$", line)
        if item:
            flush_paragraph()
            text = item.group(1)
            checkbox = _CHECKBOX.match(text)
            if checkbox:
                mark = "[x] " if checkbox.group(1).lower() == "x" else "[ ] "
                text = mark + text[checkbox.end():]
            bullets.append(ListItem(Paragraph(_inline(text), styles["BodyText"])))
            continue

        flush_bullets()
        paragraph.append(line)

    flush_paragraph()
    flush_bullets()

    if not story:
        story.append(Spacer(1, 0.25 * inch))

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=LETTER,
        title=title or "Checklist",
        leftMargin=0.9 * inch,
        rightMargin=0.9 * inch,
        topMargin=0.9 * inch,
        bottomMargin=0.9 * inch,
    )
    doc.build(story)
    return buffer.getvalue()


def markdown_to_text(markdown: str) -> bytes:
    """Plain-text rendition; markdown is already readable as text"""
    return markdown.encode("utf-8")


def convert_markdown(markdown: str, target_format: str, title: Optional[str] = None) -> bytes:
    target = target_format.lower()
    if target == "pdf":
        return markdown_to_pdf(markdown, title=title)
    if target in CONVERTIBLE_FORMATS:
        return markdown_to_text(markdown)
    raise ValueError(f"Cannot convert markdown to {target_format}")


# =============================================================================
# PLACEHOLDER CHECKLIST
# =============================================================================

PLACEHOLDER_BODY = """## Main Checklist

### Phase 1: Planning and Research
- [ ] Define your concept and unique value proposition
- [ ] Research target market and competition
- [ ] Create business plan and financial projections
- [ ] Identify startup costs and funding sources

### Phase 2: Legal and Regulatory
- [ ] Choose business structure (LLC, Corporation, etc.)
- [ ] Register business name and obtain EIN
- [ ] Apply for necessary permits and licenses
- [ ] Set up business bank accounts
- [ ] Obtain required insurance policies

### Phase 3: Operations Setup
- [ ] Secure location or equipment
- [ ] Set up supplier relationships
- [ ] Develop standard operating procedures
- [ ] Create quality control systems
- [ ] Implement inventory management

### Phase 4: Marketing and Launch
- [ ] Develop brand identity and materials
- [ ] Create website and social media presence
- [ ] Plan grand opening or launch event
- [ ] Implement customer feedback system
- [ ] Begin operations and iterate based on feedback

---

This is a sample checklist. The full version includes:
- Detailed sub-checklists for each phase
- Templates and forms
- Resource links
- Common pitfalls to avoid
- Industry-specific guidance
"""


def placeholder_checklist(product: Product) -> str:
    """Markdown checklist generated from product metadata"""
    features = "\n".join(f"- {feature}" for feature in (product.features or []))
    updated = product.updated_at.strftime("%Y-%m-%d") if product.updated_at else "unknown"

    return (
        f"# {product.name}\n\n"
        f"Version: {product.version or '1.0'}\n"
        f"Last Updated: {updated}\n\n"
        f"## Description\n{product.description or product.short_description or ''}\n\n"
        f"## Features Included:\n{features}\n\n"
        f"{PLACEHOLDER_BODY}"
    )
