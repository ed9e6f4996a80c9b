"""Builders for Payload's Lexical rich text JSON and the Storyblok article conversion."""

import logging
import re
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Node = Dict[str, Any]

ITALIC = 2  # Lexical text format bit

# Storyblok text comes with escaped control characters, sometimes escaped twice
_ESCAPES = [
    (r"\\\\n", "\n"),
    (r"\\\n", "\n"),
    (r"\\n", "\n"),
    (r"\\\\t", "\t"),
    (r"\\\t", "\t"),
    (r"\\t", "\t"),
    (r"\\\\r", "\r"),
    (r"\\\r", "\r"),
    (r"\\r", "\r"),
]
_QUOTES = [
    (r"\\\\", "\\"),
    (r'\\"', '"'),
    (r"\\'", "'"),
]


def _unescape(text: str, whitespace: Optional[str]) -> str:
    for pattern, replacement in _ESCAPES:
        value = whitespace if whitespace is not None else replacement
        text = re.sub(pattern, lambda _, v=value: v, text)
    for pattern, replacement in _QUOTES:
        text = re.sub(pattern, lambda _, r=replacement: r, text)
    return text


def clean_textarea(text: Optional[str]) -> str:
    """Unescape text for multi-line fields: escaped newlines and tabs become real ones."""
    return _unescape(text or "", None)


def clean_text(text: Optional[str]) -> str:
    """Unescape text for single-line fields: escaped newlines and tabs become spaces."""
    return _unescape(text or "", " ")


def text_node(text: str, format: int = 0) -> Node:
    return {
        "type": "text",
        "version": 1,
        "text": text,
        "format": format,
        "detail": 0,
        "mode": "normal",
        "style": "",
    }


def paragraph(text: str, format: int = 0) -> Node:
    return {"type": "paragraph", "version": 1, "children": [text_node(text, format)]}


def heading(tag: str, text: str) -> Node:
    return {"type": "heading", "tag": tag, "version": 1, "children": [text_node(text)]}


def quote(children: List[Node]) -> Node:
    return {"type": "quote", "version": 1, "children": children}


def upload(media_id: str, caption: str = "", relation_to: str = "media") -> Node:
    node: Node = {"type": "upload", "relationTo": relation_to, "value": {"id": media_id}, "version": 1}
    if caption.strip():
        node["fields"] = {"caption": caption}
    return node


def relationship(relation_to: str, doc_id: str) -> Node:
    return {"type": "relationship", "relationTo": relation_to, "value": {"id": doc_id}, "version": 1}


def root(children: List[Node]) -> Dict[str, Node]:
    return {
        "root": {
            "type": "root",
            "children": children,
            "direction": "ltr",
            "format": "",
            "indent": 0,
            "version": 1,
        }
    }


def convert_article_blocks(
    blocks: List[Dict[str, Any]],
    resolve_image: Callable[[str, str], Optional[str]],
    resolve_video: Callable[[str], Optional[str]],
) -> Dict[str, Node]:
    """
    Convert a Storyblok article body into a Lexical document.

    Blocks are ordered by their ``Order`` field. Headings, paragraphs and
    quotes become text nodes; images become uploads and main videos become
    relationships to an external video. Unknown components are dropped.

    Args:
        blocks: Storyblok blocks of the article
        resolve_image: (image url, alt text) -> media id, None if not transferred
        resolve_video: video story uuid -> external video id, None if not found

    Returns:
        Lexical root document
    """
    children: List[Node] = []
    for block in sorted(blocks, key=lambda b: b.get("Order") or 0):
        component = block.get("component")

        if component == "h1":
            children.append(heading("h1", clean_textarea(block.get("Text"))))
        elif component == "DD_H2":
            children.append(heading("h2", clean_textarea(block.get("Text"))))
        elif component == "DD_Paragraph":
            children.append(paragraph(clean_textarea(block.get("Text"))))
        elif component == "DD_Quote":
            author = f"{clean_text(block.get('Author_name'))}, {clean_text(block.get('Author_who_is'))}"
            children.append(quote([
                paragraph(clean_textarea(block.get("Text"))),
                paragraph(f"\u2014 {author}", ITALIC),
            ]))
        elif component in ("DD_Image", "DD_wide_image"):
            link = block.get("Image_link") or block.get("Image_URL") or {}
            url = link.get("url") if isinstance(link, dict) else None
            if not url:
                continue
            caption = clean_text(block.get("Caption_text"))
            media_id = resolve_image(url, caption)
            if media_id is not None:
                children.append(upload(media_id, caption))
        elif component == "DD_Main_video":
            uuid = block.get("Video_UUID")
            if not uuid:
                continue
            video_id = resolve_video(uuid)
            if video_id is not None:
                children.append(relationship("external-videos", video_id))
        else:
            logger.debug(f"Dropping unsupported article block {component}")

    return root(children)
