# SPDX-License-Identifier: AGPL-3.0-only
"""Structural repair algorithms applied to an in-memory archive."""

from .contrast import (
    check_pair,
    contrast_ratio,
    fix_low_contrast,
    parse_color,
    relative_luminance,
    suggest_foreground,
    to_hex,
)
from .content import (
    add_epub_type_roles,
    add_html_lang,
    add_skip_navigation,
    add_table_headers,
    fix_empty_links,
)
from .headings import fix_heading_hierarchy, normalize_heading_levels
from .landmarks import ensure_main_landmark, validate_landmarks
from .metadata import add_accessibility_metadata, add_accessibility_summary, add_language

__all__ = [
    "add_accessibility_metadata",
    "add_accessibility_summary",
    "add_epub_type_roles",
    "add_html_lang",
    "add_language",
    "add_skip_navigation",
    "add_table_headers",
    "check_pair",
    "contrast_ratio",
    "ensure_main_landmark",
    "fix_empty_links",
    "fix_heading_hierarchy",
    "fix_low_contrast",
    "normalize_heading_levels",
    "parse_color",
    "relative_luminance",
    "suggest_foreground",
    "to_hex",
    "validate_landmarks",
]
