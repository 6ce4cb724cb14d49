"""
Vote marker parsing.

A vote is cast by transcluding the Agree or Disagree template in a post of a
sanction topic, e.g. ``{{찬성|7}}`` (agree, block for 7 days) or ``{{반대}}``.
Parsing works on raw wikitext and never renders it.
"""
from __future__ import annotations

import re
from typing import Optional, Tuple

from sanctions.models import VoteChoice

# {{Name}} or {{Name|arg|...}}; nested templates are not votes
_TRANSCLUSION_PATTERN = re.compile(r"\{\{\s*([^{}|]+?)\s*(?:\|([^{}]*))?\}\}")

# Markup whose content is never transcluded
_INERT_PATTERN = re.compile(
    r"<!--.*?(?:-->|$)|<nowiki\s*>.*?</nowiki\s*>|<pre\s*>.*?</pre\s*>",
    re.IGNORECASE | re.DOTALL,
)

_TEMPLATE_NAMESPACES = ("template:", "틀:")


def normalize_template_name(name: str) -> str:
    """Normalize a template title the way the wiki compares page titles."""
    name = re.sub(r"[\s_]+", " ", name or "").strip()
    lowered = name.lower()
    for prefix in _TEMPLATE_NAMESPACES:
        if lowered.startswith(prefix):
            name = name[len(prefix):].strip()
            break
    if not name:
        return ""
    return name[0].upper() + name[1:]


def _parse_period(args: Optional[str], max_period: int) -> Optional[int]:
    if not args:
        return None
    first = args.split("|", 1)[0].strip()
    if "=" in first:
        key, _, value = first.partition("=")
        if key.strip() != "1":
            return None
        first = value.strip()
    try:
        period = int(first)
    except ValueError:
        return None
    if period < 1:
        return None
    return min(period, max_period)


def find_vote_marker(
    wikitext: str,
    agree_template: str,
    disagree_template: str,
    max_period: int,
) -> Optional[Tuple[VoteChoice, Optional[int]]]:
    """
    Return the vote a post casts, or None if it casts no vote.

    A post transcluding both templates is ambiguous and casts no vote.
    Repeating the same template counts once; the first period given wins.
    """
    if not wikitext:
        return None

    text = _INERT_PATTERN.sub("", wikitext)
    agree_name = normalize_template_name(agree_template)
    disagree_name = normalize_template_name(disagree_template)

    found_agree = False
    found_disagree = False
    period = None

    for match in _TRANSCLUSION_PATTERN.finditer(text):
        name = normalize_template_name(match.group(1))
        if name == agree_name:
            if not found_agree:
                period = _parse_period(match.group(2), max_period)
            found_agree = True
        elif name == disagree_name:
            found_disagree = True

    if found_agree and found_disagree:
        return None
    if found_agree:
        return VoteChoice.AGREE, period
    if found_disagree:
        return VoteChoice.DISAGREE, None
    return None
