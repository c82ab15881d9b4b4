"""Validation of PRD documents (story dependency graphs).

A PRD is a JSON document ``{"stories": [...]}`` whose stories reference
each other through ``dependsOn``. Validation checks the shape of every
story, id uniqueness, that every dependency names a story in the document
and that the dependency graph has no cycle. All problems are collected;
nothing here raises on bad input.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Set, Union

from chaos_mcp.exceptions import ValidationError
from chaos_mcp.models.schema import (
    Backlog,
    BacklogEntry,
    PrdValidation,
    StoryStatus,
)

logger = logging.getLogger(__name__)

# Story keys kept in validated output, in output order
STORY_KEYS = ("id", "title", "description", "acceptanceCriteria", "dependsOn", "status")

CYCLE_ERROR = "dependency cycle detected"

_STATUSES = (StoryStatus.PENDING.value, StoryStatus.DONE.value)


def _is_int(value: Any) -> bool:
    # bool is an int subclass, but JSON true/false are not ids
    return isinstance(value, int) and not isinstance(value, bool)


def _is_int_list(value: Any) -> bool:
    return isinstance(value, list) and all(_is_int(v) for v in value)


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _check_story(index: int, story: Dict[str, Any]) -> List[str]:
    """Run the independent field checks of one story."""
    prefix = f"stories[{index}]"
    errors = []
    title = story.get("title")
    if not isinstance(title, str) or not title:
        errors.append(f"{prefix}: title is required")
    if not isinstance(story.get("description"), str):
        errors.append(f"{prefix}: description must be a string")
    if not _is_str_list(story.get("acceptanceCriteria")):
        errors.append(f"{prefix}: acceptanceCriteria must be an array of strings")
    if not _is_int_list(story.get("dependsOn")):
        errors.append(f"{prefix}: dependsOn must be an array of integers")
    if story.get("status") not in _STATUSES:
        errors.append(f"{prefix}: status must be 'pending' or 'done'")
    return errors


def _dependencies(story: Dict[str, Any]) -> List[int]:
    """Integer dependency ids of a story, ignoring malformed entries."""
    deps = story.get("dependsOn")
    if not isinstance(deps, list):
        return []
    return [d for d in deps if _is_int(d)]


def _has_cycle(adjacency: Dict[int, List[int]]) -> bool:
    """Depth-first search for a back edge, using an explicit stack.

    A story depending on itself counts as a cycle.
    """
    visited: Set[int] = set()
    on_stack: Set[int] = set()

    for root in adjacency:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack = [(root, iter(adjacency.get(root, ())))]

        while stack:
            node, deps = stack[-1]
            for dep in deps:
                if dep in on_stack:
                    return True
                if dep not in visited:
                    visited.add(dep)
                    on_stack.add(dep)
                    stack.append((dep, iter(adjacency.get(dep, ()))))
                    break
            else:
                # All dependencies of node explored
                stack.pop()
                on_stack.discard(node)

    return False


def _project(story: Dict[str, Any]) -> Dict[str, Any]:
    return {key: story[key] for key in STORY_KEYS if key in story}


def validate_prd(document: Any) -> PrdValidation:
    """Validate a decoded PRD document.

    Args:
        document: The parsed JSON value.

    Returns:
        PrdValidation with ``valid`` True only when no error was found.
        ``stories`` echoes every object story in input order (restricted to
        the known story keys), valid or not.
    """
    if not isinstance(document, dict):
        return PrdValidation(valid=False, errors=["prd.json must be a JSON object"])
    raw_stories = document.get("stories")
    if not isinstance(raw_stories, list):
        return PrdValidation(valid=False, errors=["prd.json must have a 'stories' array"])

    errors: List[str] = []
    stories: List[Dict[str, Any]] = []
    # Stories with a usable integer id, in input order
    keyed: List[Dict[str, Any]] = []
    adjacency: Dict[int, List[int]] = {}

    for i, story in enumerate(raw_stories):
        prefix = f"stories[{i}]"
        if not isinstance(story, dict):
            errors.append(f"{prefix}: story must be an object")
            continue
        stories.append(_project(story))

        story_id = story.get("id")
        if not _is_int(story_id):
            errors.append(f"{prefix}: id must be an integer")
        elif story_id in adjacency:
            errors.append(f"{prefix}: duplicate id {story_id}")
        else:
            adjacency[story_id] = _dependencies(story)

        errors.extend(_check_story(i, story))
        if _is_int(story_id):
            keyed.append(story)

    for story in keyed:
        for dep in _dependencies(story):
            if dep not in adjacency:
                errors.append(f"story {story['id']}: depends on non-existent story {dep}")

    if _has_cycle(adjacency):
        errors.append(CYCLE_ERROR)

    if errors:
        logger.debug(f"PRD validation found {len(errors)} error(s)")
    return PrdValidation(valid=not errors, stories=stories, errors=errors)


def validate_prd_file(path: Union[str, Path]) -> PrdValidation:
    """Read, decode and validate a PRD file.

    Unreadable files and invalid JSON are reported as a single error.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return PrdValidation(
            valid=False, errors=[f"cannot read {path.name}: {e.strerror or e}"]
        )
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        return PrdValidation(
            valid=False,
            errors=[f"{path.name} is not valid JSON: {e.msg} (line {e.lineno})"],
        )
    return validate_prd(document)


def _positions(stories: Iterable[Dict[str, Any]]) -> Dict[int, int]:
    """Map story id to its 1-based position (first occurrence wins)."""
    positions: Dict[int, int] = {}
    for index, story in enumerate(stories, start=1):
        positions.setdefault(story["id"], index)
    return positions


def backlog_view(result: PrdValidation) -> Backlog:
    """Split a valid PRD into pending and done stories.

    Each pending entry lists the stories still blocking it, as 1-based
    positions in the full story list.

    Raises:
        ValidationError: If the PRD is not valid.
    """
    if not result.valid:
        raise ValidationError(
            "cannot build a backlog from an invalid PRD",
            field="prd",
            value="; ".join(result.errors),
        )

    stories = result.to_stories()
    positions = _positions(result.stories)
    done_ids = {s.id for s in stories if s.status == StoryStatus.DONE}

    backlog = Backlog()
    for position, story in enumerate(stories, start=1):
        if story.status == StoryStatus.DONE:
            backlog.done.append(story)
            continue
        blocked_by = [
            positions[dep]
            for dep in story.depends_on
            if dep not in done_ids and dep in positions
        ]
        backlog.pending.append(
            BacklogEntry(position=position, story=story, blocked_by=blocked_by)
        )
    return backlog
