"""Collision-free project name resolution."""
import re

from wisp.services.project_store import ProjectStore
from wisp.utils.exceptions import ValidationError
from wisp.utils.logger import logger

MAX_BASE_NAME_LENGTH = 56


def normalize_name(name: str) -> str:
    """Generate a URL/DNS-safe slug from a requested project name."""
    # Convert to lowercase and trim
    slug = name.lower().strip()
    # Collapse whitespace runs to hyphens
    slug = re.sub(r"\s+", "-", slug)
    # Remove special characters, keep only alphanumeric and hyphens
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    # DNS labels cannot start or end with a hyphen and are capped at 63 chars;
    # leave room for a numeric suffix
    return slug[:MAX_BASE_NAME_LENGTH].strip("-")


def next_available_name(base_name: str, existing_names: list[str]) -> str:
    """
    Pick the next free name given the names already starting with ``base_name``.

    A bare ``base_name`` counts as suffix 1, so the sequence is
    ``base``, ``base-2``, ``base-3``...
    """
    if not existing_names:
        return base_name

    pattern = re.compile(rf"^{re.escape(base_name)}(-\d+)?$")
    numbers = []
    for name in existing_names:
        match = pattern.match(name)
        if match:
            numbers.append(int(match.group(1)[1:]) if match.group(1) else 1)

    # Only unrelated names share the prefix (e.g. "my-apple" for "my-app")
    if not numbers:
        return base_name

    return f"{base_name}-{max(numbers) + 1}"


def find_available_name(store: ProjectStore, requested_name: str) -> str:
    """
    Resolve a requested name to one no existing project uses.

    This is read-then-decide; the store's unique index on ``name`` rejects a
    concurrent insert of the same result with AlreadyExistsError.
    """
    base_name = normalize_name(requested_name)
    if not base_name:
        raise ValidationError(
            "Project name must contain at least one letter or digit",
            operation="find_available_name",
            details={"requested_name": requested_name},
        )

    name = next_available_name(base_name, store.names_with_prefix(base_name))
    logger.debug(f"[NAMING] Resolved '{requested_name}' to '{name}'")
    return name
