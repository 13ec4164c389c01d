"""Naming rules for Kubernetes objects created by the orchestrator."""

import re

MAX_NAME_LENGTH = 253

# Lowercase alphanumerics and '-', starting and ending with an alphanumeric.
NAME_PATTERN = re.compile(r"[a-z0-9]([a-z0-9-]*[a-z0-9])?")


def name_errors(name: str | None, field_name: str = "name") -> list[str]:
    """
    Check a resource name against backend naming constraints.

    Args:
        name: Candidate name
        field_name: Field label used in the returned messages

    Returns:
        List of problems (empty when the name is valid)

    Example:
        >>> name_errors("VM_1", "plan name")
        ["plan name 'VM_1' must consist of lowercase alphanumerics and '-', ..."]
    """
    if not name:
        return [f"{field_name} is required"]

    errors = []
    if len(name) > MAX_NAME_LENGTH:
        errors.append(f"{field_name} is {len(name)} characters long (maximum {MAX_NAME_LENGTH})")
    if not NAME_PATTERN.fullmatch(name):
        errors.append(
            f"{field_name} '{name}' must consist of lowercase alphanumerics and '-', "
            "and start and end with an alphanumeric"
        )
    return errors


def is_valid_name(name: str | None) -> bool:
    return not name_errors(name)
