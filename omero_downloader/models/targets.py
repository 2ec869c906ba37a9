"""
Parsing of 'Target:ids' command-line arguments.
"""

import re
from dataclasses import dataclass

from omero_downloader.exceptions import TargetSyntaxError

TARGET_PATTERN = re.compile(r"(?P<type>[A-Z][A-Za-z]*):(?P<ids>\d+(?:,\d+)*)")


@dataclass(frozen=True)
class Target:
    """A top-level object type and the ids of that type to download."""

    type: str
    ids: tuple[int, ...]


def parse_target(argument: str) -> Target:
    """
    Parses one argument such as 'Image:1,2' or 'Dataset:5'.

    Raises:
        TargetSyntaxError: If the argument does not have the 'Type:id,id' form.
    """
    match = TARGET_PATTERN.fullmatch(argument.strip())
    if not match:
        raise TargetSyntaxError(f"cannot parse Target:ids argument: {argument}")
    ids = tuple(int(i) for i in match.group("ids").split(","))
    return Target(match.group("type"), ids)


def parse_targets(arguments: list[str]) -> list[Target]:
    """Parses every argument, failing on the first one that is malformed."""
    if not arguments:
        raise TargetSyntaxError("no download targets specified")
    return [parse_target(argument) for argument in arguments]


def group_target_ids(targets: list[Target]) -> dict[str, list[int]]:
    """Merges targets by type into sorted, de-duplicated id lists."""
    grouped: dict[str, set[int]] = {}
    for target in targets:
        grouped.setdefault(target.type, set()).update(target.ids)
    return {target_type: sorted(ids) for target_type, ids in grouped.items()}
