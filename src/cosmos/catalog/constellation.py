"""Constellations: named bundles of stars installed together.

Members are "name" or "name@constraint" tokens; a bare name means any
version (``*``). A constellation is a request, not persisted state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from cosmos.errors import CosmosIOError, MetadataParseError, MissingFieldError

ANY_VERSION = "*"


def parse_member(token: str) -> tuple[str, str]:
    """Split a member token into (name, constraint) on the last '@'."""
    token = token.strip()
    name, sep, constraint = token.rpartition("@")
    if not sep:
        return token, ANY_VERSION
    return name.strip(), constraint.strip() or ANY_VERSION


@dataclass
class Constellation:
    name: str
    members: list[str] = field(default_factory=list)
    description: str | None = None

    def contains(self, star_name: str) -> bool:
        return any(parse_member(m)[0] == star_name for m in self.members)

    def requests(self) -> list[tuple[str, str]]:
        """Members as (name, constraint) pairs, in declaration order."""
        return [parse_member(m) for m in self.members]

    @classmethod
    def from_dict(cls, data: dict) -> "Constellation":
        if not isinstance(data, dict):
            raise MetadataParseError("Constellation must be a mapping")
        name = str(data.get("name") or "").strip()
        if not name:
            raise MissingFieldError("Constellation missing required field: name")

        members = data.get("members")
        if members is None:
            raise MissingFieldError("Missing required field: members", name)
        if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
            raise MetadataParseError("'members' must be a list of strings", name)

        for member in members:
            if not parse_member(member)[0]:
                raise MetadataParseError(f"Invalid member token: {member!r}", name)

        return cls(name=name, members=list(members), description=data.get("description"))

    @classmethod
    def from_file(cls, path: Path | str) -> "Constellation":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise CosmosIOError(f"Cannot read constellation {path}: {e}") from e
        except yaml.YAMLError as e:
            raise MetadataParseError(f"Invalid constellation {path}: {e}") from e
        return cls.from_dict(data)
