"""Group selection for batchssh inventories.

A group expression is either empty / "all", which selects every host
(including hosts that belong to no group), or a comma-separated list of exact
group names:
- All hosts: "" or all
- One group: web
- Several groups: web,db
"""

from dataclasses import dataclass, field
from typing import Iterable

ALL_GROUPS = "all"


@dataclass(frozen=True)
class GroupFilter:
    """Parsed group selection expression.

    Attributes:
        names: Selected group names, deduplicated in first-seen order.
            Empty means every group matches.

    Example:
        >>> GroupFilter.parse("web, db,web").names
        ('web', 'db')
        >>> GroupFilter.parse("all").matches_all
        True
    """

    names: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, expression: str | None) -> "GroupFilter":
        """Parse a group expression.

        Args:
            expression: Comma-separated group names, "" or "all"

        Returns:
            GroupFilter, matching everything when "all" appears anywhere
        """
        names: list[str] = []
        for part in (expression or "").split(","):
            part = part.strip()
            if not part:
                continue
            if part == ALL_GROUPS:
                return cls()
            if part not in names:
                names.append(part)
        return cls(tuple(names))

    @property
    def matches_all(self) -> bool:
        return not self.names

    def matches(self, groups: Iterable[str]) -> bool:
        """Check whether a host with the given groups is selected.

        Args:
            groups: The host's group names

        Returns:
            True if the filter is "all" or any group is selected
        """
        if self.matches_all:
            return True
        return any(group in self.names for group in groups)

    def __str__(self) -> str:
        if self.matches_all:
            return ALL_GROUPS
        return ",".join(self.names)


def format_filter_summary(
    original_count: int,
    filtered_count: int,
    group_filter: GroupFilter,
) -> str:
    """Format a summary of group filtering.

    Args:
        original_count: Number of hosts before filtering
        filtered_count: Number of hosts after filtering
        group_filter: The filter that was applied

    Returns:
        Human-readable summary string
    """
    if group_filter.matches_all:
        return f"All {original_count} host(s) selected"

    excluded = original_count - filtered_count
    return (
        f"Groups '{group_filter}': {filtered_count}/{original_count} hosts "
        f"({excluded} excluded)"
    )
