"""Walker registration."""

from typing import Callable, Dict, List, Optional, Type

from m365crawler.platform.entities._base import ResourceFamily

WALKER_REGISTRY: Dict[ResourceFamily, Type] = {}


def walker(
    family: ResourceFamily,
    name: str,
    config_flag: str,
    labels: Optional[List[str]] = None,
) -> Callable[[type], type]:
    """Register a walker class for a resource family.

    Args:
        family: The resource family the walker enumerates.
        name: Display name used in logs.
        config_flag: CrawlConfig flag enabling the family.
        labels: Tags for categorization (e.g., "Files", "Messaging").

    Example:
        @walker(
            family=ResourceFamily.TEAMS,
            name="Microsoft Teams",
            config_flag="teams_crawler",
            labels=["Messaging"],
        )
        class TeamsWalker(BaseWalker):
            ...
    """

    def decorator(cls: type) -> type:
        cls._is_walker = True
        cls._family = family
        cls._name = name
        cls._config_flag = config_flag
        cls._labels = labels or []

        existing = WALKER_REGISTRY.get(family)
        if existing is not None and existing is not cls:
            raise ValueError(f"Family {family.value} already registered by {existing.__name__}")
        WALKER_REGISTRY[family] = cls
        return cls

    return decorator
