"""Walker locator: imports the walker modules so their decorators register them."""

import importlib
import os
from typing import Dict, List, Type

from m365crawler.core.logging import logger
from m365crawler.platform.decorators import WALKER_REGISTRY
from m365crawler.platform.entities._base import ResourceFamily
from m365crawler.platform.sources._base import BaseWalker

PLATFORM_PATH = "m365crawler.platform"
SOURCES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "sources")


class WalkerLocator:
    """Finds the registered walker classes."""

    _loaded = False

    @classmethod
    def load(cls) -> Dict[ResourceFamily, Type[BaseWalker]]:
        """Import every walker module once and return the registry.

        Raises:
            ImportError: If a walker module cannot be imported. A missing walker
                would silently shrink the crawl, so this is fatal.
        """
        if not cls._loaded:
            for filename in sorted(os.listdir(SOURCES_DIR)):
                if not filename.endswith(".py") or filename.startswith("_"):
                    continue
                module_name = f"{PLATFORM_PATH}.sources.{filename[:-3]}"
                try:
                    importlib.import_module(module_name)
                except ImportError as e:
                    logger.error(f"Failed to import {module_name}: {e}")
                    raise ImportError(f"Module import failed: {module_name}") from e
            cls._loaded = True
        return WALKER_REGISTRY

    @classmethod
    def get_walker(cls, family: ResourceFamily) -> Type[BaseWalker]:
        """Return the walker class of a family.

        Raises:
            KeyError: If no walker is registered for the family.
        """
        return cls.load()[family]

    @classmethod
    def walkers_in_order(cls) -> List[Type[BaseWalker]]:
        """Return the registered walkers in resource family declaration order."""
        registry = cls.load()
        return [registry[family] for family in ResourceFamily if family in registry]
