"""
Registries - keyed maps with an insertion-ordered index.

OrderedRegistry is the building block for every tracked list in the
ledger and guard (protocols, chains, registrants): lookups by key, stable
iteration in first-seen order and an idempotent insert-if-absent.

ProtocolRegistry holds the monitored protocol configs for a deployment.
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Iterator, Tuple

from config_schema import ProtocolConfig, validate_config

logger = logging.getLogger(__name__)


class OrderedRegistry:
    """Keyed map plus an insertion-ordered index of its keys."""

    def __init__(self):
        self._items: Dict[str, Any] = {}
        self._order: List[str] = []

    def add_if_absent(self, key: str, value: Any) -> bool:
        """
        Insert ``value`` under ``key`` unless the key is already present.

        Returns:
            True if inserted, False if the key existed
        """
        if key in self._items:
            return False
        self._items[key] = value
        self._order.append(key)
        return True

    def put(self, key: str, value: Any) -> None:
        """Insert or overwrite, keeping the key's original position."""
        if key not in self._items:
            self._order.append(key)
        self._items[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._items.get(key, default)

    def keys(self) -> List[str]:
        return list(self._order)

    def values(self) -> List[Any]:
        return [self._items[k] for k in self._order]

    def items(self) -> List[Tuple[str, Any]]:
        return [(k, self._items[k]) for k in self._order]

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._order))


class ProtocolRegistry:
    """
    Manages the protocols monitored by one deployment.

    Protocols are immutable once added; adding a name twice keeps the
    first config.
    """

    def __init__(self, configs: Optional[List[ProtocolConfig]] = None):
        self._protocols = OrderedRegistry()
        for config in configs or []:
            self.add_protocol(config)

    def add_protocol(self, config: ProtocolConfig) -> bool:
        """
        Add a protocol config.

        Raises:
            ValueError: if the config fails validation
        """
        validation = validate_config(config)
        if not validation["is_valid"]:
            raise ValueError(f"Invalid config for {config.name}: {'; '.join(validation['errors'])}")

        added = self._protocols.add_if_absent(config.name, config)
        if not added:
            logger.warning("Protocol %s already registered, keeping first config", config.name)
        return added

    def add_protocol_from_file(self, file_path: str) -> bool:
        """Add a protocol from a JSON config file."""
        return self.add_protocol(ProtocolConfig.from_json_file(file_path))

    def get_protocol(self, name: str) -> Optional[ProtocolConfig]:
        return self._protocols.get(name)

    def get_all_protocols(self, enabled_only: bool = True) -> List[ProtocolConfig]:
        """All registered protocols in registration order."""
        protocols = self._protocols.values()
        if enabled_only:
            protocols = [p for p in protocols if p.enabled]
        return protocols

    def get_chains(self, enabled_only: bool = True) -> List[str]:
        """Distinct chains in first-seen order."""
        chains = OrderedRegistry()
        for protocol in self.get_all_protocols(enabled_only):
            chains.add_if_absent(protocol.chain, True)
        return chains.keys()

    def get_reference_slugs(self, enabled_only: bool = True) -> Dict[str, str]:
        """{protocol name: DeFiLlama slug} for protocols that have one."""
        return {
            p.name: p.reference_slug
            for p in self.get_all_protocols(enabled_only)
            if p.reference_slug
        }

    def __len__(self) -> int:
        return len(self._protocols)


def load_all_configs_from_directory(directory: str, registry: ProtocolRegistry = None) -> ProtocolRegistry:
    """
    Load all JSON config files from a directory into a registry.

    A file that fails to load or validate aborts the load: a deployment
    with a silently missing protocol would produce incomplete reports.

    Args:
        directory: Path to directory containing JSON configs
        registry: Registry to add to (a new one if None)

    Returns:
        The populated registry
    """
    registry = registry or ProtocolRegistry()
    dir_path = Path(directory)

    for json_file in sorted(dir_path.glob("*.json")):
        registry.add_protocol_from_file(str(json_file))
        logger.info("Loaded protocol config: %s", json_file.name)

    return registry
