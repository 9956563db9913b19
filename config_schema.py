"""
JSON Configuration Schema for monitored protocols.

Each protocol is described by one JSON file:
1. Identity (name, type, chain, decimals)
2. Contract addresses the on-chain reader needs for its type
3. Off-chain reference key (DeFiLlama slug) for the cross-reference check

Usage:
- Protocol configs live in PROTOCOLS_DIR as one JSON file each
- The registry loads and validates them at startup
- Configs are immutable for the life of a deployment
"""

from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict
from pathlib import Path
import json


# =============================================================================
# SCHEMA DEFINITIONS
# =============================================================================

SUPPORTED_CHAINS = ["ethereum", "arbitrum", "base", "optimism", "polygon", "avalanche", "gnosis"]

PROTOCOL_TYPES = ["aave", "compound", "lido", "erc4626"]

# Address fields each protocol type must provide
REQUIRED_ADDRESSES = {
    "aave": ["pool_address", "asset_address"],
    "compound": ["comet_address", "asset_address"],
    "lido": ["token_address"],
    "erc4626": ["vault_address"],
}

ADDRESS_FIELDS = ["pool_address", "asset_address", "comet_address", "token_address", "vault_address"]


@dataclass(frozen=True)
class ProtocolConfig:
    """
    Configuration for one monitored protocol.

    Only the address fields relevant to ``protocol_type`` need to be set.
    """
    name: str
    protocol_type: str
    chain: str
    decimals: int
    reference_slug: str = ""
    pool_address: Optional[str] = None
    asset_address: Optional[str] = None
    comet_address: Optional[str] = None
    token_address: Optional[str] = None
    vault_address: Optional[str] = None
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProtocolConfig":
        """Create from dictionary (e.g., loaded from JSON)."""
        data = dict(data)
        # Accept the short key used in hand-written configs
        if "type" in data and "protocol_type" not in data:
            data["protocol_type"] = data.pop("type")
        if "referenceSlug" in data and "reference_slug" not in data:
            data["reference_slug"] = data.pop("referenceSlug")

        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_json_file(cls, file_path: str) -> "ProtocolConfig":
        """Create from JSON file."""
        with open(file_path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)


# =============================================================================
# VALIDATION
# =============================================================================

def _is_address(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith("0x") and len(value) == 42


def validate_config(config: ProtocolConfig) -> Dict[str, Any]:
    """
    Validate a single protocol configuration.

    Returns:
        Dict with:
        - is_valid: bool
        - errors: List of error messages
        - warnings: List of warning messages
    """
    errors = []
    warnings = []

    if not config.name:
        errors.append("name is required")

    if config.protocol_type not in PROTOCOL_TYPES:
        errors.append(f"type must be one of: {PROTOCOL_TYPES}")

    if config.chain not in SUPPORTED_CHAINS:
        errors.append(f"Unsupported chain: {config.chain}. Must be one of: {SUPPORTED_CHAINS}")

    if not isinstance(config.decimals, int) or config.decimals < 0 or config.decimals > 36:
        errors.append("decimals must be an integer between 0 and 36")

    for field_name in REQUIRED_ADDRESSES.get(config.protocol_type, []):
        value = getattr(config, field_name)
        if not value:
            errors.append(f"{field_name} is required for type '{config.protocol_type}'")
        elif not _is_address(value):
            errors.append(f"{field_name} is not a valid address: {value}")

    if not config.reference_slug and config.protocol_type != "lido":
        warnings.append("No reference_slug - cross-reference check will score missing data")

    return {
        "is_valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
    }


def validate_protocol_set(configs: List[ProtocolConfig]) -> Dict[str, Any]:
    """Validate a whole deployment: every config plus unique names."""
    errors = []
    warnings = []
    seen = set()

    for config in configs:
        result = validate_config(config)
        errors.extend(f"{config.name or '<unnamed>'}: {e}" for e in result["errors"])
        warnings.extend(f"{config.name or '<unnamed>'}: {w}" for w in result["warnings"])
        if config.name in seen:
            errors.append(f"Duplicate protocol name: {config.name}")
        seen.add(config.name)

    if not configs:
        errors.append("No protocols configured")

    return {
        "is_valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "protocol_count": len(configs),
    }


def load_protocol_configs(directory: str) -> List[ProtocolConfig]:
    """
    Load every *.json protocol config in a directory, sorted by file name.

    Args:
        directory: Path to directory containing JSON configs

    Returns:
        List of ProtocolConfig
    """
    return [
        ProtocolConfig.from_json_file(str(path))
        for path in sorted(Path(directory).glob("*.json"))
    ]
