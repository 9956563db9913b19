"""
Protocol Configuration Validator.

Checks every protocol config JSON in PROTOCOLS_DIR (or the directory given
as the first argument), prints a report and a summary of the active risk
profile. Exits non-zero on errors.
"""

import os
import sys
from typing import Dict, List

from config_schema import ProtocolConfig, validate_config, validate_protocol_set
from reserve_math import format_bps
from sentinel.config.settings import PROTOCOLS_DIR, RISK_PROFILE
from thresholds import RISK_PROFILES, get_profile_summary


def load_configs(directory: str) -> List[Dict]:
    """Load each config file, keeping load failures as error entries."""
    entries = []
    for file_name in sorted(os.listdir(directory)):
        if not file_name.endswith(".json"):
            continue
        path = os.path.join(directory, file_name)
        try:
            config = ProtocolConfig.from_json_file(path)
        except (OSError, ValueError, TypeError) as e:
            entries.append({"file": file_name, "config": None, "load_error": str(e)})
            continue
        entries.append({"file": file_name, "config": config, "load_error": None})
    return entries


def print_validation_report(entries: List[Dict]) -> bool:
    """Print formatted validation report. Returns True when everything is valid."""
    print("\n" + "=" * 90)
    print("PROTOCOL CONFIGURATION VALIDATION REPORT")
    print("=" * 90)

    print("\n{:<28} {:<10} {:<10} {:<8} {}".format("Protocol", "Type", "Chain", "Status", "File"))
    print("-" * 90)

    all_valid = True
    for entry in entries:
        config = entry["config"]
        if config is None:
            all_valid = False
            print("{:<28} {:<10} {:<10} {:<8} {}".format("?", "?", "?", "❌", entry["file"]))
            continue
        result = validate_config(config)
        status = "✅" if result["is_valid"] and not result["warnings"] else ("⚠️" if result["is_valid"] else "❌")
        all_valid = all_valid and result["is_valid"]
        print("{:<28} {:<10} {:<10} {:<8} {}".format(
            config.name, config.protocol_type, config.chain, status, entry["file"]))

    print("\n" + "=" * 90)
    print("DETAILED ISSUES")
    print("=" * 90)

    for entry in entries:
        if entry["load_error"]:
            print(f"\n{entry['file']}\n  - load error: {entry['load_error']}")

    configs = [e["config"] for e in entries if e["config"] is not None]
    summary = validate_protocol_set(configs)
    for error in summary["errors"]:
        print(f"  ERROR: {error}")
    for warning in summary["warnings"]:
        print(f"  WARN:  {warning}")

    print(f"\n{summary['protocol_count']} protocol(s) loaded, "
          f"{len(summary['errors'])} error(s), {len(summary['warnings'])} warning(s)")
    return all_valid and summary["is_valid"]


def print_profile_summary(profile: str) -> bool:
    """Print the active risk profile. Returns False when the profile is unknown."""
    print("\n" + "=" * 90)
    print("RISK PROFILE")
    print("=" * 90)

    if profile not in RISK_PROFILES:
        print(f"  ERROR: unknown risk profile '{profile}', expected one of {sorted(RISK_PROFILES)}")
        return False

    summary = get_profile_summary(profile)
    low, high = summary["cross_reference_range_bps"]
    print(f"  {summary['profile']}: {summary['description']}")
    print(f"  Max solvency contribution per protocol:    {summary['max_solvency_contribution']}")
    print(f"  Max utilization contribution per protocol: {summary['max_utilization_contribution']}")
    print(f"  Cross-reference range: {format_bps(low)} - {format_bps(high)} of reference TVL "
          f"(+{summary['cross_reference_score']} outside)")
    print(f"  Utilization anomaly flag: {'on' if summary['utilization_anomaly'] else 'off'}")
    return True


def main():
    directory = sys.argv[1] if len(sys.argv) > 1 else PROTOCOLS_DIR
    if not os.path.isdir(directory):
        print(f"Config directory not found: {directory}")
        sys.exit(2)

    entries = load_configs(directory)
    if not entries:
        print("No config files found!")
        sys.exit(1)

    configs_valid = print_validation_report(entries)
    profile_valid = print_profile_summary(RISK_PROFILE)
    sys.exit(0 if configs_valid and profile_valid else 1)


if __name__ == "__main__":
    main()
