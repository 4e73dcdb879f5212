"""Advertisement filters built from profile match rules."""

from __future__ import annotations

from taplink.core.model import DeviceRef, Profile


def has_match_rules(profile: Profile) -> bool:
    return bool(profile.match.name_contains or profile.match.address_prefix)


def device_matches(device: DeviceRef, profile: Profile) -> bool:
    """Scan filter: any name token or address prefix accepts the device.

    A profile without rules accepts every advertising device, so the first
    one seen is chosen.
    """
    if not has_match_rules(profile):
        return True
    address = device.address.upper()
    if any(address.startswith(prefix) for prefix in profile.match.address_prefix):
        return True
    name = device.name.lower()
    return any(token.lower() in name for token in profile.match.name_contains)


def profiles_for_device(device: DeviceRef, profiles: dict[str, Profile]) -> list[str]:
    """Ids of the profiles whose rules pick out `device`; catch-all profiles are left out."""
    return sorted(
        profile.id
        for profile in profiles.values()
        if has_match_rules(profile) and device_matches(device, profile)
    )
