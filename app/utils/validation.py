from typing import List, Optional, Sequence, Tuple

from app.core.exceptions import ValidationError
from app.models.service import Service, ServiceType


def validate_recipient_name(name: Optional[str]) -> str:
    """Return the trimmed recipient name or raise if it is blank."""
    if not name or not name.strip():
        raise ValidationError("Please enter the name of the person being served")
    return name.strip()


def validate_service_ids(service_ids: Sequence[int]) -> None:
    if not service_ids:
        raise ValidationError("Please select at least one service")
    if len(set(service_ids)) != len(service_ids):
        raise ValidationError("Each service can only be selected once")


def validate_service_combination(
    services: Sequence[Service],
) -> Tuple[Service, List[Service]]:
    """Split the selection into its single base service and its add-ons.

    Raises ValidationError on the first rule the selection breaks.
    """
    if not services:
        raise ValidationError("Please select at least one service")

    for service in services:
        if not service.is_active:
            raise ValidationError(f'"{service.name}" is not currently offered')

    base_services = [s for s in services if s.is_base_candidate]
    addons = [s for s in services if not s.is_base_candidate]

    if not base_services:
        raise ValidationError(
            "Please select a base service (General, Modern Cut, or Bossing)"
        )
    if len(base_services) > 1:
        raise ValidationError(
            "Can only select one base service",
            {"base_service_ids": [s.id for s in base_services]},
        )

    base_service = base_services[0]

    for addon in addons:
        if not addon.is_addon:
            raise ValidationError(
                f'"{addon.name}" cannot be booked as an add-on',
                {"service_id": addon.id},
            )

    if base_service.service_type == ServiceType.BOSSING.value and addons:
        raise ValidationError(
            "Bossing services are premium packages and cannot be combined with "
            "add-ons",
            {"base_service_id": base_service.id},
        )

    for addon in addons:
        if base_service.includes_addon(addon.name):
            raise ValidationError(
                f'"{addon.name}" is already included in {base_service.name}',
                {"base_service_id": base_service.id, "addon_id": addon.id},
            )

    return base_service, addons
