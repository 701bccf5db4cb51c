from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Union

from app.domain.errors import EmptySelectionError, InvalidLabelFilterError, InvalidSelectionError


@dataclass(frozen=True, order=True)
class LabelFilter:
    key: str
    value: str

    @classmethod
    def create(cls, key: str, value: str) -> "LabelFilter":
        normalized_key = (key or "").strip()
        normalized_value = (value or "").strip()
        if not normalized_key:
            raise InvalidLabelFilterError("label_filter_key_required")
        if not normalized_value:
            raise InvalidLabelFilterError(f"label_filter_value_required:{normalized_key}")
        return cls(key=normalized_key, value=normalized_value)

    @classmethod
    def parse(cls, raw: str) -> "LabelFilter":
        if "=" not in raw:
            raise InvalidLabelFilterError(f"label_filter_must_be_key_value:{raw}")
        key, value = raw.split("=", 1)
        return cls.create(key, value)

    def __str__(self) -> str:
        return f"{self.key}={self.value}"


@dataclass(frozen=True)
class AutomaticSelection:
    strategy = "automatic"


@dataclass(frozen=True)
class LabelSelection:
    labels: frozenset[LabelFilter]
    strategy = "labels"


@dataclass(frozen=True)
class DeviceSelection:
    device_ids: frozenset[int]
    strategy = "devices"


CanarySelection = Union[AutomaticSelection, LabelSelection, DeviceSelection]


def by_labels(labels: Iterable[LabelFilter | str]) -> LabelSelection:
    filters = frozenset(item if isinstance(item, LabelFilter) else LabelFilter.parse(item) for item in labels)
    if not filters:
        raise EmptySelectionError("canary_label_selection_empty")
    return LabelSelection(labels=filters)


def by_devices(device_ids: Iterable[int]) -> DeviceSelection:
    ids = frozenset(int(device_id) for device_id in device_ids)
    if not ids:
        raise EmptySelectionError("canary_device_selection_empty")
    return DeviceSelection(device_ids=ids)


def selection_from_request(
    *,
    canary_device_labels: list[LabelFilter | str] | None = None,
    canary_device_ids: list[int] | None = None,
) -> CanarySelection:
    """Build the selection from request fields; absent both means automatic."""
    if canary_device_labels is not None and canary_device_ids is not None:
        raise InvalidSelectionError("canary_selection_accepts_labels_or_device_ids_not_both")
    if canary_device_labels is not None:
        return by_labels(canary_device_labels)
    if canary_device_ids is not None:
        return by_devices(canary_device_ids)
    return AutomaticSelection()


def describe_selection(selection: CanarySelection) -> dict[str, object]:
    if isinstance(selection, LabelSelection):
        return {"strategy": selection.strategy, "labels": sorted(str(item) for item in selection.labels)}
    if isinstance(selection, DeviceSelection):
        return {"strategy": selection.strategy, "device_ids": sorted(selection.device_ids)}
    return {"strategy": selection.strategy}
