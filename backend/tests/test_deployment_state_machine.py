from __future__ import annotations

from pathlib import Path
import sys
import unittest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.canary_selection import (
    AutomaticSelection,
    DeviceSelection,
    LabelFilter,
    LabelSelection,
    by_labels,
    describe_selection,
    selection_from_request,
)
from app.domain.deployment_state_machine import (
    DeploymentStatus,
    ensure_transition_allowed,
    is_terminal,
    list_deployment_states,
)
from app.domain.errors import (
    EmptySelectionError,
    InvalidLabelFilterError,
    InvalidSelectionError,
    InvalidStateTransitionError,
)


class DeploymentStateMachineTests(unittest.TestCase):
    def test_in_progress_may_reach_every_terminal_state(self) -> None:
        for target in (DeploymentStatus.DONE, DeploymentStatus.CANCELED, DeploymentStatus.FAILED):
            ensure_transition_allowed(DeploymentStatus.IN_PROGRESS, target)

    def test_terminal_states_reject_any_transition(self) -> None:
        for current in (DeploymentStatus.DONE, DeploymentStatus.CANCELED, DeploymentStatus.FAILED):
            self.assertTrue(is_terminal(current))
            with self.assertRaises(InvalidStateTransitionError):
                ensure_transition_allowed(current, DeploymentStatus.IN_PROGRESS)
            with self.assertRaises(InvalidStateTransitionError):
                ensure_transition_allowed(current, DeploymentStatus.CANCELED)

    def test_in_progress_cannot_reenter_itself(self) -> None:
        with self.assertRaises(InvalidStateTransitionError):
            ensure_transition_allowed(DeploymentStatus.IN_PROGRESS, DeploymentStatus.IN_PROGRESS)

    def test_state_listing_and_string_values(self) -> None:
        self.assertEqual(list_deployment_states(), ["in_progress", "done", "failed", "canceled"])
        self.assertFalse(is_terminal("in_progress"))


class CanarySelectionTests(unittest.TestCase):
    def test_no_fields_means_automatic(self) -> None:
        self.assertIsInstance(selection_from_request(), AutomaticSelection)

    def test_labels_and_ids_are_mutually_exclusive(self) -> None:
        with self.assertRaises(InvalidSelectionError):
            selection_from_request(canary_device_labels=["site=lab"], canary_device_ids=[1])

    def test_empty_label_list_is_rejected(self) -> None:
        with self.assertRaises(EmptySelectionError):
            selection_from_request(canary_device_labels=[])
        with self.assertRaises(EmptySelectionError):
            by_labels([])

    def test_empty_device_list_is_rejected(self) -> None:
        with self.assertRaises(EmptySelectionError):
            selection_from_request(canary_device_ids=[])

    def test_label_strings_are_parsed_into_pairs(self) -> None:
        selection = selection_from_request(canary_device_labels=["site = lab", LabelFilter.create("ring", "canary")])
        self.assertIsInstance(selection, LabelSelection)
        self.assertEqual(
            selection.labels,
            frozenset({LabelFilter(key="site", value="lab"), LabelFilter(key="ring", value="canary")}),
        )
        self.assertEqual(describe_selection(selection), {"strategy": "labels", "labels": ["ring=canary", "site=lab"]})

    def test_value_may_contain_equals_sign(self) -> None:
        self.assertEqual(LabelFilter.parse("build=a=b"), LabelFilter(key="build", value="a=b"))

    def test_malformed_label_filters_are_rejected(self) -> None:
        for raw in ("no-separator", "=value", "key="):
            with self.assertRaises(InvalidLabelFilterError):
                LabelFilter.parse(raw)

    def test_device_ids_are_deduplicated(self) -> None:
        selection = selection_from_request(canary_device_ids=[3, 1, 3])
        self.assertIsInstance(selection, DeviceSelection)
        self.assertEqual(describe_selection(selection), {"strategy": "devices", "device_ids": [1, 3]})


if __name__ == "__main__":
    unittest.main()
