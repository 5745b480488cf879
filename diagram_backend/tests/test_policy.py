from __future__ import annotations

import unittest

from diagram_backend.app.actions import (
    ChangeContainerOperation,
    ChangeRoutingPointsOperation,
    CreateEdgeOperation,
    CreateNodeOperation,
    DeleteElementOperation,
)
from diagram_backend.app.diagram_config import WORKFLOW_DIAGRAM
from diagram_backend.app.errors import InvalidElementReference
from diagram_backend.app.model_service import ModelIndex, ensure_integrity, visible_subset
from diagram_backend.app.models import ElementAndRoutingPoints, ModelElement, Point
from diagram_backend.app.policy import TypeHintPolicy
from diagram_backend.tests.support import seeded_model


class TypeHintPolicyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.hints = WORKFLOW_DIAGRAM.type_hints()
        self.index = ModelIndex(seeded_model())

    def _validate(self, operation):
        return TypeHintPolicy.validate_operation(
            operation,
            self.index,
            self.hints,
            WORKFLOW_DIAGRAM,
            WORKFLOW_DIAGRAM.hidden_types({"workflow"}),
        )

    def test_session_hints_override_configuration(self) -> None:
        self.hints["task"] = self.hints["task"].model_copy(update={"deletable": False})

        result = self._validate(DeleteElementOperation(element_ids=["task"]))

        self.assertFalse(result.ok)
        self.assertTrue(any("not deletable" in error for error in result.errors), msg=f"Unexpected errors: {result.errors}")

    def test_root_cannot_be_deleted(self) -> None:
        result = self._validate(DeleteElementOperation(element_ids=["root"]))

        self.assertEqual(result.errors, ["The model root cannot be deleted"])

    def test_unknown_node_type_is_rejected(self) -> None:
        result = self._validate(CreateNodeOperation(element_type_id="edge"))

        self.assertTrue(result.errors)
        self.assertEqual(result.invalid_references, [])

    def test_missing_container_is_an_invalid_reference(self) -> None:
        result = self._validate(CreateNodeOperation(element_type_id="task", container_id="ghost"))

        self.assertEqual(result.errors, [])
        self.assertEqual(result.invalid_references, ["Unknown container 'ghost'"])

    def test_element_cannot_move_into_its_own_subtree(self) -> None:
        result = self._validate(ChangeContainerOperation(element_id="task", target_container_id="task_label"))

        self.assertTrue(result.invalid_references)

    def test_non_routable_edges_reject_routing_points(self) -> None:
        self.hints["edge"] = self.hints["edge"].model_copy(update={"routable": False})

        result = self._validate(
            ChangeRoutingPointsOperation(
                new_routing_points=[ElementAndRoutingPoints(element_id="flow", new_routing_points=[Point(x=1, y=1)])]
            )
        )

        self.assertTrue(result.errors)

    def test_edge_with_unrestricted_target_accepts_any_element(self) -> None:
        model = seeded_model()
        model.children.append(ModelElement(type="comment", id="note", position=Point(), size=None))
        index = ModelIndex(model)

        result = TypeHintPolicy.validate_operation(
            CreateEdgeOperation(element_type_id="comment-link", source_element_id="note", target_element_id="lane"),
            index,
            self.hints,
            WORKFLOW_DIAGRAM,
        )

        self.assertTrue(result.ok, msg=f"Unexpected result: {result}")

    def test_check_edge_on_unknown_type(self) -> None:
        result = TypeHintPolicy.check_edge(None, "start", "task", self.index)

        self.assertEqual(result.errors, ["Unknown edge type"])


class ModelIntegrityTests(unittest.TestCase):
    def test_duplicate_ids_are_rejected(self) -> None:
        model = seeded_model()
        model.children.append(ModelElement(type="task", id="start"))

        with self.assertRaises(InvalidElementReference) as raised:
            ensure_integrity(model)

        self.assertEqual(raised.exception.details, {"duplicateIds": ["start"]})

    def test_dangling_edges_are_rejected(self) -> None:
        model = seeded_model()
        model.children.append(ModelElement(type="edge", id="loose", source_id="start", target_id="ghost"))

        with self.assertRaises(InvalidElementReference):
            ensure_integrity(model)

    def test_visible_subset_drops_hidden_elements_and_their_edges(self) -> None:
        model = seeded_model()
        model.children.append(ModelElement(type="comment", id="note"))
        model.children.append(ModelElement(type="comment-link", id="link", source_id="note", target_id="task"))

        visible = visible_subset(model, WORKFLOW_DIAGRAM.hidden_types({"workflow"}))
        hidden_workflow = visible_subset(model, WORKFLOW_DIAGRAM.hidden_types({"annotations"}))

        self.assertEqual([child.id for child in visible.children], ["start", "task", "lane", "flow"])
        self.assertEqual([child.id for child in hidden_workflow.children], ["note"])
        self.assertEqual(len(model.children), 6)


if __name__ == "__main__":
    unittest.main()
