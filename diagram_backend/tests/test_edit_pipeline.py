from __future__ import annotations

import unittest

from diagram_backend.app.actions import (
    ApplyLabelEditOperation,
    ChangeBoundsOperation,
    ChangeContainerOperation,
    ChangeRoutingPointsOperation,
    CreateEdgeOperation,
    CreateNodeOperation,
    DeleteElementOperation,
    ReconnectEdgeOperation,
    RedoAction,
    RequestCheckEdgeAction,
    RequestExportAction,
    SaveModelAction,
    UndoAction,
)
from diagram_backend.app.models import DEFAULT_SOURCE_URI, Dimension, ElementAndBounds, ElementAndRoutingPoints, Point
from diagram_backend.app.services.session_service import SessionManager
from diagram_backend.app.storage import InMemoryModelStore
from diagram_backend.tests.support import envelope, kinds, open_ready_session, seeded_model


class EditPipelineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = InMemoryModelStore()
        self.store.save(DEFAULT_SOURCE_URI, seeded_model())
        self.manager = SessionManager(self.store)
        await open_ready_session(self.manager)
        self.session = self.manager.get_session("client-1")

    async def _edit(self, action):
        return await self.manager.dispatch(envelope("client-1", action))

    def _child_ids(self, element_id: str = "root") -> list[str]:
        root = self.session.working_root
        if element_id == root.id:
            return [child.id for child in root.children]
        for child in root.children:
            if child.id == element_id:
                return [grandchild.id for grandchild in child.children]
        raise AssertionError(f"{element_id} not found")

    def assertRejected(self, outbound, code: str) -> None:
        self.assertEqual(kinds(outbound), ["serverStatus"])
        self.assertEqual(outbound[0].action.code, code)
        self.assertEqual(outbound[0].action.severity, "error")

    async def test_non_deletable_element_is_rejected_without_changes(self) -> None:
        before = self.session.root.model_copy(deep=True)

        outbound = await self._edit(DeleteElementOperation(element_ids=["start"]))

        self.assertRejected(outbound, "operation_not_permitted")
        self.assertEqual(self.session.root, before)
        self.assertEqual(self.session.model_revision, 0)
        self.assertFalse(self.session.dirty)

    async def test_delete_cascades_to_dependent_edges(self) -> None:
        outbound = await self._edit(DeleteElementOperation(element_ids=["task"]))

        self.assertEqual(kinds(outbound), ["updateModel", "setDirtyState"])
        self.assertEqual(self._child_ids(), ["start", "lane"])
        self.assertEqual(outbound[0].action.new_root.revision, 1)
        self.assertTrue(outbound[1].action.is_dirty)

    async def test_unknown_reference_leaves_model_unchanged(self) -> None:
        outbound = await self._edit(DeleteElementOperation(element_ids=["ghost"]))

        self.assertRejected(outbound, "invalid_element_reference")
        self.assertEqual(self.session.model_revision, 0)

    async def test_containment_follows_container_hints(self) -> None:
        rejected = await self._edit(CreateNodeOperation(element_type_id="lane", container_id="lane"))
        self.assertRejected(rejected, "operation_not_permitted")

        not_a_container = await self._edit(CreateNodeOperation(element_type_id="decision", container_id="task"))
        self.assertRejected(not_a_container, "operation_not_permitted")

        accepted = await self._edit(CreateNodeOperation(element_type_id="decision", container_id="lane"))
        self.assertEqual(kinds(accepted), ["requestBounds", "setDirtyState"])
        self.assertEqual(len(self._child_ids("lane")), 1)

    async def test_create_in_hidden_layer_is_rejected(self) -> None:
        outbound = await self._edit(CreateNodeOperation(element_type_id="comment"))

        self.assertRejected(outbound, "operation_not_permitted")

    async def test_edge_endpoints_follow_edge_hints(self) -> None:
        rejected = await self._edit(
            CreateEdgeOperation(element_type_id="edge", source_element_id="task", target_element_id="start")
        )
        self.assertRejected(rejected, "operation_not_permitted")

        accepted = await self._edit(
            CreateEdgeOperation(element_type_id="edge", source_element_id="start", target_element_id="task")
        )
        self.assertEqual(kinds(accepted), ["updateModel", "setDirtyState"])
        edges = [child for child in self.session.root.children if child.is_edge]
        self.assertEqual(len(edges), 2)

    async def test_reconnect_checks_new_endpoints(self) -> None:
        rejected = await self._edit(
            ReconnectEdgeOperation(edge_element_id="flow", source_element_id="task", target_element_id="start")
        )
        self.assertRejected(rejected, "operation_not_permitted")

        missing = await self._edit(
            ReconnectEdgeOperation(edge_element_id="task", source_element_id="start", target_element_id="task")
        )
        self.assertRejected(missing, "invalid_element_reference")

    async def test_move_is_allowed_but_resize_needs_resizable(self) -> None:
        resize = await self._edit(
            ChangeBoundsOperation(
                new_bounds=[ElementAndBounds(element_id="start", new_size=Dimension(width=60, height=60))]
            )
        )
        self.assertRejected(resize, "operation_not_permitted")

        move = await self._edit(
            ChangeBoundsOperation(
                new_bounds=[
                    ElementAndBounds(
                        element_id="start",
                        new_position=Point(x=5, y=5),
                        new_size=Dimension(width=30, height=30),
                    )
                ]
            )
        )
        self.assertEqual(kinds(move), ["updateModel", "setDirtyState"])
        self.assertEqual(self.session.root.children[0].position, Point(x=5, y=5))

    async def test_change_container(self) -> None:
        outbound = await self._edit(ChangeContainerOperation(element_id="task", target_container_id="lane"))

        self.assertEqual(kinds(outbound), ["updateModel", "setDirtyState"])
        self.assertEqual(self._child_ids(), ["start", "lane", "flow"])
        self.assertEqual(self._child_ids("lane"), ["task"])

        rejected = await self._edit(ChangeContainerOperation(element_id="lane", target_container_id="root"))
        self.assertRejected(rejected, "operation_not_permitted")

    async def test_routing_points(self) -> None:
        outbound = await self._edit(
            ChangeRoutingPointsOperation(
                new_routing_points=[ElementAndRoutingPoints(element_id="flow", new_routing_points=[Point(x=50, y=15)])]
            )
        )

        self.assertEqual(kinds(outbound), ["updateModel", "setDirtyState"])
        self.assertEqual(self.session.root.children[3].routing_points, [Point(x=50, y=15)])

    async def test_label_edit_requests_new_measurement(self) -> None:
        outbound = await self._edit(ApplyLabelEditOperation(label_id="task_label", text="Approve"))

        self.assertEqual(kinds(outbound), ["requestBounds", "setDirtyState"])
        label = self.session.working_root.children[1].children[0]
        self.assertEqual(label.text, "Approve")
        self.assertIsNone(label.size)

        empty = await self._edit(ApplyLabelEditOperation(label_id="task_label", text="  "))
        self.assertEqual(empty, [])
        self.assertEqual(len(self.session.queued_edits), 1)

    async def test_empty_label_is_rejected(self) -> None:
        outbound = await self._edit(ApplyLabelEditOperation(label_id="task_label", text="  "))

        self.assertRejected(outbound, "operation_not_permitted")

    async def test_undo_and_redo(self) -> None:
        await self._edit(DeleteElementOperation(element_ids=["task"]))

        undone = await self._edit(UndoAction())
        self.assertEqual(kinds(undone), ["updateModel"])
        self.assertEqual(self._child_ids(), ["start", "task", "lane", "flow"])
        self.assertEqual(self.session.model_revision, 2)

        redone = await self._edit(RedoAction())
        self.assertEqual(kinds(redone), ["updateModel"])
        self.assertEqual(self._child_ids(), ["start", "lane"])
        self.assertEqual(self.session.model_revision, 3)

        nothing = await self._edit(RedoAction())
        self.assertEqual(nothing[0].action.severity, "info")
        self.assertEqual(nothing[0].action.code, "redo_empty")

    async def test_check_edge_reports_without_editing(self) -> None:
        valid = await self._edit(
            RequestCheckEdgeAction(edge_type="edge", source_element_id="start", target_element_id="task")
        )
        invalid = await self._edit(
            RequestCheckEdgeAction(edge_type="edge", source_element_id="task", target_element_id="start")
        )

        self.assertTrue(valid[0].action.is_valid)
        self.assertIsNone(valid[0].action.reason)
        self.assertFalse(invalid[0].action.is_valid)
        self.assertIn("start", invalid[0].action.reason)
        self.assertEqual(self.session.model_revision, 0)

    async def test_save_clears_dirty_state(self) -> None:
        await self._edit(DeleteElementOperation(element_ids=["task"]))
        self.assertTrue(self.session.dirty)

        outbound = await self._edit(SaveModelAction())

        self.assertEqual(kinds(outbound), ["setDirtyState"])
        self.assertFalse(outbound[0].action.is_dirty)
        self.assertFalse(self.session.dirty)
        stored = self.store.load(DEFAULT_SOURCE_URI)
        self.assertEqual([child.id for child in stored.children], ["start", "lane"])
        self.assertIsNone(stored.revision)

    async def test_export_returns_committed_model(self) -> None:
        outbound = await self._edit(RequestExportAction())

        content = outbound[0].action.content
        self.assertEqual(content["id"], "root")
        self.assertEqual(content["revision"], 0)
        self.assertEqual(len(content["children"]), 4)


if __name__ == "__main__":
    unittest.main()
