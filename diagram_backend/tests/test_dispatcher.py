from __future__ import annotations

import unittest

from diagram_backend.app.actions import RequestModelAction, SetModelAction, UndoAction
from diagram_backend.app.errors import UnknownActionKind
from diagram_backend.app.models import ModelRoot
from diagram_backend.app.registry import ActionRegistry
from diagram_backend.app.services.session_service import SessionManager
from diagram_backend.app.storage import InMemoryModelStore
from diagram_backend.app.telemetry import TELEMETRY
from diagram_backend.tests.support import RecordingSink, envelope, kinds


async def _noop(session, action):
    return []


class ActionRegistryTests(unittest.TestCase):
    def test_register_rejects_unknown_and_duplicate_kinds(self) -> None:
        registry = ActionRegistry()
        registry.register("requestModel", _noop)

        with self.assertRaises(ValueError):
            registry.register("teleport", _noop)
        with self.assertRaises(ValueError):
            registry.register("requestModel", _noop)

    def test_frozen_registry_is_read_only(self) -> None:
        registry = ActionRegistry()
        registry.register_all({"undo", "redo"}, _noop)
        registry.freeze()

        self.assertTrue(registry.frozen)
        self.assertEqual(registry.kinds(), ["redo", "undo"])
        with self.assertRaises(RuntimeError):
            registry.register("requestModel", _noop)

    def test_lookup_of_unregistered_kind_raises(self) -> None:
        registry = ActionRegistry()

        with self.assertRaises(UnknownActionKind):
            registry.lookup("requestModel")

    def test_session_manager_registers_every_client_kind(self) -> None:
        manager = SessionManager(InMemoryModelStore())

        for kind in (
            "requestModel",
            "requestTools",
            "requestLayers",
            "requestTypeHints",
            "requestOperations",
            "computedBounds",
            "createNode",
            "createEdge",
            "deleteElement",
            "changeBounds",
            "changeContainer",
            "changeRoutingPoints",
            "reconnectEdge",
            "applyLabelEdit",
            "undo",
            "redo",
            "toggleLayer",
            "selectElements",
            "saveModel",
            "requestExport",
            "requestCheckEdge",
            "disposeClientSession",
            "identifiableRequestAction",
            "identifiableResponseAction",
        ):
            self.assertIn(kind, manager.registry.kinds())
        self.assertTrue(manager.registry.frozen)


class DispatcherTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        TELEMETRY.reset()
        self.manager = SessionManager(InMemoryModelStore())

    async def test_unregistered_kind_comes_back_as_error_status(self) -> None:
        outbound = await self.manager.dispatch(
            envelope("client-1", SetModelAction(new_root=ModelRoot(type="graph", id="root")))
        )

        self.assertEqual(kinds(outbound), ["serverStatus"])
        status = outbound[0].action
        self.assertEqual(status.severity, "error")
        self.assertEqual(status.code, "unknown_action_kind")
        self.assertEqual(outbound[0].client_id, "client-1")

    async def test_non_capability_action_without_session_is_unknown_session(self) -> None:
        outbound = await self.manager.dispatch(envelope("nobody", UndoAction()))

        self.assertEqual(kinds(outbound), ["serverStatus"])
        self.assertEqual(outbound[0].action.code, "unknown_session")
        self.assertIsNone(self.manager.get_session("nobody"))

    async def test_outbound_envelopes_reach_observers(self) -> None:
        sink = RecordingSink()
        self.manager.observers.subscribe("client-1", sink)

        outbound = await self.manager.dispatch(envelope("client-1", RequestModelAction()))

        self.assertEqual(kinds(outbound), ["setModel"])
        self.assertEqual(sink.received, outbound)

    async def test_unsubscribed_observer_receives_nothing(self) -> None:
        sink = RecordingSink()
        remove = self.manager.observers.subscribe("client-1", sink)
        remove()

        await self.manager.dispatch(envelope("client-1", RequestModelAction()))

        self.assertEqual(sink.received, [])
        self.assertEqual(self.manager.observers.observer_count("client-1"), 0)

    async def test_failing_observer_does_not_break_dispatch(self) -> None:
        async def broken(item):
            raise ConnectionError("socket gone")

        healthy = RecordingSink()
        self.manager.observers.subscribe("client-1", broken)
        self.manager.observers.subscribe("client-1", healthy)

        with self.assertLogs("diagram_backend.app.observers", level="WARNING"):
            outbound = await self.manager.dispatch(envelope("client-1", RequestModelAction()))

        self.assertEqual(kinds(outbound), ["setModel"])
        self.assertEqual(kinds(healthy.received), ["setModel"])

    async def test_dispatch_is_tracked_per_action_kind(self) -> None:
        await self.manager.dispatch(envelope("client-1", RequestModelAction()))
        await self.manager.dispatch(envelope("nobody", UndoAction()))

        self.assertEqual(TELEMETRY.handled("action.requestModel"), 1)
        self.assertEqual(TELEMETRY.handled("action.undo"), 1)
        snapshot = TELEMETRY.snapshot()
        self.assertIn("action.requestModel", snapshot["actions"])


if __name__ == "__main__":
    unittest.main()
