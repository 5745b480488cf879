"""
Two-phase "compute then apply" layout handshake.

A new model version is either committed directly (server-side layout is
enough) or parked as ``PendingBounds`` while the client measures it. Only a
``computedBounds`` reply carrying the session's current revision commits the
parked candidate; anything else is a late answer to a superseded request.
"""

from __future__ import annotations

import logging

from ..actions import AnyAction, ComputedBoundsAction, RequestBoundsAction, SetModelAction, UpdateModelAction
from ..collaborators import ModelDiffer
from ..errors import StaleBoundsReply
from ..model_service import (
    apply_default_sizes,
    compute_canvas_bounds,
    layout_determined,
    merge_layout,
    stamp_revision,
)
from ..models import ModelRoot
from ..session import Capability, PendingBounds, Session
from ..telemetry import TELEMETRY

logger = logging.getLogger(__name__)


class BoundsCoordinator:
    def __init__(self, differ: ModelDiffer | None = None):
        self.differ = differ

    async def handle(self, session: Session, action: ComputedBoundsAction) -> list[AnyAction]:
        return self.apply_computed_bounds(session, action)

    def submit(self, session: Session, candidate: ModelRoot, *, force_layout: bool = False) -> list[AnyAction]:
        """Publish ``candidate`` as the next model version of ``session``.

        The client is asked to measure when it owns layout and either the
        candidate has unsized elements or ``force_layout`` is set (the visible
        subset changed). Otherwise the candidate is committed right away.
        """
        if session.has_model:
            session.model_revision += 1

        config = session.config
        if config.needs_client_layout and (force_layout or not layout_determined(candidate)):
            superseded = session.pending_bounds
            if superseded is not None:
                logger.debug(
                    "Bounds request for revision %s of %s superseded by revision %s",
                    superseded.requested_revision,
                    session.client_id,
                    session.model_revision,
                )
            session.pending_bounds = PendingBounds(
                requested_revision=session.model_revision,
                candidate_root=candidate.model_copy(deep=True),
            )
            session.refresh_state()
            return [self.bounds_request(session)]

        if config.needs_client_layout:
            committed = candidate.model_copy(deep=True)
            committed.canvas_bounds = compute_canvas_bounds(committed)
        else:
            committed = apply_default_sizes(candidate, config)
        return self._commit(session, committed)

    def bounds_request(self, session: Session) -> RequestBoundsAction:
        pending = session.pending_bounds
        if pending is None:
            raise RuntimeError("no bounds computation is pending")
        return RequestBoundsAction(
            new_root=stamp_revision(session.visible(pending.candidate_root), pending.requested_revision),
            revision=pending.requested_revision,
        )

    def apply_computed_bounds(self, session: Session, action: ComputedBoundsAction) -> list[AnyAction]:
        pending = session.pending_bounds
        # A pending candidate always carries the current revision, so the
        # outstanding request stays valid and is not re-sent here.
        if pending is None or action.revision != session.model_revision:
            TELEMETRY.increment("bounds.stale")
            raise StaleBoundsReply(action.revision, session.model_revision)

        merged = merge_layout(pending.candidate_root, action.bounds, action.alignments, action.routes)
        session.model_revision += 1
        TELEMETRY.increment("bounds.committed")
        return self._commit(session, merged)

    def _commit(self, session: Session, candidate: ModelRoot) -> list[AnyAction]:
        previous = session.root
        session.root = stamp_revision(candidate, session.model_revision)
        session.pending_bounds = None
        visible_root = session.visible(session.root)

        if previous is None:
            session.satisfy(Capability.MODEL)
            return [SetModelAction(new_root=visible_root)]

        session.refresh_state()
        animate = session.config.animated_update
        matches = None
        if animate and self.differ is not None:
            matches = self.differ.diff(session.visible(previous), visible_root)
        return [UpdateModelAction(new_root=visible_root, animate=animate, matches=matches)]
