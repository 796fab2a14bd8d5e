import enum
import functools
import logging

import trio

from .dispatcher import (
    GraphicalSurface,
    MinimalSurface,
    NoSurface,
    ReuseCurrent,
    TextSurface,
)
from .errors import SurfaceUnsupported
from .framing import frame_notice, frame_reply

logger = logging.getLogger(__name__)


class Teardown(enum.Enum):
    # client asked not to wait
    NOWAIT = "nowait"
    # nothing to wait for
    EMPTY = "empty"
    # wait for document_done() or surface_closed()
    WAIT = "wait"


def teardown_policy(session, plan):
    if plan.wants_no_wait:
        return Teardown.NOWAIT
    if not session.documents and not session.keep_alive:
        return Teardown.EMPTY
    return Teardown.WAIT


class Executor:
    """
    Runs RequestPlans against the host and decides what becomes of the
    session afterwards.

    `close_session` is the server's teardown function; the executor calls it
    for no-wait and empty sessions, and after reporting failed evaluations.
    """

    def __init__(self, host, close_session, config):
        self.host = host
        self.close_session = close_session
        self.config = config

    async def execute(self, session, plan):
        session.environment.extend(plan.environment)
        if plan.directory:
            session.directory = plan.directory
        session.keep_alive = session.keep_alive or plan.keep_session_alive

        created = await self.open_surface(session, plan)

        if (created or plan.files) and self.host.needs_unwind():
            # the host is in the middle of a modal interaction; finish the
            # request once it has unwound
            logger.debug(f"session {session.id}: waiting for the host to unwind")
            session.arm_continuation(functools.partial(self.run, session, plan))
            self.host.request_unwind()
            return

        await self.run(session, plan)

    async def open_surface(self, session, plan):
        """Returns True when a new surface was built for this session."""
        request = plan.surface_request
        params = plan.surface_parameters

        if isinstance(request, NoSurface):
            return False
        if isinstance(request, ReuseCurrent):
            if request.display:
                self.host.select_display(request.display)
            session.surface = self.host.current_surface()
            return False

        if isinstance(request, MinimalSurface):
            surface = self.host.create_minimal_surface(
                session, request.device, request.type, params
            )
        elif isinstance(request, GraphicalSurface):
            try:
                surface = self.host.create_graphical_surface(
                    session, request.display, request.parent_id, params
                )
            except SurfaceUnsupported as e:
                logger.info(f"session {session.id}: {e}")
                await session.send(frame_notice("window-system-unsupported"))
                return False
        elif isinstance(request, TextSurface):
            surface = self.host.create_text_surface(
                session, request.device, request.type, params
            )
        else:
            raise TypeError(f"unknown surface request: {request!r}")

        logger.info(f"session {session.id}: new surface {surface!r}")
        session.surface = surface
        session.owns_surface = True
        return True

    async def run(self, session, plan):
        for path, position in plan.files:
            document = self.host.visit(path, position, session)
            # a no-wait client is not waiting on anything
            if not plan.wants_no_wait:
                session.documents.add(document)

        for action in plan.actions:
            if session.surface is None:
                logger.debug(f"session {session.id}: no surface to {action}")
            elif action == "suspend":
                self.host.suspend_surface(session.surface)
            else:
                self.host.resume_surface(session.surface)

        failed = False
        for expression in plan.expressions:
            try:
                text = self.host.evaluate(expression, session)
            except Exception as e:
                logger.warning(
                    f"session {session.id}: evaluating {expression!r}: {e}"
                )
                await session.send(frame_notice("error", e))
                failed = True
                continue
            await session.send_lines(
                frame_reply(text, self.config.max_message_size)
            )

        if failed:
            await trio.sleep(self.config.error_delay)
            self.close_session(session, "evaluation failed")
            return

        policy = teardown_policy(session, plan)
        if policy is Teardown.NOWAIT:
            # surfaces built for a no-wait client outlive it
            session.owns_surface = False
            self.close_session(session, "nowait client")
        elif policy is Teardown.EMPTY:
            self.close_session(session, "empty client")
