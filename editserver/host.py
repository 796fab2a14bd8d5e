"""
The editor side of the server.

The protocol engine never touches documents or display surfaces itself.  It
asks a Host to visit files, evaluate expressions and build or tear down
surfaces, and it only ever holds the opaque handles the Host gives back.

ScratchHost is a small in-memory Host: documents are plain text loaded from
disk, surfaces are records, and expressions are Python expressions.
"""

import abc
import logging
import os

from .errors import EvaluationError, SurfaceUnsupported

logger = logging.getLogger(__name__)


class Host(metaclass=abc.ABCMeta):
    """
    Collaborator interface the Executor drives.

    Methods run on the server's trio thread and must not block for long.
    """

    @abc.abstractmethod
    def visit(self, path, position, session):
        """
        Open (or switch to) the document for `path`, moving to `position`
        (a FilePosition or None).  Return a hashable document handle.
        """
        pass

    @abc.abstractmethod
    def evaluate(self, expression, session):
        """
        Evaluate `expression` and return its printed representation.

        Raise EvaluationError (or anything else) when it fails; the message
        goes back to the client.
        """
        pass

    @abc.abstractmethod
    def current_surface(self):
        """Return the handle of the currently active surface, or None."""
        pass

    def can_reuse_current(self):
        """
        Whether the current surface is fit to show a client's documents.

        A headless host whose only surface is an internal placeholder should
        say no, so clients that offered a terminal get a surface of their own.
        """
        return self.current_surface() is not None

    def requires_graphical(self):
        """Whether this platform can only build graphical surfaces."""
        return False

    def select_display(self, display):
        pass

    @abc.abstractmethod
    def create_minimal_surface(self, session, device, type, parameters):
        pass

    @abc.abstractmethod
    def create_graphical_surface(self, session, display, parent_id, parameters):
        """Raise SurfaceUnsupported when there is no graphical capability."""
        pass

    @abc.abstractmethod
    def create_text_surface(self, session, device, type, parameters):
        pass

    @abc.abstractmethod
    def delete_surface(self, surface):
        pass

    def suspend_surface(self, surface):
        pass

    def resume_surface(self, surface):
        pass

    def needs_unwind(self):
        """
        True while a modal interaction is in progress and the host cannot
        switch documents synchronously.
        """
        return False

    def request_unwind(self):
        """
        Ask the host to leave its modal interaction.  The host calls
        EditServer.environment_ready() once it is done.
        """
        pass


class Document:
    def __init__(self, path, text=""):
        self.path = path
        self.text = text
        self.line = 1
        self.column = 0

    def __repr__(self):
        return f"Document({self.path!r})"


class Surface:
    def __init__(self, kind, **params):
        self.kind = kind
        self.params = params
        self.suspended = False
        self.live = True

    def __repr__(self):
        return f"Surface({self.kind!r})"


class ScratchHost(Host):
    """
    In-memory host.

    Documents are keyed by absolute path and shared between sessions.
    Expressions are evaluated as Python against `namespace`, which holds
    `host` so clients can poke at the server state.
    """

    def __init__(self, graphical=False, namespace=None):
        self.graphical = graphical
        self.documents = {}
        self.surfaces = []
        self.terminal = Surface("initial")
        self.selected = self.terminal
        self.display = None
        self.namespace = {"host": self}
        if namespace:
            self.namespace.update(namespace)

    def visit(self, path, position, session):
        doc = self.documents.get(path)
        if doc is None:
            text = ""
            if os.path.exists(path):
                with open(path, encoding="utf-8", errors="replace") as f:
                    text = f.read()
            doc = Document(path, text)
            self.documents[path] = doc
            logger.debug(f"new document {path}")
        if position is not None:
            doc.line, doc.column = position.line, position.column
        return doc

    def evaluate(self, expression, session):
        try:
            value = eval(expression, self.namespace)
        except Exception as e:
            raise EvaluationError(f"{type(e).__name__}: {e}") from e
        return repr(value)

    def current_surface(self):
        return self.selected

    def can_reuse_current(self):
        # the initial surface is a placeholder and can't show documents
        return self.selected is not self.terminal

    def select_display(self, display):
        self.display = display

    def _new_surface(self, kind, **params):
        surface = Surface(kind, **params)
        self.surfaces.append(surface)
        self.selected = surface
        return surface

    def create_minimal_surface(self, session, device, type, parameters):
        return self._new_surface(
            "minimal", device=device, type=type, parameters=parameters
        )

    def create_graphical_surface(self, session, display, parent_id, parameters):
        if not self.graphical:
            raise SurfaceUnsupported("no window system available")
        return self._new_surface(
            "graphical",
            display=display,
            parent_id=parent_id,
            parameters=parameters,
        )

    def create_text_surface(self, session, device, type, parameters):
        return self._new_surface(
            "text", device=device, type=type, parameters=parameters
        )

    def delete_surface(self, surface):
        surface.live = False
        if surface in self.surfaces:
            self.surfaces.remove(surface)
        if self.selected is surface:
            self.selected = self.surfaces[-1] if self.surfaces else self.terminal

    def suspend_surface(self, surface):
        surface.suspended = True

    def resume_surface(self, surface):
        surface.suspended = False
