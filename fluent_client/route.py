"""Dynamic request builder.

A Route is an immutable chain of path segments. Attribute access and calls
extend it; accessing a verb name after at least one segment ends the chain:

    client.dynamic.api.v2.breeds(42).get()      # GET {base}/api/v2/breeds/42
    client.dynamic.api.get.items.post(body)     # first 'get' is a segment

Each step returns a new Route, so a chain never leaks state into the next
one and partial chains can be stored and reused. Names that collide with
Route's own members (path, verb, segments) are reachable through
``route.path("name")``.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping

from fluent_client.models import RequestDescription, ResponseCase

DEFAULT_VERBS = frozenset({"get", "post", "put"})

Dispatcher = Callable[[RequestDescription], ResponseCase]


class Route:
    """Immutable path-segment chain bound to a dispatcher."""

    __slots__ = ("_dispatch", "_segments", "_verbs")

    def __init__(
        self,
        dispatch: Dispatcher,
        segments: Iterable[str] = (),
        verbs: Iterable[str] = DEFAULT_VERBS,
    ) -> None:
        self._dispatch = dispatch
        self._segments = tuple(segments)
        self._verbs = frozenset(verb.lower() for verb in verbs)

    @property
    def segments(self) -> tuple[str, ...]:
        return self._segments

    def path(self, segment: Any) -> Route:
        """Return a new Route with one more segment.

        Numbers are converted with str(); the formatter leaves them verbatim.

        Raises:
            ValueError: If the segment is empty.
        """
        segment = str(segment)
        if not segment:
            raise ValueError("path segments must be non-empty")
        return Route(self._dispatch, self._segments + (segment,), self._verbs)

    def verb(self, name: str) -> Callable[..., ResponseCase]:
        """Return the terminal callable for an HTTP verb.

        Raises:
            ValueError: If no segment has been added yet.
        """
        if not self._segments:
            raise ValueError(f"'{name}' needs at least one path segment before it")
        method = name.lower()
        segments = self._segments
        dispatch = self._dispatch

        def send(body: Any = None, params: Mapping[str, Any] | None = None) -> ResponseCase:
            return dispatch(
                RequestDescription(
                    method=method,
                    segments=segments,
                    body=body,
                    params=dict(params or {}),
                )
            )

        send.__name__ = method
        send.__qualname__ = f"Route.{method}"
        return send

    def __getattr__(self, name: str) -> Any:
        # Private and dunder lookups (copy, pickle, IPython) must not grow the chain.
        if name.startswith("_"):
            raise AttributeError(name)
        if name.lower() in self._verbs and self._segments:
            return self.verb(name)
        return self.path(name)

    def __call__(self, segment: Any) -> Route:
        return self.path(segment)

    def __repr__(self) -> str:
        return f"Route('/{'/'.join(self._segments)}')"
