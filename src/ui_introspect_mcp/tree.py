"""Element tree reconstruction from per-node remote primitives."""

from __future__ import annotations

import logging

from .client import IntrospectionClient
from .models import ElementNode, Handle

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10
MAX_TREE_DEPTH = 50


class TreeBuilder:
    """Builds an element subtree with one properties fetch per node and one
    children fetch per expanded node.

    The remote protocol has no bulk tree primitive, so a traversal costs up
    to ``2n`` round trips for ``n`` visited nodes. Callers only see
    ``build``; a bulk primitive could replace the traversal behind it.

    Any failing fetch aborts the whole build. No partial tree is returned.
    """

    def __init__(self, client: IntrospectionClient) -> None:
        self.client = client
        self.round_trips = 0

    async def build(self, handle: Handle, max_depth: int = DEFAULT_MAX_DEPTH) -> ElementNode:
        """Fetch the subtree rooted at ``handle``.

        Args:
            handle: Root element.
            max_depth: Levels of children to expand. 0 returns only the root,
                with no children round trip issued.
        """
        self.round_trips = 0
        node = await self._build(handle, max_depth)
        logger.debug(
            "Built tree at %s (max_depth=%d) in %d round trips",
            handle,
            max_depth,
            self.round_trips,
        )
        return node

    async def _build(self, handle: Handle, max_depth: int) -> ElementNode:
        props = await self.client.element_properties(handle)
        self.round_trips += 1
        node = ElementNode(handle=handle, props=props)
        if max_depth == 0:
            return node

        children = await self.client.element_children(handle)
        self.round_trips += 1
        for child in children:
            node.children.append(await self._build(child, max_depth - 1))
        return node
