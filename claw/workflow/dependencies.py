"""
Dependency scheduling for stories.

Turns a feature's flat story list into a graph keyed by story id and answers
"what runs next". State is kept incrementally: completing a story only
re-checks the stories it blocks.

Node statuses:
  pending      - waiting on at least one blocker
  ready        - every blocker is complete
  in_progress  - handed to the agent
  complete     - done
  blocked      - external blocker; terminal for scheduling until reset_story()

No I/O happens here; the session loop owns persistence.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

NODE_PENDING = "pending"
NODE_READY = "ready"
NODE_IN_PROGRESS = "in_progress"
NODE_COMPLETE = "complete"
NODE_BLOCKED = "blocked"

# Statuses the ready-recompute leaves alone
_SETTLED = (NODE_COMPLETE, NODE_IN_PROGRESS, NODE_BLOCKED)

STATUS_ICONS = {
    NODE_COMPLETE: "✅",
    NODE_IN_PROGRESS: "🔄",
    NODE_READY: "📋",
    NODE_BLOCKED: "🚫",
    NODE_PENDING: "⏳",
}


@dataclass
class DependencyNode:
    id: str
    title: str
    status: str = NODE_PENDING
    blocked_by: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)


@dataclass
class DependencyGraph:
    nodes: dict[str, DependencyNode]
    order: list[str]  # Topological order


@dataclass
class ProposedStory:
    """A story before ids exist; dependencies refer to other titles."""
    title: str
    scope: list[str] = field(default_factory=list)
    repos: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)


def _seed_status(story_status: str) -> str:
    # Skipped stories never run again and do not satisfy their dependents
    if story_status == "skipped":
        return NODE_BLOCKED
    if story_status in (NODE_COMPLETE, NODE_IN_PROGRESS, NODE_BLOCKED):
        return story_status
    return NODE_PENDING


class DependencyManager:
    def __init__(self):
        self.nodes: dict[str, DependencyNode] = {}

    # --- building ---

    def build_from_stories(self, stories: Iterable) -> DependencyGraph:
        """Rebuild the graph from objects with id, title, status and blocked_by."""
        self.nodes = {}
        for story in stories:
            self.nodes[story.id] = DependencyNode(
                id=story.id,
                title=story.title,
                status=_seed_status(story.status),
                blocked_by=list(story.blocked_by or []),
            )
        return self._finish_build()

    def build_from_proposed(self, stories: list[ProposedStory]) -> DependencyGraph:
        """Rebuild the graph from proposed stories, numbering them from 1.

        Dependencies are matched by title; titles that match no story are dropped.
        """
        title_to_id = {s.title: str(i) for i, s in enumerate(stories, start=1)}
        self.nodes = {}
        for i, story in enumerate(stories, start=1):
            node_id = str(i)
            self.nodes[node_id] = DependencyNode(
                id=node_id,
                title=story.title,
                blocked_by=[title_to_id[d] for d in story.depends_on if d in title_to_id],
            )
        return self._finish_build()

    def _finish_build(self) -> DependencyGraph:
        for node in self.nodes.values():
            for blocker_id in node.blocked_by:
                blocker = self.nodes.get(blocker_id)
                if blocker is not None and node.id not in blocker.blocks:
                    blocker.blocks.append(node.id)

        for node in self.nodes.values():
            if node.status not in _SETTLED:
                node.status = NODE_READY if self._blockers_complete(node) else NODE_PENDING

        return DependencyGraph(nodes=self.nodes, order=self.get_topological_order())

    def _blockers_complete(self, node: DependencyNode) -> bool:
        """Unknown blocker ids count as unsatisfied."""
        for blocker_id in node.blocked_by:
            blocker = self.nodes.get(blocker_id)
            if blocker is None or blocker.status != NODE_COMPLETE:
                return False
        return True

    # --- queries ---

    def get_node(self, story_id: str) -> Optional[DependencyNode]:
        return self.nodes.get(story_id)

    def get_all_nodes(self) -> list[DependencyNode]:
        return list(self.nodes.values())

    def get_ready_stories(self) -> list[DependencyNode]:
        return [n for n in self.nodes.values() if n.status == NODE_READY]

    def get_next_story(self) -> Optional[DependencyNode]:
        """First ready node in topological order, or None."""
        for node_id in self.get_topological_order():
            node = self.nodes[node_id]
            if node.status == NODE_READY:
                return node
        return None

    def get_topological_order(self) -> list[str]:
        """DFS postorder over blocked_by edges.

        A node already on the recursion stack is not visited again, so cycles
        terminate; the order inside a cycle is arbitrary.
        """
        result: list[str] = []
        visited: set[str] = set()
        on_stack: set[str] = set()

        def visit(node_id: str) -> None:
            if node_id in visited or node_id in on_stack:
                return
            on_stack.add(node_id)
            for blocker_id in self.nodes[node_id].blocked_by:
                if blocker_id in self.nodes:
                    visit(blocker_id)
            on_stack.discard(node_id)
            visited.add(node_id)
            result.append(node_id)

        for node_id in self.nodes:
            visit(node_id)
        return result

    def detect_circular_dependencies(self) -> list[list[str]]:
        """Return every cycle found, each as the DFS path from the revisited node."""
        cycles: list[list[str]] = []
        visited: set[str] = set()
        on_stack: set[str] = set()
        path: list[str] = []

        def dfs(node_id: str) -> None:
            visited.add(node_id)
            on_stack.add(node_id)
            path.append(node_id)
            for blocker_id in self.nodes[node_id].blocked_by:
                if blocker_id not in self.nodes:
                    continue
                if blocker_id in on_stack:
                    cycles.append(path[path.index(blocker_id):])
                elif blocker_id not in visited:
                    dfs(blocker_id)
            path.pop()
            on_stack.discard(node_id)

        for node_id in self.nodes:
            if node_id not in visited:
                dfs(node_id)

        if cycles:
            logger.warning(f"Circular dependencies: {[' -> '.join(c) for c in cycles]}")
        return cycles

    def get_progress(self) -> dict[str, int]:
        counts = {status: 0 for status in STATUS_ICONS}
        for node in self.nodes.values():
            counts[node.status] = counts.get(node.status, 0) + 1
        counts["total"] = len(self.nodes)
        return counts

    def get_dependency_chain(self, story_id: str) -> list[str]:
        """All transitive blockers of a story, deepest first."""
        chain: list[str] = []
        visited: set[str] = set()

        def collect(node_id: str) -> None:
            if node_id in visited:
                return
            visited.add(node_id)
            node = self.nodes.get(node_id)
            if node is None:
                return
            for blocker_id in node.blocked_by:
                collect(blocker_id)
                if blocker_id not in chain and blocker_id != story_id:
                    chain.append(blocker_id)

        collect(story_id)
        return chain

    def get_dependent_chain(self, story_id: str) -> list[str]:
        """All stories that transitively wait on this one, nearest first."""
        chain: list[str] = []
        visited: set[str] = set()

        def collect(node_id: str) -> None:
            if node_id in visited:
                return
            visited.add(node_id)
            node = self.nodes.get(node_id)
            if node is None:
                return
            for blocked_id in node.blocks:
                if blocked_id not in chain and blocked_id != story_id:
                    chain.append(blocked_id)
                collect(blocked_id)

        collect(story_id)
        return chain

    # --- mutation ---

    def mark_in_progress(self, story_id: str) -> bool:
        """Only a ready node can start. Returns False otherwise."""
        node = self.nodes.get(story_id)
        if node is None or node.status != NODE_READY:
            return False
        node.status = NODE_IN_PROGRESS
        return True

    def mark_complete(self, story_id: str) -> list[str]:
        """Complete a node and return ids that became ready as a result."""
        node = self.nodes.get(story_id)
        if node is None:
            return []
        node.status = NODE_COMPLETE

        unblocked = []
        for blocked_id in node.blocks:
            dependent = self.nodes.get(blocked_id)
            if dependent is None or dependent.status != NODE_PENDING:
                continue
            if self._blockers_complete(dependent):
                dependent.status = NODE_READY
                unblocked.append(blocked_id)

        if unblocked:
            logger.debug(f"Story {story_id} complete, unblocked: {unblocked}")
        return unblocked

    def mark_blocked(self, story_id: str) -> None:
        node = self.nodes.get(story_id)
        if node is not None:
            node.status = NODE_BLOCKED

    def add_node(self, story_id: str, title: str, deps: Optional[list[str]] = None) -> DependencyNode:
        """Insert a node mid-run; its status follows the current blocker states."""
        if story_id in self.nodes:
            raise ValueError(f"Story {story_id} already in dependency graph")
        node = DependencyNode(id=story_id, title=title, blocked_by=list(deps or []))
        self.nodes[story_id] = node
        for blocker_id in node.blocked_by:
            blocker = self.nodes.get(blocker_id)
            if blocker is not None:
                blocker.blocks.append(story_id)
        node.status = NODE_READY if self._blockers_complete(node) else NODE_PENDING
        return node

    def clear_dependencies(self, story_id: str) -> None:
        """Drop every blocker of a story so it becomes ready (operator prioritise).

        The node also moves to the front of the run order, so it is the next
        ready story picked.
        """
        node = self.nodes.get(story_id)
        if node is None:
            return
        for blocker_id in node.blocked_by:
            blocker = self.nodes.get(blocker_id)
            if blocker is not None and story_id in blocker.blocks:
                blocker.blocks.remove(story_id)
        node.blocked_by = []
        if node.status == NODE_PENDING:
            node.status = NODE_READY

        rest = [(k, v) for k, v in self.nodes.items() if k != story_id]
        self.nodes.clear()
        self.nodes[story_id] = node
        self.nodes.update(rest)

    def reset_story(self, story_id: str) -> None:
        """Return a node to ready or pending from its current blocker states."""
        node = self.nodes.get(story_id)
        if node is None:
            return
        node.status = NODE_READY if self._blockers_complete(node) else NODE_PENDING

    def visualize(self) -> str:
        lines = []
        for node_id in self.get_topological_order():
            node = self.nodes[node_id]
            deps = f" (after: {', '.join(node.blocked_by)})" if node.blocked_by else ""
            lines.append(f"{STATUS_ICONS.get(node.status, '?')} {node_id}. {node.title}{deps}")
        return "\n".join(lines)
