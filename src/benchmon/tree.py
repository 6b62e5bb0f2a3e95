"""Build and render the process tree of a final snapshot."""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from benchmon.models import ProcessRecord, ProcessSnapshot


@dataclass(slots=True, frozen=True)
class TreeNode:
    """A process and its children, fully materialized."""

    record: ProcessRecord
    children: tuple["TreeNode", ...] = ()


@dataclass(slots=True, frozen=True)
class ProcessTree:
    """
    Read-only process tree derived from one snapshot.

    Attributes:
        children: Parent pid -> child pids, in snapshot order.
        snapshot: The snapshot the tree was built from.
        roots: Processes whose parent is not part of the snapshot.
    """

    children: Mapping[int, tuple[int, ...]]
    snapshot: ProcessSnapshot
    roots: tuple[TreeNode, ...]


def build_parent_child_map(snapshot: ProcessSnapshot) -> dict[int, tuple[int, ...]]:
    """Group pids by parent pid, keeping snapshot order."""
    grouped: dict[int, list[int]] = {}
    for record in snapshot.values():
        grouped.setdefault(record.ppid, []).append(record.pid)
    return {ppid: tuple(pids) for ppid, pids in grouped.items()}


def build_tree(snapshot: ProcessSnapshot) -> ProcessTree:
    """
    Materialize the process tree of ``snapshot``.

    Every pid appears at most once. Pids that cannot be reached from a root
    (parent links forming a cycle) become roots themselves.
    """
    frozen = MappingProxyType(dict(snapshot))
    children = build_parent_child_map(frozen)
    visited: set[int] = set()

    def materialize(root: int) -> TreeNode:
        # iterative so arbitrarily deep parent chains cannot overflow the stack
        visited.add(root)
        kids_of: dict[int, list[int]] = {}
        order: list[int] = []
        stack = [root]
        while stack:
            pid = stack.pop()
            order.append(pid)
            kids = [child for child in children.get(pid, ()) if child not in visited]
            visited.update(kids)
            kids_of[pid] = kids
            stack.extend(reversed(kids))

        # children always follow their parent in ``order``
        nodes: dict[int, TreeNode] = {}
        for pid in reversed(order):
            nodes[pid] = TreeNode(
                frozen[pid], tuple(nodes.pop(child) for child in kids_of[pid])
            )
        return nodes[root]

    roots = [
        materialize(pid)
        for pid, record in frozen.items()
        if record.ppid not in frozen and pid not in visited
    ]
    for pid in frozen:
        if pid not in visited:
            roots.append(materialize(pid))

    return ProcessTree(MappingProxyType(children), frozen, tuple(roots))


def walk(tree: ProcessTree) -> Iterator[tuple[int, ProcessRecord]]:
    """Yield ``(depth, record)`` pairs depth-first."""
    stack = [(0, node) for node in reversed(tree.roots)]
    while stack:
        depth, node = stack.pop()
        yield depth, node.record
        stack.extend((depth + 1, child) for child in reversed(node.children))


def render_tree(tree: ProcessTree, indent: str = "  ") -> list[str]:
    """Render one line per process, indented by depth."""
    return [f"{indent * depth}{record}" for depth, record in walk(tree)]
