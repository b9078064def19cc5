"""
Bounded traversal over parsed JSON values.

Values coming out of json.loads are classified into an explicit JsonKind and
walked breadth-first with both a depth limit and a visited-node budget, so a
pathological state blob cannot blow up extraction time.
"""

from collections import deque
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Tuple

DEFAULT_MAX_DEPTH = 12
DEFAULT_MAX_NODES = 20000


class JsonKind(Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


def kind_of(value: Any) -> JsonKind:
    if value is None:
        return JsonKind.NULL
    # bool before number: bool is an int subclass
    if isinstance(value, bool):
        return JsonKind.BOOL
    if isinstance(value, (int, float)):
        return JsonKind.NUMBER
    if isinstance(value, str):
        return JsonKind.STRING
    if isinstance(value, (list, tuple)):
        return JsonKind.ARRAY
    if isinstance(value, dict):
        return JsonKind.OBJECT
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


class BoundedJsonVisitor:
    """Walks a JSON value, yielding (depth, node) until a bound is hit."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, max_nodes: int = DEFAULT_MAX_NODES):
        self.max_depth = max_depth
        self.max_nodes = max_nodes
        self.visited = 0
        self.budget_exhausted = False

    def walk(self, root: Any) -> Iterator[Tuple[int, Any]]:
        self.visited = 0
        self.budget_exhausted = False
        queue = deque([(0, root)])
        while queue:
            if self.visited >= self.max_nodes:
                self.budget_exhausted = True
                return
            depth, node = queue.popleft()
            self.visited += 1
            yield depth, node

            if depth >= self.max_depth:
                continue
            kind = kind_of(node)
            if kind is JsonKind.OBJECT:
                for child in node.values():
                    if kind_of(child) in (JsonKind.OBJECT, JsonKind.ARRAY):
                        queue.append((depth + 1, child))
            elif kind is JsonKind.ARRAY:
                for child in node:
                    if kind_of(child) in (JsonKind.OBJECT, JsonKind.ARRAY):
                        queue.append((depth + 1, child))

    def find_first(self, root: Any, predicate: Callable[[Any], bool]) -> Optional[Any]:
        for _, node in self.walk(root):
            if predicate(node):
                return node
        return None
