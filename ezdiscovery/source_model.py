"""
Python source model used to map changed text to methods.

Every positioned ``ast`` node of a file becomes a ``SourceElement`` with
character offsets into the file text. Elements form a tree rooted at the
module, so offsets can be resolved to the smallest element, elements can be
joined at their common ancestor, and functions can be found below or above
an element.
"""
import ast
import os
import re
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence

from ezdiscovery.common import MethodIdentifier, get_logger, to_posix

logger = get_logger(__name__)

METHOD_TYPES = (ast.FunctionDef, ast.AsyncFunctionDef)
SCOPE_TYPES = (ast.Module, ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda)
FUNCTION_SCOPE_TYPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda)
SOURCE_ROOTS = ("src", "lib")
LINE_RE = re.compile(r"[^\r\n]*(?:\r\n|\r|\n)|[^\r\n]+\Z")


def is_python_file(file_path):
    return file_path[-3:] == ".py"


def module_name(filename: str) -> str:
    """``src/pkg/mod.py`` -> ``pkg.mod``, ``pkg/__init__.py`` -> ``pkg``."""
    parts = to_posix(filename)[: -len(".py")].split("/")
    if len(parts) > 1 and parts[0] in SOURCE_ROOTS:
        parts = parts[1:]
    if len(parts) > 1 and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


class SourceElement:
    __slots__ = ("node", "parent", "start", "end", "children")

    def __init__(self, node, parent, start, end):
        self.node = node
        self.parent: Optional["SourceElement"] = parent
        self.start = start
        self.end = end
        self.children: List["SourceElement"] = []

    @property
    def is_method(self) -> bool:
        """Functions declared in a class or module body; local functions are like lambdas."""
        if not isinstance(self.node, METHOD_TYPES):
            return False
        scope = nearest_scope(self.parent)
        return scope is None or not isinstance(scope.node, FUNCTION_SCOPE_TYPES)

    @property
    def name(self) -> Optional[str]:
        return getattr(self.node, "name", None)

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.end

    def ancestors(self) -> Iterator["SourceElement"]:
        """The element itself followed by its parents up to the module."""
        element = self
        while element is not None:
            yield element
            element = element.parent

    def descendants(self) -> Iterator["SourceElement"]:
        for child in self.children:
            yield child
            yield from child.descendants()

    def __repr__(self):
        label = self.name or type(self.node).__name__
        return f"<SourceElement {label} [{self.start}:{self.end}]>"


class SourceFile:
    def __init__(self, filename: str, text: str, mtime: float = None):
        self.filename = filename
        self.text = text
        self.mtime = mtime
        self.module_name = module_name(filename)
        self._lines = split_lines(text)
        self._line_offsets = _line_offsets(self._lines)
        tree = ast.parse(text, filename=filename)
        self.root = SourceElement(tree, None, 0, len(text))
        self._attach_children(self.root, tree)

    def _offset(self, lineno, col_offset) -> int:
        # ast columns are utf-8 byte offsets
        line = self._lines[lineno - 1] if lineno - 1 < len(self._lines) else ""
        prefix = line.encode("utf-8")[:col_offset].decode("utf-8", errors="ignore")
        return self._line_offsets[lineno - 1] + len(prefix)

    def _span(self, node):
        start = self._offset(node.lineno, node.col_offset)
        for decorator in getattr(node, "decorator_list", ()):
            start = min(start, self._offset(decorator.lineno, decorator.col_offset) - 1)
        end = self._offset(node.end_lineno, node.end_col_offset)
        return max(start, 0), end

    def _attach_children(self, parent: SourceElement, node):
        for child in ast.iter_child_nodes(node):
            if getattr(child, "end_lineno", None) is None:
                # unpositioned helper nodes (arguments, operators, contexts)
                self._attach_children(parent, child)
                continue
            start, end = self._span(child)
            element = SourceElement(child, parent, start, end)
            parent.children.append(element)
            self._attach_children(element, child)
        parent.children.sort(key=lambda element: (element.start, -element.end))

    def element_at(self, offset: int) -> Optional[SourceElement]:
        if offset == len(self.text) and offset > 0:
            offset -= 1
        if not self.root.contains(offset):
            return None
        element = self.root
        while True:
            child = next((c for c in element.children if c.contains(offset)), None)
            if child is None:
                return element
            element = child

    def qualified_name(self, element: SourceElement) -> Optional[str]:
        """Dotted name of a module or a class declared in named scopes only."""
        if isinstance(element.node, ast.Module):
            return self.module_name
        if not isinstance(element.node, ast.ClassDef):
            return None
        scope = nearest_scope(element.parent)
        outer = self.qualified_name(scope) if scope else None
        if not outer:
            return None
        return f"{outer}.{element.name}"

    def method_identifier(self, method: SourceElement) -> Optional[MethodIdentifier]:
        scope = nearest_scope(method.parent)
        class_name = self.qualified_name(scope) if scope else None
        if not class_name or not method.name:
            return None
        return MethodIdentifier(class_name, method.name)


def split_lines(text: str) -> List[str]:
    """Lines with their terminators, split the way the tokenizer counts them."""
    return LINE_RE.findall(text)


def _line_offsets(lines: List[str]) -> List[int]:
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))
    return offsets


def nearest_scope(element: Optional[SourceElement]) -> Optional[SourceElement]:
    for candidate in element.ancestors() if element else ():
        if isinstance(candidate.node, SCOPE_TYPES):
            return candidate
    return None


def common_ancestor(elements: Sequence[Optional[SourceElement]]) -> Optional[SourceElement]:
    present = [element for element in elements if element is not None]
    if not present:
        return None
    chains = [list(element.ancestors())[::-1] for element in present]
    ancestor = None
    for level in zip(*chains):
        if any(element is not level[0] for element in level):
            break
        ancestor = level[0]
    return ancestor


def methods_under(element: SourceElement) -> List[SourceElement]:
    return [child for child in element.descendants() if child.is_method]


def enclosing_method(element: SourceElement) -> Optional[SourceElement]:
    """Nearest method at or above ``element``; statements have no body block here."""
    return next((candidate for candidate in element.ancestors() if candidate.is_method), None)


class ReadSession:
    """Consistent view of the source files read through it."""

    def __init__(self, model: "SourceModel"):
        self._model = model
        self._snapshot: Dict[str, Optional[SourceFile]] = {}

    def file(self, filename) -> Optional[SourceFile]:
        if filename not in self._snapshot:
            self._snapshot[filename] = self._model.load(filename)
        return self._snapshot[filename]


class SourceModel:
    """
    - reads python files below rootdir and caches their parsed form
      (keyed by mtime, a changed file is parsed again)
    - hands out read sessions, a file read inside one session keeps
      the same content for the whole session; only loading takes the
      model lock, so sessions of different files run side by side
    """

    def __init__(self, rootdir):
        self.rootdir = rootdir
        self.cache: Dict[str, SourceFile] = {}
        self._lock = threading.RLock()

    @contextmanager
    def read_session(self):
        yield ReadSession(self)

    def load(self, filename) -> Optional[SourceFile]:
        if not is_python_file(filename):
            return None
        path = os.path.join(self.rootdir, filename)
        with self._lock:
            try:
                mtime = os.path.getmtime(path)
                cached = self.cache.get(filename)
                if cached and cached.mtime == mtime:
                    return cached
                with open(path, "r", encoding="utf-8") as source:
                    text = source.read()
                source_file = SourceFile(filename, text, mtime=mtime)
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning(f"Cannot read {filename}: {exc}")
                return None
            except (SyntaxError, ValueError) as exc:
                logger.warning(f"Cannot parse {filename}: {exc}")
                return None
            self.cache[filename] = source_file
            return source_file
