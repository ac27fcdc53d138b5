"""Shared exclusion filter and name classification helpers.

Every single-snapshot analyzer passes nodes through an
:class:`ExclusionFilter` before ranking so platform noise (runtime
internals, browser globals, tiny objects) does not drown the results.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import FrozenSet, Iterator, Tuple

from heapleak.snapshot.model import HeapNode, HeapSnapshot, NodeKind

# Runtime and browser globals that are never a leak on their own.  Core
# constructor names that double as heap class names (Object, Array, Map,
# Set, DOM element classes) are deliberately absent so instances of those
# classes remain analyzable.
BUILT_IN_NAMES: FrozenSet[str] = frozenset({
    # Language globals
    "Function", "Number", "Boolean", "String", "Symbol", "Date", "Promise",
    "RegExp", "Error", "AggregateError", "EvalError", "RangeError",
    "ReferenceError", "SyntaxError", "TypeError", "URIError", "globalThis",
    "JSON", "Math", "console", "Intl", "Proxy", "Reflect", "WeakRef",
    "FinalizationRegistry", "BigInt", "ArrayBuffer", "SharedArrayBuffer",
    "DataView", "Atomics", "WebAssembly",
    "parseFloat", "parseInt", "Infinity", "NaN", "undefined",
    "decodeURI", "decodeURIComponent", "encodeURI", "encodeURIComponent",
    "escape", "unescape", "eval", "isFinite", "isNaN",
    "__defineGetter__", "__defineSetter__", "__lookupGetter__",
    "__lookupSetter__", "__proto__",
    # Window properties
    "self", "location", "history", "navigator", "screen", "customElements",
    "locationbar", "menubar", "personalbar", "scrollbars", "statusbar",
    "toolbar", "frames", "opener", "frameElement", "external",
    "visualViewport", "clientInformation", "performance", "crypto",
    "indexedDB", "sessionStorage", "localStorage", "caches", "speechSynthesis",
    # Platform APIs
    "fetch", "XMLHttpRequest", "WebSocket", "Worker", "SharedWorker",
    "ServiceWorker", "MessageChannel", "BroadcastChannel", "Notification",
    "Geolocation", "IDBFactory", "Storage", "CSS", "URL", "URLSearchParams",
    "Headers", "Request", "Response", "FormData", "Blob", "File", "FileReader",
    "TextEncoder", "TextDecoder", "AbortController", "AbortSignal",
    "requestAnimationFrame", "cancelAnimationFrame", "requestIdleCallback",
    "cancelIdleCallback", "queueMicrotask", "structuredClone",
    "atob", "btoa", "alert", "confirm", "prompt", "print",
    # Node.js globals
    "process", "Buffer", "require", "module", "exports",
    "__dirname", "__filename",
})

# Runtime-internal name prefixes.
SYSTEM_PREFIXES: Tuple[str, ...] = (
    "system /",
    "native",
    "builtin",
    "InternalArray",
    "FixedArray",
    "PropertyArray",
    "DescriptorArray",
    "TransitionArray",
    "HashTable",
    "OrderedHashMap",
    "OrderedHashSet",
    "Context",
)

_SYSTEM_NAME_PATTERNS = (
    re.compile(r"^\(.*\)$"),
    re.compile(r"^V8\."),
    re.compile(r"^Internal\."),
    re.compile(r"^Native\."),
)

_DOM_NAME_PATTERNS = (
    re.compile(r"^HTML\w+Element$"),
    re.compile(r"^SVG\w+Element$"),
    re.compile(r"Element$"),
    re.compile(r"^Text$"),
    re.compile(r"^Comment$"),
    re.compile(r"^Document"),
    re.compile(r"^Node$"),
)

_ROOT_NAME_MARKERS = ("htmldocument", "document", "window", "global")

# Nodes whose names carry this prefix were already marked detached by the
# capturing runtime.
DETACHED_PREFIX = "Detached "


def clean_global_name(name: str) -> str:
    """Strip ``window.``/``global.`` qualifiers and trailing decorations."""
    if not name:
        return ""
    for qualifier in ("window.", "global."):
        if qualifier in name:
            name = name.split(qualifier, 1)[1]
            break
    for sep in (" ", "(", "[", "."):
        name = name.split(sep, 1)[0]
    return name


def is_built_in(name: str) -> bool:
    return clean_global_name(name) in BUILT_IN_NAMES


def is_system_internal(node: HeapNode) -> bool:
    """True for runtime bookkeeping nodes that user code never allocates."""
    if node.kind in (NodeKind.hidden, NodeKind.synthetic, NodeKind.code):
        return True
    name = node.name
    if name.startswith(SYSTEM_PREFIXES):
        return True
    return any(p.search(name) for p in _SYSTEM_NAME_PATTERNS)


def is_root_equivalent(node: HeapNode) -> bool:
    """True for document/window/global nodes and the synthetic graph root."""
    if node.index == 0:
        return True
    lowered = node.name.lower()
    if lowered.startswith(DETACHED_PREFIX.lower()):
        return False
    return any(marker in lowered for marker in _ROOT_NAME_MARKERS)


def is_dom_like(node: HeapNode) -> bool:
    name = node.name
    if name.startswith(DETACHED_PREFIX):
        name = name[len(DETACHED_PREFIX):]
    return any(p.search(name) for p in _DOM_NAME_PATTERNS)


# ============================================================================
# Exclusion filter
# ============================================================================


@dataclass(frozen=True)
class ExclusionFilter:
    """Decide which nodes take part in an analysis.

    A node is excluded when its retained size is below
    ``min_retained_size``, when its (cleaned) name is in
    ``excluded_names``, when its name starts with one of
    ``excluded_prefixes``, or, with ``exclude_system`` set, when it is a
    runtime-internal node.
    """

    min_retained_size: int = 0
    excluded_names: FrozenSet[str] = field(default_factory=lambda: BUILT_IN_NAMES)
    excluded_prefixes: Tuple[str, ...] = ()
    exclude_system: bool = True

    def accepts(self, node: HeapNode) -> bool:
        if node.retained_size < self.min_retained_size:
            return False
        if self.exclude_system and is_system_internal(node):
            return False
        if self.excluded_prefixes and node.name.startswith(self.excluded_prefixes):
            return False
        if self.excluded_names and clean_global_name(node.name) in self.excluded_names:
            return False
        return True

    def apply(self, snapshot: HeapSnapshot) -> Iterator[HeapNode]:
        """Yield the nodes of *snapshot* that pass the filter, in index order."""
        return (node for node in snapshot.nodes if self.accepts(node))

    def with_min_size(self, min_retained_size: int) -> ExclusionFilter:
        return ExclusionFilter(
            min_retained_size=min_retained_size,
            excluded_names=self.excluded_names,
            excluded_prefixes=self.excluded_prefixes,
            exclude_system=self.exclude_system,
        )
