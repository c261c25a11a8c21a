"""
Counter registry backed by prometheus_client.

Counters are registered once at setup time and shared by every session
wrapper. Constant labels (such as ``app``) are fixed per handle; variable
labels (such as ``command``) are supplied on each observation.
"""

from typing import Dict, Optional, Sequence, Tuple
import re
import threading

from prometheus_client import CollectorRegistry, Counter, CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .errors import RegistrationError

METRIC_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")


class CounterHandle:
    """A registered counter with its constant labels bound."""

    def __init__(self, counter: Counter, name: str, const_labels: Dict[str, str],
                 label_names: Tuple[str, ...], registry: CollectorRegistry):
        self._counter = counter
        self._registry = registry
        self.name = name
        self.const_labels = const_labels
        self.label_names = label_names

    @property
    def sample_name(self) -> str:
        """Name of the exposed ``_total`` sample."""
        base = self.name[:-len("_total")] if self.name.endswith("_total") else self.name
        return f"{base}_total"

    def add(self, delta: float, **label_values: str) -> None:
        """Add a non-negative delta to the series selected by ``label_values``."""
        if delta < 0:
            raise ValueError(f"Counter {self.name} cannot be decremented (delta={delta})")
        self._child(label_values).inc(delta)

    def inc(self, **label_values: str) -> None:
        """Increment the series selected by ``label_values`` by one."""
        self.add(1, **label_values)

    def value(self, **label_values: str) -> float:
        """Current value of a series, 0.0 if it has never been observed."""
        labels = dict(self.const_labels)
        labels.update({k: str(v) for k, v in label_values.items()})
        value = self._registry.get_sample_value(self.sample_name, labels)
        return value if value is not None else 0.0

    def _child(self, label_values: Dict[str, str]):
        if set(label_values) != set(self.label_names):
            raise ValueError(
                f"Counter {self.name} expects labels {sorted(self.label_names)}, "
                f"got {sorted(label_values)}"
            )
        labels = dict(self.const_labels)
        labels.update({k: str(v) for k, v in label_values.items()})
        if not labels:
            return self._counter
        return self._counter.labels(**labels)


class CounterRegistry:
    """Registers counters and renders their exposition text."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._counters: Dict[str, Tuple[Counter, Tuple[str, ...]]] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        help: str,
        const_labels: Optional[Dict[str, str]] = None,
        label_names: Sequence[str] = ()
    ) -> CounterHandle:
        """Register a counter, or return a handle to an already registered one.

        Registering the same name twice with the same label keys is safe and
        may bind different constant label values, so several applications can
        share one registry. Registering it with different label keys raises
        ``RegistrationError``.
        """
        const_labels = {k: str(v) for k, v in (const_labels or {}).items()}
        label_names = tuple(label_names)

        if not METRIC_NAME_RE.fullmatch(name):
            raise RegistrationError(f"Invalid metric name {name!r}", {"metric": name})
        invalid = [label for label in list(const_labels) + list(label_names) if not LABEL_NAME_RE.fullmatch(label)]
        if invalid:
            raise RegistrationError(f"Invalid label names {invalid} for {name}", {"metric": name})

        overlap = set(const_labels) & set(label_names)
        if overlap:
            raise RegistrationError(
                f"Labels {sorted(overlap)} are both constant and variable for {name}",
                {"metric": name}
            )

        schema = tuple(sorted(const_labels)) + label_names

        with self._lock:
            existing = self._counters.get(name)
            if existing is not None:
                counter, existing_schema = existing
                if existing_schema != schema:
                    raise RegistrationError(
                        f"Counter {name} already registered with labels {list(existing_schema)}",
                        {"metric": name, "labels": list(schema)}
                    )
            else:
                try:
                    counter = Counter(name, help, labelnames=schema, registry=self.registry)
                except ValueError as e:
                    raise RegistrationError(str(e), {"metric": name}) from e
                self._counters[name] = (counter, schema)

        return CounterHandle(counter, name, const_labels, label_names, self.registry)

    def render(self) -> bytes:
        """Render every registered metric in the text exposition format."""
        return generate_latest(self.registry)


_default_registry: Optional[CounterRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> CounterRegistry:
    """Process-wide registry wrapping prometheus_client's global ``REGISTRY``.

    Only the outermost composition helpers fall back to it.
    """
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = CounterRegistry(REGISTRY)
        return _default_registry
