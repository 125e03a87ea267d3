# topology.py
"""
In-memory topology: the declared nodes and the edges between them.

`load()` turns a configuration mapping into a frozen Topology. Containment
becomes structural edges, `needs:` entries become artifact edges. Every
reference must resolve; nothing is looked up lazily later on.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .config import NodeSpec, PipelineConfig, ProviderSpec, RetrySpec, parse_config
from .errors import ConfigError, UnresolvedReferenceError
from .model import (
    Edge,
    EdgeKind,
    FailureKind,
    Node,
    NodeKind,
    Phase,
    RetryPolicy,
    capabilities,
    derive_job_id,
    primary_phase,
)
from .ui.console import get_console


@dataclass(frozen=True)
class Topology:
    nodes: Tuple[Node, ...]
    edges: Tuple[Edge, ...]
    artifacts_root: str = "artifacts"
    providers: Tuple[str, ...] = ()
    _by_ref: Mapping[str, Node] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_ref", {n.ref: n for n in self.nodes})

    def node(self, ref: str) -> Node:
        try:
            return self._by_ref[ref]
        except KeyError:
            raise UnresolvedReferenceError(ref, referrer="<topology>") from None

    def has(self, ref: str) -> bool:
        return ref in self._by_ref

    def children(self, ref: str) -> List[Node]:
        return [n for n in self.nodes if n.parent == ref]

    def descendants(self, ref: str) -> List[Node]:
        out: List[Node] = []
        stack = list(reversed(self.children(ref)))
        while stack:
            n = stack.pop()
            out.append(n)
            stack.extend(reversed(self.children(n.ref)))
        return out

    def by_job_id(self, job_id: str) -> Optional[Node]:
        for n in self.nodes:
            if n.job_id == job_id:
                return n
        return None

    def incoming(self, ref: str, kind: Optional[EdgeKind] = None) -> List[Edge]:
        return [e for e in self.edges if e.dst == ref and (kind is None or e.kind is kind)]


# ----------------------------------------------------------------------
# Building
# ----------------------------------------------------------------------

class _Builder:
    def __init__(self, cfg: PipelineConfig):
        self.cfg = cfg
        self.providers: Dict[str, ProviderSpec] = {}
        self.nodes: List[Node] = []
        self.by_ref: Dict[str, Node] = {}
        self.needs: List[Tuple[str, str]] = []  # (consumer ref, producer ref)

        for p in cfg.providers:
            if p.name in self.providers:
                raise ConfigError(f"provider '{p.name}' declared twice", location="providers")
            self.providers[p.name] = p

    # -- resolution helpers ------------------------------------------------

    @staticmethod
    def _retry(spec: RetrySpec) -> RetryPolicy:
        return RetryPolicy(max_retries=spec.max, retryable=frozenset(FailureKind(k) for k in spec.when))

    def _scripts(self, kind: NodeKind, spec: NodeSpec, ref: str) -> Dict[Phase, Tuple[str, ...]]:
        allowed = capabilities(kind)
        out: Dict[Phase, Tuple[str, ...]] = {}
        for raw_phase, commands in spec.scripts.items():
            try:
                phase = Phase(raw_phase)
            except ValueError:
                raise ConfigError(f"unknown phase '{raw_phase}'", location=ref) from None
            if phase not in allowed:
                raise ConfigError(
                    f"a {kind.value} cannot declare phase '{phase.value}' "
                    f"(allowed: {', '.join(p.value for p in allowed)})",
                    location=ref,
                )
            out[phase] = tuple(commands)

        if Phase.ARTIFACTS in out and primary_phase(kind) not in out:
            raise ConfigError(
                f"artifacts phase needs a '{primary_phase(kind).value}' phase to consume",
                location=ref,
            )
        return out

    @staticmethod
    def _artifacts(spec: NodeSpec, ref: str, scripts: Mapping[Phase, Tuple[str, ...]]) -> Tuple[str, ...]:
        if spec.artifacts and Phase.ARTIFACTS not in scripts:
            raise ConfigError("artifact paths are only published by an 'artifacts' phase", location=ref)
        paths = []
        for p in spec.artifacts:
            norm = posixpath.normpath(p)
            if posixpath.isabs(norm) or norm == ".." or norm.startswith("../"):
                raise ConfigError(f"artifact path must stay inside the job directory: {p!r}", location=ref)
            paths.append(norm)
        return tuple(paths)

    def add(self, kind: NodeKind, spec: NodeSpec, parent: Optional[Node]) -> Node:
        path = (parent.path if parent else ()) + (spec.name,)
        ref = "/".join(path)
        if ref in self.by_ref:
            raise ConfigError(f"{kind.value} '{spec.name}' declared twice", location=ref)

        provider_name = spec.provider or (parent.provider if parent else None)
        provider: Optional[ProviderSpec] = None
        if provider_name is not None:
            provider = self.providers.get(provider_name)
            if provider is None:
                raise UnresolvedReferenceError(provider_name, referrer=ref, what="provider")

        defaults = self.cfg.defaults
        timeout = spec.timeout or (provider.timeout if provider else None) or defaults.timeout
        retry_spec = spec.retry or (provider.retry if provider else None) or defaults.retry
        variables = dict(provider.variables) if provider else {}
        variables.update(spec.variables)

        try:
            job_id = derive_job_id(path)
        except ConfigError as e:
            raise ConfigError(e.message, location=ref) from None

        scripts = self._scripts(kind, spec, ref)

        node = Node(
            kind=kind,
            name=spec.name,
            path=path,
            job_id=job_id,
            parent=parent.ref if parent else None,
            provider=provider_name,
            scripts=scripts,
            artifacts=self._artifacts(spec, ref, scripts),
            timeout=timeout,
            retry=self._retry(retry_spec),
            variables=variables,
        )
        self.nodes.append(node)
        self.by_ref[ref] = node
        for dep in spec.needs:
            self.needs.append((ref, dep))
        return node

    def add_all(self, kind: NodeKind, specs: Iterable[NodeSpec], parent: Optional[Node]) -> None:
        for s in specs:
            self.add(kind, s, parent)

    # -- edges -------------------------------------------------------------

    def edges(self) -> List[Edge]:
        edges: List[Edge] = []
        for n in self.nodes:
            if n.parent is not None:
                edges.append(Edge(src=n.parent, dst=n.ref, kind=EdgeKind.STRUCTURAL))

        seen = set()
        for consumer, producer in self.needs:
            if producer not in self.by_ref:
                raise UnresolvedReferenceError(producer, referrer=consumer)
            if producer == consumer:
                raise ConfigError("a node cannot need itself", location=consumer)
            if (producer, consumer) in seen:
                continue
            seen.add((producer, consumer))
            edges.append(Edge(src=producer, dst=consumer, kind=EdgeKind.ARTIFACT))
        return edges


def load(config: Any) -> Topology:
    """
    Build a Topology from a configuration mapping.

    Raises:
      ConfigError: invalid document or node declaration
      UnresolvedReferenceError: a test's rte, a provider, or a needs entry
        that was never declared
    """
    cfg = parse_config(config)
    b = _Builder(cfg)

    if cfg.project is not None:
        project = b.add(NodeKind.PROJECT, cfg.project, None)
        b.add_all(NodeKind.DASHBOARD, cfg.project.dashboards, project)

    if cfg.eut is not None:
        eut = b.add(NodeKind.EUT, cfg.eut, None)
        b.add_all(NodeKind.SITE, cfg.eut.sites, eut)
        b.add_all(NodeKind.FEATURE, cfg.eut.features, eut)
        b.add_all(NodeKind.APPLICATION, cfg.eut.applications, eut)

    for rte_spec in cfg.rtes:
        rte = b.add(NodeKind.RTE, rte_spec, None)
        b.add_all(NodeKind.SHARE, rte_spec.shares, rte)
        b.add_all(NodeKind.COMPONENT, rte_spec.components, rte)
        for col_spec in rte_spec.collectors:
            collector = b.add(NodeKind.COLLECTOR, col_spec, rte)
            b.add_all(NodeKind.REPORT, col_spec.reports, collector)

    for test_spec in cfg.tests:
        owner = b.by_ref.get(test_spec.rte)
        if owner is None or owner.kind is not NodeKind.RTE:
            raise UnresolvedReferenceError(test_spec.rte, referrer=f"tests/{test_spec.name}", what="rte")
        test = b.add(NodeKind.TEST, test_spec, owner)
        b.add_all(NodeKind.VERIFICATION, test_spec.verifications, test)

    edges = b.edges()
    get_console().print_debug(f"topology: {len(b.nodes)} nodes, {len(edges)} edges")

    return Topology(
        nodes=tuple(b.nodes),
        edges=tuple(edges),
        artifacts_root=cfg.defaults.artifacts_root,
        providers=tuple(b.providers),
    )
