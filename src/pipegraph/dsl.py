# dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

from .topology import Topology, load


# ---------------------------------------------------------------------
# Node helpers (nice DX)
# ---------------------------------------------------------------------

def node(
    name: str,
    *,
    deploy: Optional[Sequence[str]] = None,
    apply: Optional[Sequence[str]] = None,
    artifacts: Optional[Sequence[str]] = None,
    destroy: Optional[Sequence[str]] = None,
    needs: Optional[Iterable[str]] = None,
    outputs: Optional[Iterable[str]] = None,
    provider: Optional[str] = None,
    timeout: Optional[int] = None,
    retry: Optional[Dict[str, Any]] = None,
    variables: Optional[Dict[str, str]] = None,
    **children: Any,
) -> Dict[str, Any]:
    """
    Build one topology entry as the config loader expects it.

        node("share", deploy=["terraform apply"], artifacts=["cp out.json ."],
             outputs=["out.json"])

    `outputs` are the artifact paths (the `artifacts:` key of the config);
    the `artifacts` argument is the artifacts-phase script.
    """
    scripts: Dict[str, List[str]] = {}
    for phase, cmds in (("deploy", deploy), ("apply", apply), ("artifacts", artifacts), ("destroy", destroy)):
        if cmds is not None:
            scripts[phase] = list(cmds)

    entry: Dict[str, Any] = {"name": name}
    if scripts:
        entry["scripts"] = scripts
    if needs:
        entry["needs"] = list(needs)
    if outputs:
        entry["artifacts"] = list(outputs)
    if provider is not None:
        entry["provider"] = provider
    if timeout is not None:
        entry["timeout"] = timeout
    if retry is not None:
        entry["retry"] = dict(retry)
    if variables:
        entry["variables"] = dict(variables)
    for key, value in children.items():
        entry[key] = list(value) if isinstance(value, (list, tuple)) else value
    return entry


def rte(name: str, *, shares=(), components=(), collectors=(), **kw: Any) -> Dict[str, Any]:
    return node(name, shares=list(shares), components=list(components), collectors=list(collectors), **kw)


def eut(name: str, *, sites=(), features=(), applications=(), **kw: Any) -> Dict[str, Any]:
    return node(name, sites=list(sites), features=list(features), applications=list(applications), **kw)


def test(name: str, rte: str, *, verifications=(), **kw: Any) -> Dict[str, Any]:
    return node(name, rte=rte, verifications=list(verifications), **kw)


test.__test__ = False  # type: ignore[attr-defined]  # keep pytest from collecting the helper


def config(
    *,
    project: Optional[Dict[str, Any]] = None,
    eut: Optional[Dict[str, Any]] = None,
    rtes: Iterable[Dict[str, Any]] = (),
    tests: Iterable[Dict[str, Any]] = (),
    providers: Iterable[Dict[str, Any]] = (),
    defaults: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Assemble a full configuration mapping."""
    cfg: Dict[str, Any] = {
        "rtes": list(rtes),
        "tests": list(tests),
        "providers": list(providers),
    }
    if project is not None:
        cfg["project"] = project
    if eut is not None:
        cfg["eut"] = eut
    if defaults is not None:
        cfg["defaults"] = defaults
    return cfg


def topology(**kw: Any) -> Topology:
    """config(...) + load() in one go."""
    return load(config(**kw))
