"""
resolver.py
Node resolver: for multi-node installs, probe each module's primary address then
its secondary, keep the first reachable one. The whole scan always completes;
unresolved modules are reported together afterwards.
"""

from __future__ import annotations
import logging
from typing import List
from .types import ClusterTopology, ModuleNode
from .remote import RemoteClient
from .errors import ConnectivityError

log = logging.getLogger(__name__)


def resolve_module(module: ModuleNode, client: RemoteClient) -> bool:
    for address in module.candidates:
        if client.reachable(address):
            module.resolved_address = address
            log.debug("%s resolved to %s", module.name, address)
            return True
        log.debug("%s not reachable at %s", module.name, address)
    module.resolved_address = None
    return False


def resolve_modules(topo: ClusterTopology, client: RemoteClient) -> None:
    if topo.single:
        unresolved = [m.name for m in topo.all_modules() if not m.resolved_address]
        if unresolved:
            raise ConnectivityError(f"no address for module(s): {', '.join(unresolved)}")
        return

    failed: List[ModuleNode] = []
    for module in topo.all_modules():
        if not resolve_module(module, client):
            log.error(
                "module %s unreachable at %s",
                module.name,
                " or ".join(module.candidates) or "<no address>",
            )
            failed.append(module)
    if failed:
        raise ConnectivityError(
            f"cannot reach module(s): {', '.join(m.name for m in failed)}"
        )
