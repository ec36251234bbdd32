"""Inventory resolution: name patterns to object references.

Resolution is scoped to the selected datacenter and to the folder that holds
the requested kind (hostFolder, datastoreFolder, vmFolder). Names are listed
with a single PropertyCollector query over a ContainerView (only the 'name'
property is retrieved) and matched locally with shell-style globbing.
"""

from __future__ import annotations

import fnmatch

from pyVmomi import vim, vmodl

from vsphere_metrics.errors import ResolutionError
from vsphere_metrics.models import ManagedObjectRef, ObjectKind
from vsphere_metrics.utils.logging import get_logger
from vsphere_metrics.vmware.client import VIM_TYPES

logger = get_logger(__name__)


def name_matches(name: str, pattern: str) -> bool:
    """Case-sensitive shell-style match ('*', '?', '[seq]')."""
    return fnmatch.fnmatchcase(name, pattern)


class InventoryResolver:
    """Resolve name patterns to ManagedObjectRefs.

    Usage:
        resolver = InventoryResolver(client)
        refs = resolver.resolve(ObjectKind.HOST, "esxi-*")
    """

    def __init__(self, client, max_objects: int = 1000):
        self.client = client
        self.max_objects = max_objects

    def resolve(self, kind: ObjectKind, pattern: str) -> list[ManagedObjectRef]:
        """List objects of one kind whose display name matches the pattern.

        Returns an empty list when nothing matches.

        Raises:
            ResolutionError: The remote listing failed
        """
        try:
            names = self._list_names(kind)
        except Exception as e:
            raise ResolutionError(kind, pattern, e) from e

        refs = [
            ManagedObjectRef(kind=kind, moid=moid, name=name)
            for moid, name in names
            if name_matches(name, pattern)
        ]
        refs.sort(key=lambda r: (r.name, r.moid))
        logger.debug(f"Pattern '{pattern}' matched {len(refs)} of {len(names)} {kind.label}(s)")
        return refs

    def _list_names(self, kind: ObjectKind) -> list[tuple[str, str]]:
        vim_type = VIM_TYPES[kind]
        folder = self.client.kind_folder(kind)

        with self.client.container_view(folder, [vim_type]) as view:
            traversal_spec = vmodl.query.PropertyCollector.TraversalSpec(
                name="traverseView",
                path="view",
                skip=False,
                type=vim.view.ContainerView,
            )
            obj_spec = vmodl.query.PropertyCollector.ObjectSpec(
                obj=view,
                skip=True,
                selectSet=[traversal_spec],
            )
            prop_spec = vmodl.query.PropertyCollector.PropertySpec(
                type=vim_type,
                pathSet=["name"],
                all=False,
            )
            filter_spec = vmodl.query.PropertyCollector.FilterSpec(
                objectSet=[obj_spec],
                propSet=[prop_spec],
            )
            objects = self.client.retrieve(filter_spec, max_objects=self.max_objects)

        names = []
        for oc in objects:
            props = {p.name: p.val for p in (oc.propSet or [])}
            if props.get("name") is None:
                continue
            names.append((oc.obj._GetMoId(), props["name"]))
        return names
