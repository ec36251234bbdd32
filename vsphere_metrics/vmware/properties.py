"""Batched property retrieval.

All references of one pattern are fetched with a single PropertyCollector
query (one ObjectSpec per reference) instead of one round trip per object.
Results come back in no particular order and are correlated to their
reference through the managed object id in each ObjectContent.
"""

from __future__ import annotations

from pyVmomi import vmodl

from vsphere_metrics.errors import RetrievalError
from vsphere_metrics.models import ManagedObjectRef, PropertyBag
from vsphere_metrics.utils.logging import get_logger
from vsphere_metrics.vmware.client import VIM_TYPES

logger = get_logger(__name__)


class PropertyFetcher:
    """Fetch property bags for a homogeneous list of references.

    Usage:
        fetcher = PropertyFetcher(client)
        bags = fetcher.fetch(refs, ["name", "summary"])
    """

    def __init__(self, client, max_objects: int = 1000):
        self.client = client
        self.max_objects = max_objects

    def fetch(self, refs: list[ManagedObjectRef], paths: list[str],
              pattern: str = "") -> list[PropertyBag]:
        """Retrieve `paths` for every reference in one batched call.

        Every returned bag holds exactly the requested paths; values the
        endpoint did not report are None. Objects missing from the result
        (deleted mid-cycle) still get a bag, with every value None.

        Raises:
            RetrievalError: The batched call failed
            ValueError: The references are of mixed kinds
        """
        if not refs:
            # An empty objectSet must never reach the endpoint.
            return []

        kind = refs[0].kind
        if any(ref.kind != kind for ref in refs):
            raise ValueError("fetch() needs references of a single kind")

        try:
            objects = self.client.retrieve(
                self._build_filter_spec(refs, paths),
                max_objects=self.max_objects,
            )
        except Exception as e:
            raise RetrievalError(kind, pattern, e) from e

        by_moid = {ref.moid: ref for ref in refs}
        bags: list[PropertyBag] = []
        seen: set[str] = set()

        for oc in objects:
            moid = oc.obj._GetMoId()
            ref = by_moid.get(moid)
            if ref is None or moid in seen:
                logger.debug(f"Ignoring unexpected object {moid} in {kind.label} result")
                continue
            seen.add(moid)

            props = dict.fromkeys(paths)
            for prop in oc.propSet or []:
                if prop.name in props:
                    props[prop.name] = prop.val
            for missing in getattr(oc, "missingSet", None) or []:
                logger.debug(f"{ref}: property '{missing.path}' not available")
            bags.append(PropertyBag(ref=ref, properties=props))

        for ref in refs:
            if ref.moid not in seen:
                logger.warning(f"{ref} was not returned by the endpoint")
                bags.append(PropertyBag(ref=ref, properties=dict.fromkeys(paths)))

        logger.debug(f"Fetched {len(paths)} properties for {len(bags)} {kind.label}(s)")
        return bags

    def _build_filter_spec(self, refs: list[ManagedObjectRef],
                           paths: list[str]) -> vmodl.query.PropertyCollector.FilterSpec:
        object_specs = [
            vmodl.query.PropertyCollector.ObjectSpec(
                obj=self.client.managed_object(ref),
                skip=False,
            )
            for ref in refs
        ]
        prop_spec = vmodl.query.PropertyCollector.PropertySpec(
            type=VIM_TYPES[refs[0].kind],
            pathSet=list(paths),
            all=False,
        )
        return vmodl.query.PropertyCollector.FilterSpec(
            objectSet=object_specs,
            propSet=[prop_spec],
            reportMissingObjectsInResults=True,
        )
