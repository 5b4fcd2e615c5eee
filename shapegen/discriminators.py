from __future__ import annotations

from shapegen.errors import GenerationError
from shapegen.resolution import ResolutionContext
from shapegen.shapes import Shape


class DiscriminatorResolver:
    """Computes wire-level discriminator values for polymorphic hierarchies.

    A subtype's value comes from, in order: its own explicit discriminator
    value, the hierarchy root's mapping table, its declared name.
    """

    def __init__(self, resolution: ResolutionContext):
        self.resolution = resolution
        self.index = resolution.index

    def discriminator_value(self, subtype: Shape, hierarchy_root: Shape) -> str:
        container = self.index.property_container(subtype)
        if container is not None and container.discriminator_value:
            return container.discriminator_value

        subtype_handle = self.index.handle_of(subtype)
        for value, target_handle in self.mapping_handles(hierarchy_root).items():
            if target_handle == subtype_handle:
                return value

        resolved = self.index.dereference(subtype)
        if resolved.name:
            return resolved.name

        raise GenerationError("Unable to determine discriminator value for anonymous subtype", subtype.span)

    def mapping_handles(self, hierarchy_root: Shape) -> dict[str, int]:
        container = self.index.property_container(hierarchy_root)
        if container is None:
            return {}

        mappings: dict[str, int] = {}
        for value, reference in container.discriminator_mapping.items():
            target, _ = self.resolution.require_ref(reference, self.index.dereference(hierarchy_root))
            mappings[value] = self.index.handle_of(target)
        return mappings

    def find_discriminator_root(self, shape: Shape) -> Shape | None:
        """Nearest ancestor-or-self declaring a discriminator property."""
        for ancestor in reversed(self.resolution.find_ancestry(shape)):
            container = self.index.property_container(ancestor)
            if container is not None and container.discriminator:
                return ancestor
        return None

    def discriminator_property_name(self, shape: Shape) -> str | None:
        root = self.find_discriminator_root(shape)
        if root is None:
            return None
        return self.index.property_container(root).discriminator
