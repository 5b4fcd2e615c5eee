from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType

from shapegen.annotations import (
    APIAnnotationName,
    find_annotation,
    find_bool_annotation,
    find_string_annotation,
)
from shapegen.config import GenerationOptions
from shapegen.discriminators import DiscriminatorResolver
from shapegen.errors import (
    AnnotationError,
    GenerationError,
    NameCollisionError,
    ShapeKindError,
    UnresolvedReferenceError,
)
from shapegen.locations import SourceSpan
from shapegen.naming import NamingContext, NamingStrategy, enum_case_name, to_lower_camel_case, to_upper_camel_case
from shapegen.problems import ProblemTypeDefinition
from shapegen.resolution import ResolutionContext
from shapegen.shape_index import ShapeIndex, build_shape_index, is_aggregation
from shapegen.shapes import (
    AnyShape,
    ArrayShape,
    DataType,
    Document,
    FileShape,
    NilShape,
    NodeShape,
    PropertyShape,
    ScalarShape,
    Shape,
    UnionShape,
)
from shapegen.type_model import (
    Constraints,
    DefinitionKind,
    DiscriminatorInfo,
    DiscriminatorRole,
    EnumCase,
    Primitive,
    ProblemInfo,
    PropertyDefinition,
    QualifiedName,
    SubtypeEntry,
    TypeArena,
    TypeDefinition,
    TypeDefinitionGraph,
    TypeRef,
    TypeRefKind,
)


logger = logging.getLogger(__name__)


SCALAR_PRIMITIVES = {
    DataType.BOOLEAN: Primitive.BOOLEAN,
    DataType.LONG: Primitive.INT64,
    DataType.FLOAT: Primitive.FLOAT32,
    DataType.DOUBLE: Primitive.FLOAT64,
    DataType.DECIMAL: Primitive.DECIMAL,
    DataType.DURATION: Primitive.DURATION,
    DataType.DATE: Primitive.DATE,
    DataType.TIME: Primitive.TIME,
    DataType.DATE_TIME_ONLY: Primitive.LOCAL_DATE_TIME,
    DataType.DATE_TIME: Primitive.DATE_TIME,
    DataType.BINARY: Primitive.BYTES,
}
STRING_FORMATS = {
    "time": Primitive.TIME,
    "date": Primitive.DATE,
    "datetime-only": Primitive.LOCAL_DATE_TIME,
    "date-time-only": Primitive.LOCAL_DATE_TIME,
    "date-time": Primitive.DATE_TIME,
    "byte": Primitive.BYTES,
    "binary": Primitive.BYTES,
}
INTEGER_FORMATS = {
    "int8": Primitive.INT8,
    "int16": Primitive.INT16,
    "int32": Primitive.INT32,
    "int": Primitive.INT32,
    "int64": Primitive.INT64,
    "long": Primitive.INT64,
}
NUMERIC_DATA_TYPES = {
    DataType.INTEGER,
    DataType.LONG,
    DataType.NUMBER,
    DataType.FLOAT,
    DataType.DOUBLE,
    DataType.DECIMAL,
}

# Type names allowed for custom problem fields besides declared types.
PROBLEM_FIELD_PRIMITIVES = {
    "boolean": Primitive.BOOLEAN,
    "integer": Primitive.INT32,
    "number": Primitive.FLOAT64,
    "string": Primitive.STRING,
    "file": Primitive.BYTES,
    "time-only": Primitive.TIME,
    "date-only": Primitive.DATE,
    "datetime-only": Primitive.LOCAL_DATE_TIME,
    "datetime": Primitive.DATE_TIME,
}

CLASS_KINDS = (DefinitionKind.CLASS, DefinitionKind.INTERFACE)


@dataclass
class _DefinitionBuilder:
    name: QualifiedName
    kind: DefinitionKind
    identity: tuple[object, str]
    span: SourceSpan | None
    super_type: TypeRef | None = None
    properties: list[PropertyDefinition] = field(default_factory=list)
    discriminator: DiscriminatorInfo | None = None
    subtypes: list[SubtypeEntry] = field(default_factory=list)
    enum_cases: list[EnumCase] = field(default_factory=list)
    is_abstract: bool = False
    is_open: bool = False
    problem: ProblemInfo | None = None

    def build(self, nested: tuple[TypeDefinition, ...]) -> TypeDefinition:
        return TypeDefinition(
            name=self.name,
            kind=self.kind,
            span=self.span,
            super_type=self.super_type,
            properties=tuple(self.properties),
            discriminator=self.discriminator,
            subtypes=tuple(self.subtypes),
            enum_cases=tuple(self.enum_cases),
            nested=nested,
            is_abstract=self.is_abstract,
            is_open=self.is_open,
            problem=self.problem,
        )


class TypeRegistry:
    """Resolves shapes to interned type references for one generation run.

    Definitions are created lazily, on the first reference to a shape, and
    memoised on the shape's canonical handle. ``build_graph`` freezes the
    accumulated definitions into an immutable TypeDefinitionGraph.
    """

    def __init__(self, index: ShapeIndex, resolution: ResolutionContext, options: GenerationOptions | None = None):
        self.options = options if options is not None else GenerationOptions()
        self.index = index
        self.resolution = resolution
        self.types = TypeArena()
        self.naming = NamingStrategy(self.options, resolution, self._enclosing_name_of)
        self.discriminators = DiscriminatorResolver(resolution)
        self._type_refs: dict[int, TypeRef] = {}
        self._builders: dict[QualifiedName, _DefinitionBuilder] = {}

    @classmethod
    def for_documents(cls, documents: list[Document], options: GenerationOptions | None = None) -> TypeRegistry:
        index = build_shape_index(documents)
        return cls(index, ResolutionContext(documents, index), options)

    @property
    def mode(self):
        return self.options.generation_mode

    def resolve_type_reference(self, shape: Shape, context: NamingContext | None = None) -> TypeRef:
        resolved = self.index.dereference(shape)
        handle = self.index.handle_of(resolved)

        type_ref = self._type_refs.get(handle)
        if type_ref is None:
            type_ref = self._generate(resolved, context if context is not None else NamingContext())
            type_ref = self._type_refs.setdefault(handle, type_ref)
        return type_ref

    def definition_kind(self, type_ref: TypeRef) -> DefinitionKind | None:
        if not type_ref.is_defined:
            return None
        builder = self._builders.get(type_ref.name)
        return None if builder is None else builder.kind

    def define_problem_type(self, problem: ProblemTypeDefinition) -> TypeRef:
        document = problem.defined_in
        package = self.naming.document_package_of(document) if document is not None else self.options.model_package
        name = QualifiedName(package, (to_upper_camel_case(problem.code) + "Problem",))
        identity = (problem.type_uri, "problem")
        existing = self._existing(name, identity, None)
        if existing is not None:
            return existing

        builder = self._add_builder(name, DefinitionKind.PROBLEM, identity, None)
        builder.problem = ProblemInfo(
            type_uri=problem.type_uri,
            status=problem.status,
            title=problem.title,
            detail=problem.detail,
        )
        for field_name, type_name in problem.custom.items():
            builder.properties.append(
                PropertyDefinition(
                    name=to_lower_camel_case(field_name),
                    wire_name=field_name,
                    type_ref=self.resolve_type_name(type_name, document),
                    optional=False,
                )
            )

        logger.debug("defined problem type %s (%s)", name, problem.type_uri)
        return self.types.defined(name)

    def resolve_type_name(self, type_name: str, document: Document | None) -> TypeRef:
        """Resolves a type given by name, as problem fields declare them."""
        key = type_name.lower()
        if key in PROBLEM_FIELD_PRIMITIVES:
            return self.types.primitive(PROBLEM_FIELD_PRIMITIVES[key])
        if key == "object":
            string = self.types.primitive(Primitive.STRING)
            return self.types.map_of(string, string)
        if key == "any":
            return self.types.any()

        found = self.resolution.resolve_ref_in(type_name, document) if document is not None else None
        if found is None:
            raise UnresolvedReferenceError(type_name)
        return self.resolve_type_reference(found[0])

    def build_graph(self) -> TypeDefinitionGraph:
        children: dict[QualifiedName, list[QualifiedName]] = {}
        for name in self._builders:
            enclosing = name.enclosing()
            if enclosing is None:
                continue
            if enclosing not in self._builders:
                raise GenerationError(f"Nested type '{name}' has no enclosing definition", self._builders[name].span)
            children.setdefault(enclosing, []).append(name)

        # Deepest enclosing names first so nested definitions are complete
        # before they are attached to their parent.
        built: dict[QualifiedName, TypeDefinition] = {}
        for name in sorted(self._builders, key=lambda n: (-len(n.simple_names), n.canonical)):
            nested = tuple(built[child] for child in sorted(children.get(name, []), key=lambda n: n.canonical))
            built[name] = self._builders[name].build(nested)

        return TypeDefinitionGraph({name: built[name] for name in self._builders})

    # Classification

    def _generate(self, shape: Shape, context: NamingContext) -> TypeRef:
        override = self.naming.override_of(shape)
        if override is not None:
            return self.types.external(override)

        if isinstance(shape, ScalarShape):
            return self._process_scalar(shape, context)
        if isinstance(shape, ArrayShape):
            return self._process_array(shape, context)
        if isinstance(shape, UnionShape):
            return self._process_union(shape, context)
        if isinstance(shape, NodeShape):
            return self._process_node(shape, context)
        if isinstance(shape, FileShape):
            return self.types.primitive(Primitive.BYTES)
        if isinstance(shape, NilShape):
            return self.types.unit()
        if isinstance(shape, AnyShape):
            return self._process_any(shape, context)

        raise ShapeKindError(f"Shape type '{type(shape).__name__}' is unsupported", shape.span)

    def _process_scalar(self, shape: ScalarShape, context: NamingContext) -> TypeRef:
        if shape.values:
            return self._define_enum(shape, context)

        data_type = shape.data_type
        format_name = shape.format or ""

        if data_type == DataType.STRING:
            return self.types.primitive(STRING_FORMATS.get(format_name, Primitive.STRING))

        if data_type == DataType.INTEGER:
            if not format_name:
                return self.types.primitive(Primitive.INT32)
            primitive = INTEGER_FORMATS.get(format_name)
            if primitive is None:
                raise ShapeKindError(f"Integer format '{format_name}' is unsupported", shape.span)
            return self.types.primitive(primitive)

        if data_type == DataType.NUMBER:
            if format_name == "float":
                return self.types.primitive(Primitive.FLOAT32)
            if format_name in INTEGER_FORMATS:
                return self.types.primitive(INTEGER_FORMATS[format_name])
            return self.types.primitive(Primitive.FLOAT64)

        primitive = SCALAR_PRIMITIVES.get(data_type)
        if primitive is None:
            raise ShapeKindError(f"Scalar data type '{data_type}' is unsupported", shape.span)
        return self.types.primitive(primitive)

    def _process_array(self, shape: ArrayShape, context: NamingContext) -> TypeRef:
        if shape.items is None:
            element = self.types.any()
        else:
            element = self.resolve_type_reference(shape.items, context)

        if shape.unique_items:
            return self.types.set_of(element)
        return self.types.list_of(element)

    def _process_union(self, shape: UnionShape, context: NamingContext) -> TypeRef:
        members = [self.index.dereference(member) for member in shape.any_of]
        non_nil = [member for member in members if not isinstance(member, NilShape)]
        if len(members) == 2 and len(non_nil) == 1:
            return self.types.optional(self.resolve_type_reference(non_nil[0], context))

        return self._nearest_common_ancestor(members) or self.types.any()

    def _process_any(self, shape: AnyShape, context: NamingContext) -> TypeRef:
        if is_aggregation(shape):
            return self._define_class(shape, context)
        if shape.or_:
            return self._nearest_common_ancestor(shape.or_) or self.types.any()
        if shape.xone:
            return self._nearest_common_ancestor(shape.xone) or self.types.any()
        return self.types.any()

    def _process_node(self, shape: NodeShape, context: NamingContext) -> TypeRef:
        declared = self.index.declared_properties(shape)
        super_shape = self.resolution.find_super_shape(shape)
        has_inheriting = self.index.has_inheriting(shape)
        is_discriminated = bool(shape.discriminator or shape.discriminator_value)

        if not declared and super_shape is not None and not has_inheriting and not is_discriminated:
            logger.debug("%r passes through to %r", shape, super_shape)
            return self.resolve_type_reference(super_shape)

        if not declared and super_shape is None and not shape.closed and not has_inheriting and not is_discriminated:
            value_shapes = self._collect_types([shape.additional_properties] if shape.additional_properties else [])
            if not value_shapes:
                value_type = self.types.any()
            elif len(value_shapes) == 1:
                value_type = self.resolve_type_reference(value_shapes[0], context)
            else:
                value_type = self._nearest_common_ancestor(value_shapes) or self.types.any()
            return self.types.map_of(self.types.primitive(Primitive.STRING), value_type)

        return self._define_class(shape, context)

    # Definitions

    def _define_enum(self, shape: ScalarShape, context: NamingContext) -> TypeRef:
        handle = self.index.handle_of(shape)
        name = self.naming.name_of(shape, context, kind_suffix="Enum")
        existing = self._existing(name, (handle, "type"), shape.span)
        if existing is not None:
            return existing

        builder = self._add_builder(name, DefinitionKind.ENUM, (handle, "type"), shape.span)
        type_ref = self.types.defined(name)
        self._type_refs[handle] = type_ref

        literals_by_case: dict[str, object] = {}
        for literal in shape.values:
            case_name = enum_case_name(literal)
            if case_name in literals_by_case:
                raise GenerationError(
                    f"Enum values {literals_by_case[case_name]!r} and {literal!r} of '{name}' "
                    f"both normalize to case '{case_name}'",
                    shape.span,
                )
            literals_by_case[case_name] = literal
            builder.enum_cases.append(EnumCase(name=case_name, literal=literal))

        logger.debug("defined enum %s (%d cases)", name, len(builder.enum_cases))
        return type_ref

    def _define_class(self, shape: Shape, context: NamingContext) -> TypeRef:
        handle = self.index.handle_of(shape)
        name = self.naming.name_of(shape, context)
        existing = self._existing(name, (handle, "type"), shape.span)
        if existing is not None:
            return existing

        kind = DefinitionKind.CLASS if self.options.implement_model else DefinitionKind.INTERFACE
        builder = self._add_builder(name, kind, (handle, "type"), shape.span)
        type_ref = self.types.defined(name)
        self._type_refs[handle] = type_ref
        logger.debug("defining %s %s", kind.value, name)

        super_shape = self.resolution.find_super_shape(shape)
        inherited: list[PropertyShape] = []
        if super_shape is not None:
            super_ref = self.resolve_type_reference(super_shape)
            if not self._is_class_like(super_ref):
                raise ShapeKindError(f"Type '{name}' inherits from non-object type '{super_ref.describe()}'", shape.span)
            builder.super_type = super_ref
            inherited = self.resolution.find_all_properties(super_shape)

        own_properties = self.index.declared_properties(shape)
        available = inherited + own_properties
        declared = list(own_properties)

        discriminator_root = self.discriminators.find_discriminator_root(shape)
        if discriminator_root is not None:
            discriminator_name = self.index.property_container(discriminator_root).discriminator
            discriminator_property = next((prop for prop in available if prop.name == discriminator_name), None)
            if discriminator_property is None:
                raise AnnotationError(
                    f"Discriminator property '{discriminator_name}' not found",
                    discriminator_name,
                    shape.span,
                )
            declared = [prop for prop in declared if prop.name != discriminator_name]
            builder.discriminator = self._discriminator_info(shape, discriminator_root, discriminator_property, name)
            if builder.discriminator.role is DiscriminatorRole.ROOT and self.options.implement_model:
                builder.is_abstract = True

        for prop in declared:
            builder.properties.append(self._define_property(prop, name, available, shape))

        if find_bool_annotation(shape.annotations, APIAnnotationName.Patchable, self.mode):
            self._define_patch(shape, handle, name, own_properties)

        inheriting = self.resolution.find_inheriting_shapes(shape)
        inheriting_refs = [self.resolve_type_reference(sub) for sub in inheriting]
        # Pure aliases resolve back to this type and do not make it open.
        builder.is_open = any(sub_ref is not type_ref for sub_ref in inheriting_refs)

        container = self.index.property_container(shape)
        if container is not None and container.discriminator:
            for sub, sub_ref in zip(inheriting, inheriting_refs):
                if sub_ref is type_ref:
                    continue
                value = self.discriminators.discriminator_value(sub, shape)
                builder.subtypes.append(SubtypeEntry(value=value, type_ref=sub_ref))

        return type_ref

    def _discriminator_info(
        self,
        shape: Shape,
        root: Shape,
        discriminator_property: PropertyShape,
        name: QualifiedName,
    ) -> DiscriminatorInfo:
        is_root = self.index.handle_of(root) == self.index.handle_of(shape)
        owner = name if is_root else self.resolve_type_reference(root).name
        type_ref = self.resolve_type_reference(
            discriminator_property.range,
            NamingContext.for_property(owner, discriminator_property.name),
        ).non_optional()

        if is_root:
            return DiscriminatorInfo(
                role=DiscriminatorRole.ROOT,
                property_name=to_lower_camel_case(discriminator_property.name),
                wire_name=discriminator_property.name,
                type_ref=type_ref,
                external=find_bool_annotation(shape.annotations, APIAnnotationName.ExternallyDiscriminated, self.mode)
                is True,
            )

        value = self.discriminators.discriminator_value(shape, root)
        return DiscriminatorInfo(
            role=DiscriminatorRole.LEAF,
            property_name=to_lower_camel_case(discriminator_property.name),
            wire_name=discriminator_property.name,
            type_ref=type_ref,
            value=value,
            enum_case=self._enum_case_for(type_ref, value, shape),
        )

    def _enum_case_for(self, type_ref: TypeRef, value: str, shape: Shape) -> str | None:
        if self.definition_kind(type_ref) is not DefinitionKind.ENUM:
            return None
        for case in self._builders[type_ref.name].enum_cases:
            if str(case.literal) == value:
                return case.name
        raise AnnotationError(
            f"Discriminator value is not a case of enum '{type_ref.name}'",
            value,
            shape.span,
        )

    def _define_property(
        self,
        prop: PropertyShape,
        owner: QualifiedName,
        available: list[PropertyShape],
        owner_shape: Shape,
    ) -> PropertyDefinition:
        type_ref = self.resolve_type_reference(prop.range, NamingContext.for_property(owner, prop.name))
        if not prop.required:
            type_ref = self.types.optional(type_ref)

        range_annotations = prop.range.annotations

        external = find_string_annotation(range_annotations, APIAnnotationName.ExternalDiscriminator, self.mode)
        if external is not None:
            if not isinstance(self.index.property_container(prop.range), NodeShape):
                raise AnnotationError("Externally discriminated types must be 'object'", external, prop.span)
            if all(candidate.name != external for candidate in available):
                raise AnnotationError(
                    f"External discriminator '{external}' not found in object",
                    external,
                    owner_shape.span,
                )

        implementation = find_annotation(range_annotations, APIAnnotationName.Implementation, self.mode)
        if implementation is not None and not isinstance(implementation, dict):
            raise AnnotationError("Implementation annotation must be an object", implementation, prop.span)

        constraints = None
        if self.options.validation_constraints:
            constraints = self._constraints_for(prop.range, type_ref)

        return PropertyDefinition(
            name=to_lower_camel_case(prop.name),
            wire_name=prop.name,
            type_ref=type_ref,
            optional=not prop.required,
            default=prop.default,
            constraints=constraints,
            external_discriminator=external,
            implementation=MappingProxyType(dict(implementation)) if implementation is not None else None,
        )

    def _define_patch(self, shape: Shape, handle: int, owner: QualifiedName, properties: list[PropertyShape]) -> None:
        name = owner.nested("Patch")
        if self._existing(name, (handle, "patch"), shape.span) is not None:
            return

        builder = self._add_builder(name, DefinitionKind.PATCH, (handle, "patch"), shape.span)
        for prop in properties:
            type_ref = self.resolve_type_reference(prop.range, NamingContext.for_property(owner, prop.name))
            builder.properties.append(
                PropertyDefinition(
                    name=to_lower_camel_case(prop.name),
                    wire_name=prop.name,
                    type_ref=type_ref.non_optional(),
                    optional=True,
                    tri_state=True,
                )
            )
        logger.debug("defined patch record %s", name)

    def _constraints_for(self, use: Shape, type_ref: TypeRef) -> Constraints | None:
        target = self.index.dereference(use)

        def facet(attr: str):
            value = getattr(use, attr, None)
            if value is None and type(target) is type(use):
                value = getattr(target, attr, None)
            return value

        constraints = Constraints()
        if isinstance(target, ScalarShape):
            if target.data_type == DataType.STRING:
                min_length = facet("min_length")
                max_length = facet("max_length")
                pattern = facet("pattern")
                constraints = Constraints(
                    min_length=min_length or None,
                    max_length=max_length,
                    pattern=pattern if pattern and pattern != ".*" else None,
                )
            elif target.data_type in NUMERIC_DATA_TYPES:
                constraints = Constraints(minimum=facet("minimum"), maximum=facet("maximum"))
        elif isinstance(target, ArrayShape):
            constraints = Constraints(min_items=facet("min_items") or None, max_items=facet("max_items"))
        elif self.definition_kind(type_ref.non_optional()) in CLASS_KINDS:
            constraints = Constraints(valid=True)

        return None if constraints.is_empty() else constraints

    # Helpers

    def _is_class_like(self, type_ref: TypeRef) -> bool:
        # Overridden types are opaque but may still be extended.
        if type_ref.kind is TypeRefKind.EXTERNAL:
            return True
        return self.definition_kind(type_ref) in CLASS_KINDS

    def _existing(self, name: QualifiedName, identity: tuple[object, str], span: SourceSpan | None) -> TypeRef | None:
        builder = self._builders.get(name)
        if builder is None:
            return None
        if builder.identity != identity:
            raise NameCollisionError(name.canonical, builder.span, span)
        return self.types.defined(name)

    def _add_builder(
        self,
        name: QualifiedName,
        kind: DefinitionKind,
        identity: tuple[object, str],
        span: SourceSpan | None,
    ) -> _DefinitionBuilder:
        builder = _DefinitionBuilder(name=name, kind=kind, identity=identity, span=span)
        self._builders[name] = builder
        return builder

    def _enclosing_name_of(self, shape: Shape, document: Document) -> QualifiedName:
        type_ref = self.resolve_type_reference(shape)
        if not type_ref.is_defined:
            raise AnnotationError(
                "Nested annotation references non-defining enclosing type",
                shape.name,
                shape.span,
            )
        return type_ref.name

    def _collect_types(self, shapes: list[Shape]) -> list[Shape]:
        collected: list[Shape] = []
        for shape in shapes:
            resolved = self.index.dereference(shape)
            if isinstance(resolved, UnionShape):
                collected.extend(self.index.dereference(member) for member in resolved.any_of)
            else:
                collected.append(resolved)
        return collected

    def _class_hierarchy(self, shape: Shape) -> list[TypeRef] | None:
        hierarchy: list[TypeRef] = []
        for ancestor in self.resolution.find_ancestry(shape):
            type_ref = self.resolve_type_reference(ancestor)
            if not self._is_class_like(type_ref):
                return None
            if hierarchy and hierarchy[-1] is type_ref:
                continue
            hierarchy.append(type_ref)
        return hierarchy

    def _nearest_common_ancestor(self, shapes: list[Shape]) -> TypeRef | None:
        common: list[TypeRef] | None = None
        for shape in shapes:
            hierarchy = self._class_hierarchy(shape)
            if hierarchy is None:
                return None
            if common is None:
                common = hierarchy
                continue
            shared: list[TypeRef] = []
            for current, candidate in zip(common, hierarchy):
                if current is not candidate:
                    break
                shared.append(current)
            common = shared
            if not common:
                return None

        return common[-1] if common else None
