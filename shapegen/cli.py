from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from shapegen.config import GenerationMode, GenerationOptions, load_options
from shapegen.graph_dump import type_graph_to_debug_json
from shapegen.loader import load_documents
from shapegen.service_driver import OutlineHooks, ServiceDriver, ServiceOutline, render_outlines
from shapegen.shapes import Document
from shapegen.type_model import TypeDefinitionGraph
from shapegen.type_registry import TypeRegistry


logger = logging.getLogger(__name__)


def generate(documents: list[Document], options: GenerationOptions) -> tuple[TypeDefinitionGraph, list[ServiceOutline]]:
    registry = TypeRegistry.for_documents(documents, options)

    for document in registry.resolution.documents:
        for shape in document.declares:
            registry.resolve_type_reference(shape)

    hooks = OutlineHooks()
    driver = ServiceDriver(registry, hooks)
    for document in documents:
        if document.api is not None:
            driver.drive(document)

    graph = registry.build_graph()
    logger.debug("generated %d definitions and %d services", len(graph), len(hooks.services))
    return graph, hooks.services


def _options_from_args(args: argparse.Namespace) -> GenerationOptions:
    options = load_options(args.config) if args.config else GenerationOptions()
    return options.with_overrides(
        generation_mode=GenerationMode(args.mode) if args.mode else None,
        implement_model=args.implement_model,
        validation_constraints=args.validation_constraints,
        default_model_package=args.model_package,
        default_service_package=args.service_package,
        default_problem_base_uri=args.problem_base_uri,
    )


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="shapegen",
        description="Resolve an API shape graph into a language-neutral type definition graph.",
    )
    parser.add_argument("input", help="Input YAML shape-graph document")
    parser.add_argument("--config", help="YAML file with generation options")
    parser.add_argument("--mode", choices=[mode.value for mode in GenerationMode], help="Generation mode")
    parser.add_argument(
        "--implement-model",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Generate concrete classes instead of interfaces",
    )
    parser.add_argument(
        "--validation-constraints",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Record validation constraints on properties",
    )
    parser.add_argument("--model-package", help="Default package for model types")
    parser.add_argument("--service-package", help="Default package for services")
    parser.add_argument("--problem-base-uri", help="Base URI for problem types when the API declares no server")
    parser.add_argument("--print-services", action="store_true", help="Also print service outlines")
    parser.add_argument("-o", "--output", help="Output JSON file path (default: stdout)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )

    try:
        options = _options_from_args(args)
        documents = load_documents(Path(args.input))
        graph, services = generate(documents, options)

        output = type_graph_to_debug_json(graph)
        if args.output:
            Path(args.output).write_text(output + "\n", encoding="utf-8")
        else:
            print(output)

        if args.print_services:
            print(render_outlines(services))
        return 0
    except Exception as error:
        print(f"shapegen: {error}", file=sys.stderr)
        return 1
