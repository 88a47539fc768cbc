from typing import List

from ezdiscovery.common import ChangeRegion, MethodIdentifier, get_logger
from ezdiscovery.source_model import (
    SourceFile,
    common_ancestor,
    enclosing_method,
    methods_under,
)

logger = get_logger(__name__)


def find_enclosing_methods(source_file: SourceFile, region: ChangeRegion) -> List[MethodIdentifier]:
    """
    Methods touched by ``region``.

    The elements at both ends of the region are joined at their common
    ancestor. Every method declared below the ancestor comes first, in
    document order, followed by the method containing the ancestor itself.
    Local functions count as part of the method declaring them. Methods of
    classes declared inside functions have no qualified name and are left out.
    """
    start = source_file.element_at(region.start_offset)
    end = source_file.element_at(region.end_offset)
    parent = common_ancestor([start, end])
    if parent is None:
        logger.debug(
            f"No source element at {region.file}:{region.start_offset}-{region.end_offset}"
        )
        return []

    methods = methods_under(parent)
    containing_method = enclosing_method(parent)
    if containing_method is not None and containing_method not in methods:
        methods.append(containing_method)

    identifiers = []
    for method in methods:
        identifier = source_file.method_identifier(method)
        if identifier is None:
            logger.debug(f"Skipping {method.name} in {region.file}: no qualified class name")
            continue
        if identifier not in identifiers:
            identifiers.append(identifier)
    return identifiers
