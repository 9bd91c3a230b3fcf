"""Edit OVF descriptors without reformatting them.

The descriptor is treated as text: an ``<Item>`` block is located by its
``<rasd:ElementName>`` value and cut out, and every other byte is left as it
was so the rest of the document (and its manifest digest) stays predictable.
"""

from __future__ import annotations

import hashlib
import os
import re
from pathlib import Path
from typing import Union
from xml.sax.saxutils import unescape

from make_stemcell.logging import LoggerFactory

from ..exceptions import ElementNotFoundError, MultipleElementsFoundError, OVAValidationError

log = LoggerFactory.for_ova()

# Comments are matched first so an <Item> inside one is never considered.
_ITEM_RE = re.compile(
    r"<!--.*?-->"
    r"|(?P<item><(?P<prefix>\w+:)?Item\b[^>]*(?<!/)>.*?</(?P=prefix)?Item\s*>)",
    re.DOTALL,
)
_ELEMENT_NAME_RE = re.compile(
    r"<(?P<prefix>\w+:)?ElementName\b[^>]*>(?P<text>.*?)</(?P=prefix)?ElementName\s*>",
    re.DOTALL,
)
_MANIFEST_LINE_RE = re.compile(
    r"^(?P<algo>SHA1|SHA256|SHA512)\((?P<name>[^)]+)\)\s*=\s*(?P<digest>[0-9A-Fa-f]+)"
)


def _element_name(block: str) -> str | None:
    match = _ELEMENT_NAME_RE.search(block)
    if match is None:
        return None
    return unescape(match.group("text").strip())


def find_item_blocks(document: str, element_name: str) -> list[tuple[int, int]]:
    """Return ``(start, end)`` offsets of every matching ``<Item>`` block."""
    spans = []
    for match in _ITEM_RE.finditer(document):
        if match.group("item") is None:
            continue
        if _element_name(match.group("item")) == element_name:
            spans.append(match.span("item"))
    return spans


def remove_item_block(document: str, element_name: str) -> str:
    """Remove the one ``<Item>`` block whose ElementName is ``element_name``.

    Args:
        document: OVF descriptor text
        element_name: Exact ElementName value, e.g. ``"ethernet0"``

    Returns:
        The document without that block. Only the characters from ``<Item>``
        through ``</Item>`` are removed; surrounding whitespace is kept.

    Raises:
        ElementNotFoundError: No block matches
        MultipleElementsFoundError: More than one block matches
    """
    spans = find_item_blocks(document, element_name)
    if not spans:
        raise ElementNotFoundError(element_name)
    if len(spans) > 1:
        raise MultipleElementsFoundError(element_name, len(spans))

    start, end = spans[0]
    return document[:start] + document[end:]


def refresh_manifest_digest(manifest: str, filename: str, data: bytes) -> str:
    """Rewrite the digest line for ``filename`` in an OVF ``.mf`` manifest.

    The algorithm of the existing line is kept. A manifest without a line for
    ``filename`` is returned unchanged.
    """
    lines = manifest.splitlines(keepends=True)
    for index, line in enumerate(lines):
        match = _MANIFEST_LINE_RE.match(line)
        if match is None or match.group("name") != filename:
            continue
        algo = match.group("algo")
        digest = hashlib.new(algo.lower(), data).hexdigest()
        ending = line[len(line.rstrip("\r\n")):]
        lines[index] = f"{algo}({filename})= {digest}{ending}"
    return "".join(lines)


def _replace_file(path: Path, data: bytes) -> None:
    partial = path.with_name(f".{path.name}.partial")
    with open(partial, "xb") as handle:
        handle.write(data)
    os.replace(partial, path)


def strip_device(directory: Union[str, Path], element_name: str) -> str:
    """Remove a device block from the descriptor of an extracted OVA.

    Edits the single ``.ovf`` in ``directory`` in place and, if a ``.mf``
    manifest is present, refreshes its digest for the descriptor.

    Returns:
        Name of the edited descriptor

    Raises:
        OVAValidationError: The directory does not hold exactly one ``.ovf``
        ElementNotFoundError: The descriptor has no such block
        MultipleElementsFoundError: The descriptor has several such blocks
    """
    directory = Path(directory)
    descriptors = sorted(directory.glob("*.ovf"))
    if len(descriptors) != 1:
        raise OVAValidationError(
            f"expected one .ovf file, found {len(descriptors)}", str(directory)
        )
    descriptor = descriptors[0]

    with open(descriptor, "r", encoding="utf-8", newline="") as handle:
        document = handle.read()
    edited = remove_item_block(document, element_name).encode("utf-8")
    _replace_file(descriptor, edited)
    log.info(f"Removed {element_name} from {descriptor.name}")

    for manifest_path in directory.glob("*.mf"):
        with open(manifest_path, "r", encoding="utf-8", newline="") as handle:
            manifest = handle.read()
        refreshed = refresh_manifest_digest(manifest, descriptor.name, edited)
        if refreshed != manifest:
            _replace_file(manifest_path, refreshed.encode("utf-8"))
            log.debug(f"Updated digest of {descriptor.name} in {manifest_path.name}")

    return descriptor.name
