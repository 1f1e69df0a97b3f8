# xml_utils.py
from __future__ import annotations
from pathlib import Path
from typing import Iterator, List, Optional, Tuple
from lxml import etree as ET

"""
XML Utilities for KNIME node settings.

Overview
----------------------------
Helpers for reading and writing the ``settings.xml`` file KNIME stores in every
node directory. All lookups are namespace-agnostic (XPath ``local-name()``) so
files written with or without the XMLConfig namespace are accepted.

Runtime Behavior
----------------------------
Inputs:
- A node directory containing ``settings.xml`` or a direct path to the file.

Outputs:
- Entry values as stripped strings, ordered name lists of column filters, and
  the factory id of the node.

Edge Cases
----------------------------
Missing files and missing entries yield ``None`` (or an empty list); callers
decide on defaults.

Usage
----------------------------
```python
root = load_settings_root(node_directory)
model = child_config(root, "model")
chunk = entry_value(model, "chunkSize")
```
"""

__all__ = [
    "XML_PARSER",
    "KNIME_CONFIG_NS",
    "resolve_settings_path",
    "load_settings_root",
    "iter_entries",
    "entry_value",
    "child_config",
    "collect_name_list",
    "parse_settings_xml",
    "new_config",
    "add_entry",
    "add_child_config",
    "add_name_list",
]

XML_PARSER = ET.XMLParser(
    remove_comments=True,
    resolve_entities=False,
    no_network=True,
    ns_clean=True,
    recover=True,
)

KNIME_CONFIG_NS = "http://www.knime.org/2008/09/XMLConfig"


def resolve_settings_path(path: Path) -> Optional[Path]:
    """
    Accept a node directory or a direct settings.xml path.

    Returns:
        The settings file, or None if it does not exist.
    """
    path = Path(path)
    if path.is_dir():
        settings = path / "settings.xml"
        return settings if settings.exists() else None
    if path.suffix == ".xml" and path.exists():
        return path
    return None


def load_settings_root(path: Path) -> Optional[ET._Element]:
    settings = resolve_settings_path(path)
    if settings is None:
        return None
    return ET.parse(str(settings), parser=XML_PARSER).getroot()


def iter_entries(root: ET._Element) -> Iterator[Tuple[str, Optional[str]]]:
    """Yield (key, value) pairs of the <entry> children of `root` (not recursive)."""
    for ent in root.xpath("./*[local-name()='entry']"):
        k = (ent.get("key") or "").strip()
        v = ent.get("value")
        yield k, (v.strip() if v is not None else None)


def entry_value(config_el: ET._Element, key: str) -> Optional[str]:
    """Value of the direct <entry key=...> child of `config_el`, stripped, or None."""
    vals = config_el.xpath("./*[local-name()='entry' and @key=$k]/@value", k=key)
    return (vals[0] or "").strip() if vals else None


def child_config(config_el: ET._Element, key: str) -> Optional[ET._Element]:
    vals = config_el.xpath("./*[local-name()='config' and @key=$k]", k=key)
    return vals[0] if vals else None


def collect_name_list(config_el: Optional[ET._Element], key: str) -> List[str]:
    """
    Read a KNIME string array config (e.g. ``included_names``) in index order.

    Entries are ``<entry key="0" value="..."/>``, ``<entry key="1" .../>`` plus an
    ``array-size`` entry; duplicates are dropped preserving the first occurrence.
    """
    if config_el is None:
        return []
    base = child_config(config_el, key)
    if base is None:
        return []
    numbered: List[Tuple[int, str]] = []
    for k, v in iter_entries(base):
        if k.isdigit() and v is not None:
            numbered.append((int(k), v))
    out: List[str] = []
    seen = set()
    for _, name in sorted(numbered, key=lambda t: t[0]):
        if name not in seen:
            seen.add(name)
            out.append(name)
    return out


def parse_settings_xml(node_dir: Path) -> Tuple[Optional[str], Optional[str]]:
    """
    Parses the settings.xml file to extract the node name and factory.

    Args:
        node_dir: The node directory or the path to the settings.xml file.

    Returns:
        A tuple containing the node name and factory. If not found, returns (None, None).
    """
    root = load_settings_root(node_dir)
    if root is None:
        return (None, None)

    name_vals = root.xpath(
        ".//*[local-name()='entry' and (@key='name' or @key='label' or @key='node_name')]/@value"
    )
    fac_vals = root.xpath(
        ".//*[local-name()='entry' and (@key='factory' or @key='node_factory')]/@value"
    )
    return (name_vals[0] if name_vals else None, fac_vals[0] if fac_vals else None)


# ----------------------------
# Writers
# ----------------------------

def _q(tag: str) -> str:
    return f"{{{KNIME_CONFIG_NS}}}{tag}"


def new_config(key: str = "settings.xml") -> ET._Element:
    return ET.Element(_q("config"), nsmap={None: KNIME_CONFIG_NS}, key=key)


def add_entry(parent: ET._Element, key: str, type_: str, value) -> ET._Element:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return ET.SubElement(parent, _q("entry"), key=key, type=type_, value=str(value))


def add_child_config(parent: ET._Element, key: str) -> ET._Element:
    return ET.SubElement(parent, _q("config"), key=key)


def add_name_list(parent: ET._Element, key: str, names: List[str]) -> ET._Element:
    cfg = add_child_config(parent, key)
    add_entry(cfg, "array-size", "xint", len(names))
    for i, name in enumerate(names):
        add_entry(cfg, str(i), "xstring", name)
    return cfg
