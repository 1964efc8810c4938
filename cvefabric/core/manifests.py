"""Dependency manifest parsing and patching, one strategy per ecosystem.

Parsers are total: malformed input yields an empty mapping. Patchers return
the rewritten text, or ``None`` when the ecosystem has no automated strategy.
"""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ECOSYSTEM_MANIFEST: Dict[str, str] = {
    "npm": "package.json",
    "pip": "requirements.txt",
    "go": "go.mod",
    "cargo": "Cargo.toml",
    "maven": "pom.xml",
    "composer": "composer.json",
}

# Detection probes manifests in this order.
MANIFEST_PATHS: List[Tuple[str, str]] = [(path, eco) for eco, path in ECOSYSTEM_MANIFEST.items()]

GHSA_ECOSYSTEM: Dict[str, str] = {
    "npm": "NPM",
    "pip": "PIP",
    "go": "GO",
    "maven": "MAVEN",
    "cargo": "RUST",
    "composer": "COMPOSER",
}

NPM_SECTIONS = ("dependencies", "devDependencies", "peerDependencies")
COMPOSER_SECTIONS = ("require", "require-dev")

_PIP_REQ = re.compile(r"^([A-Za-z0-9_\-.]+)\s*[>=<!~]=?\s*(.+?)(?:\s*#.*)?$")
_PIP_NAME = re.compile(r"^([A-Za-z0-9_\-.]+)")
_PIP_SUFFIX = re.compile(r"\s*[;#].*$")
_GO_REQUIRE = re.compile(r"^require\s+(\S+)\s+(v\S+)")
_GO_BLOCK_LINE = re.compile(r"^(\S+)\s+(v[0-9]\S*)")
_CARGO_SECTION = re.compile(r"^\[(?:dev-)?dependencies\]\s*$")
_CARGO_PLAIN = re.compile(r'^([A-Za-z0-9_\-]+)\s*=\s*"([^"]+)"')
_CARGO_TABLE = re.compile(r'^([A-Za-z0-9_\-]+)\s*=\s*\{.*?\bversion\s*=\s*"([^"]+)"')


def _json_object(content: str) -> dict:
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def parse_npm(content: str) -> Dict[str, str]:
    data = _json_object(content)
    deps: Dict[str, str] = {}
    for section in NPM_SECTIONS:
        block = data.get(section)
        if isinstance(block, dict):
            deps.update({str(k): str(v) for k, v in block.items()})
    return deps


def parse_pip(content: str) -> Dict[str, str]:
    deps: Dict[str, str] = {}
    for line in (content or "").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        match = _PIP_REQ.match(stripped)
        if match:
            deps[match.group(1)] = match.group(2).strip()
            continue
        # -r/-e/--index-url and friends
        if stripped.startswith("-"):
            continue
        name_only = _PIP_NAME.match(stripped)
        if name_only:
            deps[name_only.group(1)] = "unknown"
    return deps


def parse_go(content: str) -> Dict[str, str]:
    deps: Dict[str, str] = {}
    in_block = False
    for line in (content or "").splitlines():
        stripped = line.strip()
        if stripped.startswith("require ("):
            in_block = True
            continue
        if in_block and stripped == ")":
            in_block = False
            continue
        match = _GO_REQUIRE.match(stripped)
        if not match and in_block:
            match = _GO_BLOCK_LINE.match(stripped)
        if match:
            deps[match.group(1)] = match.group(2)
    return deps


def parse_cargo(content: str) -> Dict[str, str]:
    deps: Dict[str, str] = {}
    in_deps = False
    for line in (content or "").splitlines():
        stripped = line.strip()
        if stripped.startswith("["):
            in_deps = bool(_CARGO_SECTION.match(stripped))
            continue
        if not in_deps:
            continue
        match = _CARGO_TABLE.match(stripped) or _CARGO_PLAIN.match(stripped)
        if match:
            deps[match.group(1)] = match.group(2)
    return deps


def _strip_ns(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_maven(content: str) -> Dict[str, str]:
    try:
        root = ET.fromstring(content)
    except (ET.ParseError, TypeError, ValueError):
        return {}
    deps: Dict[str, str] = {}
    for element in root.iter():
        if _strip_ns(element.tag) != "dependency":
            continue
        fields = {_strip_ns(child.tag): (child.text or "").strip() for child in element}
        group, artifact, version = fields.get("groupId"), fields.get("artifactId"), fields.get("version")
        # Property references are not resolved.
        if group and artifact and version and not version.startswith("${"):
            deps[f"{group}:{artifact}"] = version
    return deps


def parse_composer(content: str) -> Dict[str, str]:
    data = _json_object(content)
    deps: Dict[str, str] = {}
    for section in COMPOSER_SECTIONS:
        block = data.get(section)
        if not isinstance(block, dict):
            continue
        for name, constraint in block.items():
            if name == "php" or name.startswith("ext-"):
                continue
            deps[str(name)] = str(constraint)
    return deps


PARSERS: Dict[str, Callable[[str], Dict[str, str]]] = {
    "npm": parse_npm,
    "pip": parse_pip,
    "go": parse_go,
    "cargo": parse_cargo,
    "maven": parse_maven,
    "composer": parse_composer,
}


def parse_manifest(ecosystem: str, content: str) -> Dict[str, str]:
    """Parse a manifest into package -> version; never raises."""
    parser = PARSERS.get(ecosystem)
    if parser is None:
        return {}
    try:
        return parser(content)
    except Exception as exc:
        logger.debug("Failed to parse %s manifest: %s", ecosystem, exc)
        return {}


# Patchers


def update_npm(content: str, package: str, version: str) -> str:
    data = json.loads(content)
    for section in NPM_SECTIONS:
        block = data.get(section)
        if isinstance(block, dict) and block.get(package):
            block[package] = f"^{version}"
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def update_composer(content: str, package: str, version: str) -> str:
    data = json.loads(content)
    for section in COMPOSER_SECTIONS:
        block = data.get(section)
        if isinstance(block, dict) and block.get(package):
            block[package] = f"^{version}"
    return json.dumps(data, indent=4, ensure_ascii=False) + "\n"


def update_pip(content: str, package: str, version: str) -> str:
    pattern = re.compile(rf"^{re.escape(package)}\s*[>=<!~]=?")

    def rewrite(line: str) -> str:
        if not pattern.match(line):
            return line
        # environment markers and comments stay attached
        suffix = _PIP_SUFFIX.search(line)
        return f"{package}>={version}" + (suffix.group(0) if suffix else "")

    return "\n".join(rewrite(line) for line in content.split("\n"))


def update_go(content: str, package: str, version: str) -> str:
    target = version if version.startswith("v") else f"v{version}"
    pattern = re.compile(rf"^(\s*(?:require\s+)?{re.escape(package)}\s+)v\S+", re.MULTILINE)
    return pattern.sub(lambda m: m.group(1) + target, content)


def update_cargo(content: str, package: str, version: str) -> str:
    name = re.escape(package)
    plain = re.compile(rf'^(\s*{name}\s*=\s*")[^"]+(")', re.MULTILINE)
    table = re.compile(rf'^(\s*{name}\s*=\s*\{{[^\n}}]*?\bversion\s*=\s*")[^"]+(")', re.MULTILINE)
    content = table.sub(lambda m: m.group(1) + version + m.group(2), content)
    return plain.sub(lambda m: m.group(1) + version + m.group(2), content)


PATCHERS: Dict[str, Callable[[str, str, str], str]] = {
    "npm": update_npm,
    "pip": update_pip,
    "go": update_go,
    "cargo": update_cargo,
    "composer": update_composer,
}


def update_manifest(ecosystem: str, content: str, package: str, version: str) -> Optional[str]:
    """Rewrite ``package`` to ``version``; ``None`` means upgrade by hand."""
    patcher = PATCHERS.get(ecosystem)
    if patcher is None:
        return None
    return patcher(content, package, version)
