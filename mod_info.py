"""
Чтение описания мода (mod.xml): название, автор, версия, папки и опции.
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional


class ModInfoError(ValueError):
    pass


@dataclass
class ModFolder:
    folder: str
    active_when: Optional[str] = None


@dataclass
class ConfigOptionChoice:
    value: int
    name: str
    preview_file: Optional[str] = None


@dataclass
class ConfigOption:
    type: Optional[str] = None
    default: bool = False
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    options: List[ConfigOptionChoice] = field(default_factory=list)


@dataclass
class ModInfo:
    name: Optional[str] = None
    id: Optional[str] = None
    author: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    link: Optional[str] = None
    preview_file: Optional[str] = None
    category: Optional[str] = None
    release_date: Optional[str] = None
    release_notes: Optional[str] = None

    mod_folders: List[ModFolder] = field(default_factory=list)
    config_options: List[ConfigOption] = field(default_factory=list)
    extra: Dict[str, Optional[str]] = field(default_factory=dict)


TEXT_FIELDS = {
    'Name': 'name',
    'ID': 'id',
    'Author': 'author',
    'Version': 'version',
    'Description': 'description',
    'Link': 'link',
    'PreviewFile': 'preview_file',
    'Category': 'category',
    'ReleaseDate': 'release_date',
    'ReleaseNotes': 'release_notes',
}


def _text(node) -> Optional[str]:
    return node.text.strip() if node.text is not None else None


def _int(text: Optional[str], what: str) -> int:
    try:
        return int((text or '').strip())
    except ValueError:
        raise ModInfoError(f"{what} must be an integer, got {text!r}") from None


def _attr_or_child(node, name: str) -> Optional[str]:
    if name in node.attrib:
        return node.attrib[name]
    child = node.find(name)
    return _text(child) if child is not None else None


def parse_mod_folder(node) -> ModFolder:
    folder = _attr_or_child(node, 'Folder')
    if folder is None:
        folder = _text(node)
    if not folder:
        raise ModInfoError("ModFolder without a folder name")
    return ModFolder(folder=folder, active_when=_attr_or_child(node, 'ActiveWhen'))


def parse_config_option(parent) -> ConfigOption:
    opt = ConfigOption()

    for node in parent:
        tag = node.tag
        if tag == 'Type':
            opt.type = _text(node)
        elif tag == 'Default':
            opt.default = _int(_text(node), 'ConfigOption Default') > 0
        elif tag == 'ID':
            opt.id = _text(node)
        elif tag == 'Name':
            opt.name = _text(node)
        elif tag == 'Description':
            opt.description = _text(node)
        elif tag == 'Option':
            opt.options.append(ConfigOptionChoice(
                value=_int(node.get('Value'), 'Option Value'),
                name=node.get('Name', ''),
                preview_file=node.get('PreviewFile')
            ))
        else:
            raise ModInfoError(f"Unknown ConfigOption element <{tag}>")

    return opt


def parse_mod_info(text: str) -> ModInfo:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise ModInfoError(f"Malformed mod descriptor: {e}") from e

    if root.tag != 'ModInfo':
        raise ModInfoError(f"Expected <ModInfo> root, got <{root.tag}>")

    info = ModInfo()
    for node in root:
        if node.tag in TEXT_FIELDS:
            setattr(info, TEXT_FIELDS[node.tag], _text(node))
        elif node.tag == 'ModFolder':
            info.mod_folders.append(parse_mod_folder(node))
        elif node.tag == 'ConfigOption':
            info.config_options.append(parse_config_option(node))
        else:
            info.extra[node.tag] = _text(node)

    return info


def load_mod_info(path) -> ModInfo:
    with open(path, 'r', encoding='utf-8-sig') as f:
        return parse_mod_info(f.read())
