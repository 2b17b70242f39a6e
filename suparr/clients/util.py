"""Readers for the credentials services write into their own state on first boot."""
from __future__ import annotations

import configparser
import json
from pathlib import Path
from typing import Optional
from xml.etree import ElementTree

import yaml


def read_arr_api_key(config_file: Path) -> Optional[str]:
    """Read the <ApiKey> value from an *arr application's config.xml."""
    if not config_file.exists():
        return None
    try:
        tree = ElementTree.parse(config_file)
    except (ElementTree.ParseError, OSError):
        return None
    api_key = tree.findtext("ApiKey")
    return api_key.strip() if api_key else None


def read_bazarr_api_key(config_file: Path) -> Optional[str]:
    """Bazarr keeps its key under ``auth.apikey`` in config.yaml."""
    if not config_file.exists():
        return None
    try:
        data = yaml.safe_load(config_file.read_text())
    except (yaml.YAMLError, OSError):
        return None
    if not isinstance(data, dict):
        return None
    auth = data.get("auth") or {}
    api_key = auth.get("apikey") if isinstance(auth, dict) else None
    return str(api_key).strip() if api_key else None


def _read_sabnzbd_ini(config_file: Path) -> Optional[configparser.ConfigParser]:
    if not config_file.exists():
        return None
    # sabnzbd.ini opens with section-less __version__ lines and nests servers
    # as [[host]], which plain INI reads as a section named "[host]"
    parser = configparser.ConfigParser(strict=False, interpolation=None)
    try:
        parser.read_string("[__top__]\n" + config_file.read_text())
    except (configparser.Error, OSError):
        return None
    return parser


def read_sabnzbd_api_key(config_file: Path) -> Optional[str]:
    parser = _read_sabnzbd_ini(config_file)
    if parser is None or not parser.has_option("misc", "api_key"):
        return None
    value = parser.get("misc", "api_key").strip()
    return value or None


def sabnzbd_setup_complete(config_file: Path) -> bool:
    """True once the SABnzbd wizard has saved at least one usenet server."""
    parser = _read_sabnzbd_ini(config_file)
    if parser is None or not parser.has_section("servers"):
        return False
    sections = parser.sections()
    following = sections[sections.index("servers") + 1:][:1]
    # A nested section directly under [servers] is a server
    return bool(following) and following[0].startswith("[")


def read_seerr_api_key(config_file: Path) -> Optional[str]:
    """Overseerr stores its key in settings.json under ``main.apiKey``."""
    if not config_file.exists():
        return None
    try:
        data = json.loads(config_file.read_text())
    except (ValueError, OSError):
        return None
    main = data.get("main") if isinstance(data, dict) else None
    api_key = main.get("apiKey") if isinstance(main, dict) else None
    return str(api_key).strip() if api_key else None
