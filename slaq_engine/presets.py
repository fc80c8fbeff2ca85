"""
Named query presets.

Ships a set of built-in analyses grouped into security, performance and
traffic categories, and loads additional presets from a YAML file of the
form::

    presets:
      - name: slow-admin
        description: Large responses under /admin
        category: custom
        query: SELECT url, AVG(size) AS avg_size FROM logs WHERE url LIKE '/admin*' GROUP BY url

Every preset query is parsed when it is registered, so a broken preset is
reported up front rather than when it is run.
"""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import QueryError
from .parser import parse_query

logger = logging.getLogger(__name__)

CATEGORIES = {
    "security": "Security analysis, threat detection and attack pattern identification",
    "performance": "Performance monitoring, error analysis and resource usage",
    "traffic": "Traffic patterns, user agents and source distribution",
    "custom": "User-defined presets",
}


@dataclass(frozen=True)
class QueryPreset:
    """A named, described SLAQ query."""
    name: str
    query: str
    description: str = ""
    category: str = "custom"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


BUILTIN_PRESETS = [
    QueryPreset(
        name="security-failed-logins",
        description="Detect repeated failed authentication attempts",
        category="security",
        query="SELECT ip, COUNT() AS attempts, url FROM logs WHERE status IN (401, 403) "
              "GROUP BY ip, url HAVING attempts > 3 ORDER BY attempts DESC",
    ),
    QueryPreset(
        name="security-attack-patterns",
        description="Identify requests probing admin pages, PHP scripts and SQL endpoints",
        category="security",
        query="SELECT ip, url, method, status, COUNT() AS requests FROM logs "
              "WHERE (url LIKE '*admin*' OR url LIKE '*wp-admin*' OR url LIKE '*.php*' OR url LIKE '*sql*') "
              "GROUP BY ip, url, method, status ORDER BY requests DESC",
    ),
    QueryPreset(
        name="security-suspicious-ips",
        description="Find addresses producing many error responses",
        category="security",
        query="SELECT ip, COUNT() AS error_requests FROM logs WHERE status IS_ERROR "
              "GROUP BY ip HAVING error_requests > 10 ORDER BY error_requests DESC",
    ),
    QueryPreset(
        name="performance-slow-endpoints",
        description="Endpoints serving unusually large responses",
        category="performance",
        query="SELECT url, AVG(size) AS avg_response_size, COUNT() AS requests FROM logs "
              "WHERE status = 200 GROUP BY url HAVING avg_response_size > 50000 "
              "ORDER BY avg_response_size DESC LIMIT 20",
    ),
    QueryPreset(
        name="performance-error-analysis",
        description="Most frequent error responses by status and URL",
        category="performance",
        query="SELECT status, url, COUNT() AS error_count FROM logs WHERE status >= 400 "
              "GROUP BY status, url ORDER BY error_count DESC LIMIT 20",
    ),
    QueryPreset(
        name="performance-resource-usage",
        description="Bandwidth and request volume per hour of day",
        category="performance",
        query="SELECT HOUR(timestamp) AS hour, SUM(size) AS total_bytes, COUNT() AS requests "
              "FROM logs GROUP BY hour ORDER BY hour",
    ),
    QueryPreset(
        name="traffic-peak-analysis",
        description="Requests per hour of day",
        category="traffic",
        query="SELECT HOUR(timestamp), COUNT() FROM logs GROUP BY HOUR(timestamp) ORDER BY HOUR(timestamp)",
    ),
    QueryPreset(
        name="traffic-user-agents",
        description="Most common user agents",
        category="traffic",
        query="SELECT user_agent, COUNT() AS requests FROM logs GROUP BY user_agent "
              "ORDER BY requests DESC LIMIT 20",
    ),
    QueryPreset(
        name="traffic-bots",
        description="Automated clients by user agent",
        category="traffic",
        query="SELECT user_agent, COUNT() AS requests FROM logs WHERE user_agent IS_BOT "
              "GROUP BY user_agent ORDER BY requests DESC LIMIT 20",
    ),
    QueryPreset(
        name="traffic-geographic",
        description="Top public source addresses with a coarse region guess",
        category="traffic",
        query="SELECT ip, COUNTRY(ip) AS region, COUNT() AS requests FROM logs "
              "WHERE NOT IS_PRIVATE_IP(ip) GROUP BY ip ORDER BY requests DESC LIMIT 30",
    ),
    QueryPreset(
        name="simple-top-ips",
        description="Top requesting IP addresses",
        category="traffic",
        query="SELECT ip, COUNT() FROM logs GROUP BY ip ORDER BY COUNT() DESC LIMIT 10",
    ),
    QueryPreset(
        name="simple-status-codes",
        description="HTTP status code distribution",
        category="performance",
        query="SELECT status, COUNT() FROM logs GROUP BY status ORDER BY COUNT() DESC",
    ),
]


def validate_preset(preset: QueryPreset) -> None:
    """Raise ValueError if a preset is incomplete or its query does not parse."""
    if not preset.name:
        raise ValueError("Preset name is required")
    if not preset.query:
        raise ValueError(f"Preset '{preset.name}' has no query")
    if preset.category not in CATEGORIES:
        raise ValueError(
            f"Preset '{preset.name}' has unknown category '{preset.category}'"
        )
    try:
        parse_query(preset.query)
    except QueryError as e:
        raise ValueError(f"Preset '{preset.name}' has an invalid query: {e}")


def load_presets_file(presets_file: str) -> List[QueryPreset]:
    """Load and validate presets from a YAML file.

    Raises:
        ValueError: If the file is missing, malformed or holds an invalid preset
    """
    path = Path(presets_file)
    if not path.exists():
        raise ValueError(f"Presets file not found: {presets_file}")

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {presets_file}: {e}")

    entries = data.get('presets', []) if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise ValueError(f"{presets_file} must contain a 'presets' list")

    presets = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"Invalid preset entry: {entry!r}")
        preset = QueryPreset(
            name=str(entry.get('name', '')),
            query=str(entry.get('query', '')),
            description=str(entry.get('description', '')),
            category=str(entry.get('category', 'custom')),
        )
        validate_preset(preset)
        presets.append(preset)

    logger.info(f"Loaded {len(presets)} presets from {presets_file}")
    return presets


def load_presets(presets_file: Optional[str] = None) -> Dict[str, QueryPreset]:
    """Return built-in presets, extended or overridden by a YAML file."""
    presets = {preset.name: preset for preset in BUILTIN_PRESETS}
    if presets_file:
        for preset in load_presets_file(presets_file):
            if preset.name in presets:
                logger.info(f"Preset '{preset.name}' overrides the built-in definition")
            presets[preset.name] = preset
    return presets


def get_preset(name: str, presets: Optional[Dict[str, QueryPreset]] = None) -> QueryPreset:
    """Look up a preset by name.

    Raises:
        ValueError: If no preset has that name
    """
    presets = presets if presets is not None else load_presets()
    try:
        return presets[name]
    except KeyError:
        raise ValueError(f"Unknown preset: {name}")
