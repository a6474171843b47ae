"""Cache key construction for game data.

Key format: wow:{region}:{namespace}:{category}:{identifier}:{version}

The namespace doubles as the volatility class (static, dynamic, profile,
search) so TTL policy and key space line up. Every component is
lowercased, so two logically identical requests always map to the same
key. Bumping SCHEMA_VERSION orphans every previously cached value.
"""

from enum import Enum
from urllib.parse import quote

from armory.app.exceptions import InvalidArgumentError

PREFIX = "wow"
SEPARATOR = ":"
SCHEMA_VERSION = "v1"


class VolatilityClass(str, Enum):
    """How quickly a kind of data changes; drives TTL policy."""

    STATIC = "static"
    PROFILE = "profile"
    DYNAMIC = "dynamic"
    SEARCH = "search"


def _require_text(value: str, name: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgumentError(f"{name} cannot be null or empty")
    return str(value).strip().lower()


def _require_id(value: int, name: str) -> int:
    if value <= 0:
        raise InvalidArgumentError(f"{name} must be greater than 0")
    return value


def normalize_slug(realm: str) -> str:
    """Lowercase a realm name and turn spaces into hyphens."""
    return _require_text(realm, "Realm").replace(" ", "-")


class CacheKeys:
    """Builders for every cached resource."""

    @staticmethod
    def build(region: str, namespace: str, category: str, identifier: str) -> str:
        parts = [
            PREFIX,
            _require_text(region, "Region"),
            _require_text(namespace, "Namespace"),
            _require_text(category, "Category"),
            _require_text(identifier, "Identifier"),
            SCHEMA_VERSION,
        ]
        return SEPARATOR.join(parts)

    @classmethod
    def character(cls, region: str, realm: str, name: str) -> str:
        """wow:us:profile:character:ragnaros:johndoe:v1"""
        slug = normalize_slug(realm)
        name = _require_text(name, "Character name")
        return cls.build(region, VolatilityClass.PROFILE.value, "character", f"{slug}:{name}")

    @classmethod
    def guild(cls, region: str, realm: str, name: str) -> str:
        """wow:us:profile:guild:ragnaros:the%20guild:v1"""
        slug = normalize_slug(realm)
        name = quote(_require_text(name, "Guild name"), safe="")
        return cls.build(region, VolatilityClass.PROFILE.value, "guild", f"{slug}:{name}")

    @classmethod
    def item(cls, region: str, item_id: int) -> str:
        _require_id(item_id, "Item ID")
        return cls.build(region, VolatilityClass.STATIC.value, "item", str(item_id))

    @classmethod
    def achievement(cls, region: str, achievement_id: int) -> str:
        _require_id(achievement_id, "Achievement ID")
        return cls.build(region, VolatilityClass.STATIC.value, "achievement", str(achievement_id))

    @classmethod
    def mount(cls, region: str, mount_id: int) -> str:
        _require_id(mount_id, "Mount ID")
        return cls.build(region, VolatilityClass.STATIC.value, "mount", str(mount_id))

    @classmethod
    def realm(cls, region: str, realm: str) -> str:
        return cls.build(region, VolatilityClass.DYNAMIC.value, "realm", normalize_slug(realm))

    @classmethod
    def realm_index(cls, region: str) -> str:
        return cls.build(region, VolatilityClass.SEARCH.value, "realm-index", "all")

    @staticmethod
    def pattern(region: str, namespace: str | None = None, category: str | None = None) -> str:
        """Wildcard pattern for administrative removal.

        pattern("us") -> wow:us:*
        pattern("us", "static") -> wow:us:static:*
        pattern("us", "static", "item") -> wow:us:static:item:*
        """
        parts = [PREFIX, _require_text(region, "Region")]
        if namespace and namespace.strip():
            parts.append(namespace.strip().lower())
            if category and category.strip():
                parts.append(category.strip().lower())
        parts.append("*")
        return SEPARATOR.join(parts)

    @staticmethod
    def upstream_namespace(kind: str, region: str) -> str:
        """Namespace query value the upstream API expects, e.g. static-us."""
        return f"{_require_text(kind, 'Namespace type')}-{_require_text(region, 'Region')}"
