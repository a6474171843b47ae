"""Internal representation of game data.

These models are what the retrieval service returns and what the
distributed cache stores; changing a field's shape means bumping the
cache key schema version.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Region(str, Enum):
    US = "us"
    EU = "eu"
    KR = "kr"
    TW = "tw"
    CN = "cn"


class Faction(str, Enum):
    ALLIANCE = "alliance"
    HORDE = "horde"
    NEUTRAL = "neutral"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class CharacterClass(str, Enum):
    WARRIOR = "warrior"
    PALADIN = "paladin"
    HUNTER = "hunter"
    ROGUE = "rogue"
    PRIEST = "priest"
    DEATH_KNIGHT = "death knight"
    SHAMAN = "shaman"
    MAGE = "mage"
    WARLOCK = "warlock"
    MONK = "monk"
    DRUID = "druid"
    DEMON_HUNTER = "demon hunter"
    EVOKER = "evoker"
    UNKNOWN = "unknown"


class CharacterRace(str, Enum):
    HUMAN = "human"
    ORC = "orc"
    DWARF = "dwarf"
    NIGHT_ELF = "night elf"
    UNDEAD = "undead"
    TAUREN = "tauren"
    GNOME = "gnome"
    TROLL = "troll"
    BLOOD_ELF = "blood elf"
    DRAENEI = "draenei"
    UNKNOWN = "unknown"


class ItemQuality(str, Enum):
    POOR = "poor"
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"
    ARTIFACT = "artifact"
    HEIRLOOM = "heirloom"


_REGION_TIMEZONES = {
    Region.US: "America/Los_Angeles",
    Region.EU: "Europe/Paris",
    Region.KR: "Asia/Seoul",
    Region.TW: "Asia/Taipei",
    Region.CN: "Asia/Shanghai",
}


def _nested(payload: dict[str, Any], name: str, attr: str) -> Optional[Any]:
    """payload[name][attr], or None when either level is missing."""
    value = payload.get(name)
    if isinstance(value, dict):
        return value.get(attr)
    return None


def _enum(enum_cls: type[Enum], raw: Optional[str], default: Enum) -> Any:
    if not raw:
        return default
    try:
        return enum_cls(raw.strip().lower().replace("_", " "))
    except ValueError:
        return default


def _faction(raw: Optional[str]) -> Faction:
    return _enum(Faction, raw, Faction.NEUTRAL)


class Character(BaseModel):
    id: int
    name: str
    realm: str
    region: Region
    level: int = 0
    character_class: CharacterClass = CharacterClass.UNKNOWN
    race: CharacterRace = CharacterRace.UNKNOWN
    gender: Gender = Gender.MALE
    faction: Faction = Faction.NEUTRAL
    guild_id: Optional[int] = None
    guild_name: Optional[str] = None
    achievement_points: int = 0
    average_item_level: int = 0
    equipped_item_level: int = 0
    last_modified: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_payload(cls, payload: dict[str, Any], realm: str, region: Region) -> "Character":
        return cls(
            id=payload["id"],
            name=payload["name"],
            realm=_nested(payload, "realm", "name") or realm,
            region=region,
            level=payload.get("level", 0),
            character_class=_enum(
                CharacterClass, _nested(payload, "character_class", "name"), CharacterClass.UNKNOWN
            ),
            race=_enum(CharacterRace, _nested(payload, "race", "name"), CharacterRace.UNKNOWN),
            gender=_enum(Gender, _nested(payload, "gender", "type"), Gender.MALE),
            faction=_faction(_nested(payload, "faction", "type")),
            guild_id=_nested(payload, "guild", "id"),
            guild_name=_nested(payload, "guild", "name"),
            achievement_points=payload.get("achievement_points", 0),
            average_item_level=payload.get("average_item_level", 0),
            equipped_item_level=payload.get("equipped_item_level", 0),
        )


class Guild(BaseModel):
    id: int
    name: str
    realm: str
    region: Region
    faction: Faction = Faction.NEUTRAL
    member_count: int = 0
    achievement_points: int = 0
    created_at: Optional[datetime] = None
    last_modified: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_payload(cls, payload: dict[str, Any], realm: str, region: Region) -> "Guild":
        created_ms = payload.get("created_timestamp")
        return cls(
            id=payload["id"],
            name=payload["name"],
            realm=_nested(payload, "realm", "name") or realm,
            region=region,
            faction=_faction(_nested(payload, "faction", "type")),
            member_count=payload.get("member_count", 0),
            achievement_points=payload.get("achievement_points", 0),
            created_at=(
                datetime.fromtimestamp(created_ms / 1000, tz=timezone.utc) if created_ms else None
            ),
        )


class Item(BaseModel):
    id: int
    name: str
    quality: ItemQuality = ItemQuality.COMMON
    level: int = 0
    required_level: int = 0
    item_class: int = 0
    item_subclass: int = 0
    inventory_type: Optional[str] = None
    max_stack: int = 0
    is_equippable: bool = False
    purchase_price: int = 0
    sell_price: int = 0

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Item":
        return cls(
            id=payload["id"],
            name=payload["name"],
            quality=_enum(ItemQuality, _nested(payload, "quality", "type"), ItemQuality.COMMON),
            level=payload.get("level", 0),
            required_level=payload.get("required_level", 0),
            item_class=_nested(payload, "item_class", "id") or 0,
            item_subclass=_nested(payload, "item_subclass", "id") or 0,
            inventory_type=_nested(payload, "inventory_type", "type"),
            max_stack=payload.get("max_count", 0),
            is_equippable=payload.get("is_equippable", False),
            purchase_price=payload.get("purchase_price", 0),
            sell_price=payload.get("sell_price", 0),
        )


class Realm(BaseModel):
    id: int
    name: str
    slug: str
    region: Region
    locale: str = "en_US"
    timezone: str = "UTC"
    category: Optional[str] = None
    realm_type: Optional[str] = None
    is_tournament: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any], region: Region) -> "Realm":
        return cls(
            id=payload["id"],
            name=payload["name"],
            slug=payload["slug"],
            region=region,
            locale=payload.get("locale") or "en_US",
            timezone=payload.get("timezone") or _REGION_TIMEZONES.get(region, "UTC"),
            category=payload.get("category"),
            realm_type=_nested(payload, "type", "type"),
            is_tournament=payload.get("is_tournament", False),
        )


class Achievement(BaseModel):
    id: int
    name: str
    description: str = ""
    points: int = 0
    is_account_wide: bool = False
    category: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Achievement":
        return cls(
            id=payload["id"],
            name=payload["name"],
            description=payload.get("description") or "",
            points=payload.get("points", 0),
            is_account_wide=payload.get("is_account_wide", False),
            category=_nested(payload, "category", "name"),
        )


class Mount(BaseModel):
    id: int
    name: str
    description: str = ""
    source: Optional[str] = None
    faction: Optional[Faction] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Mount":
        faction_type = _nested(payload, "faction", "type")
        return cls(
            id=payload["id"],
            name=payload["name"],
            description=payload.get("description") or "",
            source=_nested(payload, "source", "type"),
            faction=_faction(faction_type) if faction_type else None,
        )
