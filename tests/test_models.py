"""Tests for mapping upstream payloads to internal models."""

from datetime import datetime, timezone

from armory.app.services.models import (
    Achievement,
    Character,
    CharacterClass,
    CharacterRace,
    Faction,
    Gender,
    Guild,
    Item,
    ItemQuality,
    Mount,
    Realm,
    Region,
)


class TestCharacter:

    def test_full_payload(self):
        payload = {
            "id": 42,
            "name": "Johndoe",
            "level": 70,
            "gender": {"type": "FEMALE", "name": "Female"},
            "faction": {"type": "HORDE", "name": "Horde"},
            "race": {"id": 10, "name": "Blood Elf"},
            "character_class": {"id": 6, "name": "Death Knight"},
            "realm": {"name": "Ragnaros", "slug": "ragnaros"},
            "guild": {"id": 7, "name": "The Guild"},
            "achievement_points": 12000,
            "average_item_level": 480,
            "equipped_item_level": 478,
        }

        character = Character.from_payload(payload, realm="ragnaros", region=Region.EU)

        assert character.realm == "Ragnaros"
        assert character.region == Region.EU
        assert character.gender == Gender.FEMALE
        assert character.faction == Faction.HORDE
        assert character.race == CharacterRace.BLOOD_ELF
        assert character.character_class == CharacterClass.DEATH_KNIGHT
        assert character.guild_name == "The Guild"
        assert character.equipped_item_level == 478

    def test_missing_and_unknown_fields_fall_back(self):
        payload = {
            "id": 1,
            "name": "Someone",
            "race": {"name": "Vulpera"},
            "character_class": {"name": "Bard"},
        }

        character = Character.from_payload(payload, realm="Ragnaros", region=Region.US)

        assert character.realm == "Ragnaros"
        assert character.level == 0
        assert character.race == CharacterRace.UNKNOWN
        assert character.character_class == CharacterClass.UNKNOWN
        assert character.faction == Faction.NEUTRAL
        assert character.guild_id is None


class TestOtherModels:

    def test_guild_created_timestamp_is_milliseconds(self):
        guild = Guild.from_payload(
            {"id": 5, "name": "The Guild", "created_timestamp": 1_600_000_000_000},
            realm="Ragnaros",
            region=Region.US,
        )
        assert guild.created_at == datetime.fromtimestamp(1_600_000_000, tz=timezone.utc)
        assert guild.faction == Faction.NEUTRAL

    def test_item(self):
        item = Item.from_payload(
            {
                "id": 19019,
                "name": "Thunderfury",
                "quality": {"type": "LEGENDARY"},
                "level": 80,
                "item_class": {"id": 2},
                "item_subclass": {"id": 7},
                "inventory_type": {"type": "WEAPON"},
                "max_count": 1,
                "is_equippable": True,
            }
        )
        assert item.quality == ItemQuality.LEGENDARY
        assert item.item_class == 2
        assert item.inventory_type == "WEAPON"
        assert item.is_equippable

    def test_item_unknown_quality_defaults_to_common(self):
        item = Item.from_payload({"id": 1, "name": "x", "quality": {"type": "MYTHIC_PLUS"}})
        assert item.quality == ItemQuality.COMMON

    def test_realm_timezone_defaults_by_region(self):
        realm = Realm.from_payload({"id": 1, "name": "Azshara", "slug": "azshara"}, Region.KR)
        assert realm.timezone == "Asia/Seoul"

    def test_achievement_and_mount(self):
        achievement = Achievement.from_payload(
            {"id": 6, "name": "Level 10", "points": 10, "category": {"name": "Character"}}
        )
        mount = Mount.from_payload(
            {"id": 35, "name": "Brown Horse", "faction": {"type": "ALLIANCE"}, "source": {"type": "VENDOR"}}
        )
        assert achievement.category == "Character"
        assert mount.faction == Faction.ALLIANCE
        assert mount.source == "VENDOR"
        assert Mount.from_payload({"id": 36, "name": "x"}).faction is None
