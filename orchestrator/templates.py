from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from shared.errors import UnknownGameType


@dataclass(frozen=True)
class Template:
    name: str
    description: str
    max_participants: int
    min_participants: int
    entry_fee: float
    prize_pool: Mapping[str, float]
    rules: Mapping[str, object] = field(default_factory=dict)
    auto_start_threshold: float = 0.8

    def to_payload(self) -> dict:
        """Template fields in the shape the tournament service accepts."""
        return {
            'name': self.name,
            'description': self.description,
            'max_participants': self.max_participants,
            'min_participants': self.min_participants,
            'entry_fee': self.entry_fee,
            'prize_pool': dict(self.prize_pool),
            'rules': {
                key: list(value) if isinstance(value, tuple) else value
                for key, value in self.rules.items()
            },
            'auto_start_threshold': self.auto_start_threshold,
        }


DEFAULT_TEMPLATES = MappingProxyType({
    'BR_MATCH': Template(
        name='BR Match Tournament',
        description='Automated Battle Royale tournament',
        max_participants=50,
        min_participants=10,
        entry_fee=50,
        prize_pool=MappingProxyType({'first': 1500, 'second': 750, 'third': 250}),
        rules=MappingProxyType({
            'max_players': 50,
            'min_players': 10,
            'game_mode': 'battle_royale',
            'map': 'Erangel',
            'time_limit': 30,
            'custom_rules': ('Last player standing wins', 'No teaming allowed'),
            'allow_spectators': True,
            'auto_start': True,
        }),
    ),
    'CLASH_SQUAD': Template(
        name='Clash Squad Tournament',
        description='Automated squad-based tournament',
        max_participants=32,
        min_participants=8,
        entry_fee=75,
        prize_pool=MappingProxyType({'first': 2000, 'second': 1000, 'third': 500}),
        rules=MappingProxyType({
            'max_players': 32,
            'min_players': 8,
            'game_mode': 'single_elimination',
            'map': 'Miramar',
            'time_limit': 45,
            'custom_rules': ('4-player squads', 'Best of 3 matches'),
            'allow_spectators': True,
            'auto_start': True,
        }),
    ),
    'LONE_WOLF': Template(
        name='Lone Wolf Tournament',
        description='Automated solo player tournament',
        max_participants=64,
        min_participants=16,
        entry_fee=100,
        prize_pool=MappingProxyType({'first': 3000, 'second': 1500, 'third': 750}),
        rules=MappingProxyType({
            'max_players': 64,
            'min_players': 16,
            'game_mode': 'single_elimination',
            'map': 'Sanhok',
            'time_limit': 60,
            'custom_rules': ('Solo players only', 'No teaming'),
            'allow_spectators': True,
            'auto_start': True,
        }),
    ),
    'CS_2_VS_2': Template(
        name='CS 2 vs 2 Tournament',
        description='Automated Counter-Strike 2v2 tournament',
        max_participants=16,
        min_participants=4,
        entry_fee=125,
        prize_pool=MappingProxyType({'first': 2500, 'second': 1250, 'third': 625}),
        rules=MappingProxyType({
            'max_players': 16,
            'min_players': 4,
            'game_mode': 'single_elimination',
            'map': 'de_dust2',
            'time_limit': 90,
            'custom_rules': ('2v2 format', 'Best of 5 rounds'),
            'allow_spectators': True,
            'auto_start': True,
        }),
    ),
})


class TemplateCatalog:
    """Read-only game type -> template lookup used to seed automated tournaments."""

    def __init__(self, templates: Mapping[str, Template] = None):
        self._templates = MappingProxyType(dict(templates if templates is not None else DEFAULT_TEMPLATES))

    def resolve(self, game_type: str) -> Template:
        try:
            return self._templates[game_type]
        except KeyError:
            raise UnknownGameType(game_type)
