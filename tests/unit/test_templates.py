"""
Unit tests for the template catalog.
"""
import pytest
from shared.errors import UnknownGameType
from orchestrator.templates import DEFAULT_TEMPLATES, Template, TemplateCatalog


class TestTemplateCatalog:
    """Tests for TemplateCatalog lookups."""

    def test_resolve(self):
        template = TemplateCatalog().resolve('BR_MATCH')
        assert template.max_participants == 50
        assert template.auto_start_threshold == 0.8

    def test_resolve_unknown(self):
        with pytest.raises(UnknownGameType) as exc:
            TemplateCatalog().resolve('CHESS')
        assert exc.value.game_type == 'CHESS'

    def test_custom_templates(self):
        catalog = TemplateCatalog({'BR_MATCH': DEFAULT_TEMPLATES['BR_MATCH']})
        with pytest.raises(UnknownGameType):
            catalog.resolve('CLASH_SQUAD')

    def test_catalog_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_TEMPLATES['CHESS'] = DEFAULT_TEMPLATES['BR_MATCH']


class TestTemplate:
    """Tests for Template payloads."""

    def test_frozen(self):
        template = DEFAULT_TEMPLATES['CS_2_VS_2']
        with pytest.raises(AttributeError):
            template.max_participants = 99

    def test_to_payload(self):
        payload = DEFAULT_TEMPLATES['BR_MATCH'].to_payload()
        assert payload['name'] == 'BR Match Tournament'
        assert payload['prize_pool'] == {'first': 1500, 'second': 750, 'third': 250}
        assert payload['rules']['game_mode'] == 'battle_royale'
        assert payload['rules']['custom_rules'] == ['Last player standing wins', 'No teaming allowed']

    def test_payload_is_a_copy(self):
        template = DEFAULT_TEMPLATES['LONE_WOLF']
        payload = template.to_payload()
        payload['prize_pool']['first'] = 0
        assert template.prize_pool['first'] == 3000

    @pytest.mark.parametrize("game_type", list(DEFAULT_TEMPLATES))
    def test_capacity_bounds(self, game_type):
        template = DEFAULT_TEMPLATES[game_type]
        assert isinstance(template, Template)
        assert 2 <= template.min_participants <= template.max_participants <= 100
