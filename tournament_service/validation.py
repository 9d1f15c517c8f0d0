"""
Request validation for tournament create/update payloads.

Every check appends a message to ``errors`` so callers get the full list
back in one ValidationError instead of the first failure only.
"""
import math
from datetime import datetime
from typing import List

from shared.clock import parse_datetime
from shared.errors import ValidationError
from .models import GAME_TYPES, TOURNAMENT_TYPES, GAME_MODES

TIMING_FIELDS = ('start_time', 'end_time', 'registration_deadline', 'check_in_deadline')


def _number(data: dict, key: str, errors: List[str], minimum: float = None,
            maximum: float = None, integer: bool = False, label: str = None):
    label = label or key
    value = data.get(key)
    if value is None or isinstance(value, bool):
        errors.append(f"{label} is required")
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        errors.append(f"{label} must be a {'whole ' if integer else ''}number")
        return None
    if not math.isfinite(number):
        errors.append(f"{label} must be a finite number")
        return None
    if integer:
        try:
            number = int(value)
        except (TypeError, ValueError, OverflowError):
            errors.append(f"{label} must be a whole number")
            return None
    if integer and float(value) != number:
        errors.append(f"{label} must be a whole number")
        return None
    if minimum is not None and number < minimum:
        errors.append(f"{label} must be at least {minimum}")
    if maximum is not None and number > maximum:
        errors.append(f"{label} must be at most {maximum}")
    return number


def _text(data: dict, key: str, errors: List[str], min_length: int = 0,
          max_length: int = None, required: bool = True):
    value = data.get(key)
    if value is None:
        if required:
            errors.append(f"{key} is required")
        return None
    if not isinstance(value, str):
        errors.append(f"{key} must be a string")
        return None
    value = value.strip()
    if len(value) < min_length:
        errors.append(f"{key} must be at least {min_length} characters long")
    if max_length is not None and len(value) > max_length:
        errors.append(f"{key} must be {max_length} characters or less")
    return value


def _prize_pool(data: dict, errors: List[str]) -> dict:
    pool = data.get('prize_pool')
    if not isinstance(pool, dict):
        errors.append("prize_pool is required")
        return {}
    return {
        place: _number(pool, place, errors, minimum=0, label=f"prize_pool.{place}")
        for place in ('first', 'second', 'third')
    }


def _rules(data: dict, errors: List[str]) -> dict:
    rules = data.get('rules') or {}
    if not isinstance(rules, dict):
        errors.append("rules must be an object")
        return {}
    game_mode = rules.get('game_mode')
    if game_mode is not None and game_mode not in GAME_MODES:
        errors.append(f"rules.game_mode must be one of {', '.join(GAME_MODES)}")
    custom_rules = rules.get('custom_rules', [])
    if not isinstance(custom_rules, list) or any(
        not isinstance(r, str) or len(r) > 200 for r in custom_rules
    ):
        errors.append("rules.custom_rules must be a list of strings of 200 characters or less")
    return dict(rules)


def _tags(data: dict, errors: List[str]) -> list:
    tags = data.get('tags') or []
    if not isinstance(tags, list) or any(not isinstance(t, str) or len(t) > 20 for t in tags):
        errors.append("tags must be a list of strings of 20 characters or less")
        return []
    return list(tags)


def _threshold(data: dict, errors: List[str]) -> float:
    if data.get('auto_start_threshold') is None:
        return 0.8
    value = _number(data, 'auto_start_threshold', errors)
    if value is not None and not 0 < value <= 1:
        errors.append("auto_start_threshold must be greater than 0 and at most 1")
    return value


def _capacity(max_participants, min_participants, errors: List[str]):
    if max_participants is not None and min_participants is not None \
            and min_participants > max_participants:
        errors.append("min_participants must not exceed max_participants")


def _timing(data: dict, now: datetime, errors: List[str]) -> dict:
    timing = {}
    for key in TIMING_FIELDS:
        timing[key] = None
        try:
            timing[key] = parse_datetime(data.get(key))
        except (TypeError, ValueError):
            errors.append(f"{key} must be a valid ISO-8601 date")
            continue
        if timing[key] is None and key != 'check_in_deadline':
            errors.append(f"{key} is required")

    start = timing['start_time']
    end = timing['end_time']
    registration = timing['registration_deadline']
    check_in = timing['check_in_deadline']

    if start and start <= now:
        errors.append("start_time must be in the future")
    if start and end and end <= start:
        errors.append("end_time must be after start_time")
    if start and registration and registration >= start:
        errors.append("registration_deadline must be before start_time")
    if check_in:
        if registration and check_in <= registration:
            errors.append("check_in_deadline must be after registration_deadline")
        if start and check_in >= start:
            errors.append("check_in_deadline must be before start_time")
    return timing


def validate_creation(data: dict, now: datetime) -> dict:
    """Validate a create payload and return the cleaned model fields."""
    if not isinstance(data, dict):
        raise ValidationError(details=["request body must be a JSON object"])

    errors: List[str] = []
    fields = {
        'name': _text(data, 'name', errors, min_length=3, max_length=100),
        'description': _text(data, 'description', errors, max_length=1000, required=False) or '',
    }

    game_type = data.get('game_type')
    if game_type not in GAME_TYPES:
        errors.append(f"game_type must be one of {', '.join(GAME_TYPES)}")
    fields['game_type'] = game_type

    tournament_type = data.get('type', 'manual')
    if tournament_type not in TOURNAMENT_TYPES:
        errors.append(f"type must be one of {', '.join(TOURNAMENT_TYPES)}")
    fields['tournament_type'] = tournament_type

    fields.update(_timing(data, now, errors))

    fields['max_participants'] = _number(data, 'max_participants', errors, minimum=2, maximum=100, integer=True)
    if data.get('min_participants') is None:
        fields['min_participants'] = 2
    else:
        fields['min_participants'] = _number(data, 'min_participants', errors, minimum=2, integer=True)
    _capacity(fields['max_participants'], fields['min_participants'], errors)

    fields['entry_fee'] = _number(data, 'entry_fee', errors, minimum=0)
    pool = _prize_pool(data, errors)
    fields['prize_first'] = pool.get('first')
    fields['prize_second'] = pool.get('second')
    fields['prize_third'] = pool.get('third')

    fields['auto_start_threshold'] = _threshold(data, errors)
    fields['rules'] = _rules(data, errors)
    fields['tags'] = _tags(data, errors)
    fields['is_public'] = bool(data.get('is_public', True))
    fields['is_featured'] = bool(data.get('is_featured', False))

    if errors:
        raise ValidationError(details=errors)
    return fields


def validate_update(tournament, data: dict) -> dict:
    """Validate a partial update; derived and timing fields are rejected or ignored."""
    if not isinstance(data, dict):
        raise ValidationError(details=["request body must be a JSON object"])

    errors: List[str] = []
    for key in TIMING_FIELDS:
        if key in data:
            errors.append(f"{key} cannot be changed after creation")

    fields = {}
    if 'name' in data:
        fields['name'] = _text(data, 'name', errors, min_length=3, max_length=100)
    if 'description' in data:
        fields['description'] = _text(data, 'description', errors, max_length=1000) or ''
    if 'entry_fee' in data:
        fields['entry_fee'] = _number(data, 'entry_fee', errors, minimum=0)
    if 'prize_pool' in data:
        pool = data.get('prize_pool')
        if not isinstance(pool, dict):
            errors.append("prize_pool must be an object")
        else:
            for place in ('first', 'second', 'third'):
                if place in pool:
                    fields[f'prize_{place}'] = _number(pool, place, errors, minimum=0, label=f"prize_pool.{place}")
    if 'rules' in data:
        fields['rules'] = _rules(data, errors)
    if 'tags' in data:
        fields['tags'] = _tags(data, errors)
    for flag in ('is_public', 'is_featured'):
        if flag in data:
            fields[flag] = bool(data[flag])
    if 'auto_start_threshold' in data:
        fields['auto_start_threshold'] = _threshold(data, errors)

    if 'max_participants' in data:
        fields['max_participants'] = _number(data, 'max_participants', errors, minimum=2, maximum=100, integer=True)
    if 'min_participants' in data:
        fields['min_participants'] = _number(data, 'min_participants', errors, minimum=2, integer=True)
    max_participants = fields.get('max_participants', tournament.max_participants)
    min_participants = fields.get('min_participants', tournament.min_participants)
    _capacity(max_participants, min_participants, errors)
    if max_participants is not None and max_participants < tournament.active_count():
        errors.append("max_participants cannot be lower than the number of active registrations")

    if errors:
        raise ValidationError(details=errors)
    return fields
