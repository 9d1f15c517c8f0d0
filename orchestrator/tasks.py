"""
The three periodic jobs of the scheduler.

Each job takes an OrchestratorContext, does one pass, and returns a summary.
Failures of a single game type or tournament are recorded in the summary and
never abort the rest of the batch.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from shared.clock import align_up, parse_datetime
from shared.errors import ApiError, DuplicateTournament, TournamentError, Unauthorized
from shared.state_machine import TournamentState

logger = logging.getLogger(__name__)

TOURNAMENTS_PATH = '/api/v1/tournaments'
ADVANCEABLE_STATUSES = (
    TournamentState.UPCOMING.value,
    TournamentState.REGISTRATION_OPEN.value,
    TournamentState.REGISTRATION_CLOSED.value,
)


# ==================== Tournament generation ====================

@dataclass
class GenerationResult:
    game_type: str
    status: str  # created, skipped or failed
    start_time: Optional[str] = None
    tournament_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != 'failed'


@dataclass
class GenerationSummary:
    results: List[GenerationResult] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def created(self) -> int:
        return self._count('created')

    @property
    def skipped(self) -> int:
        return self._count('skipped')

    @property
    def failed(self) -> int:
        return self._count('failed')

    def by_game_type(self) -> dict:
        return {r.game_type: r.status for r in self.results}


def compute_schedule(now: datetime, cfg) -> dict:
    """
    Timing for an automated tournament generated at ``now``.

    The start time is ``now + interval`` rounded up to the next interval
    boundary, so every run inside one period yields the same start time.
    """
    interval = timedelta(minutes=cfg.AUTOMATED_TOURNAMENT_INTERVAL)
    start_time = align_up(now + interval, interval)
    return {
        'start_time': start_time,
        'end_time': start_time + timedelta(minutes=cfg.TOURNAMENT_DURATION_MINUTES),
        'registration_deadline': start_time - timedelta(minutes=cfg.REGISTRATION_LEAD_MINUTES),
        'check_in_deadline': start_time - timedelta(minutes=cfg.CHECK_IN_LEAD_MINUTES),
    }


def create_automated_tournament(ctx, game_type: str, now: datetime) -> GenerationResult:
    """Create one automated tournament unless its dedup key already exists."""
    schedule = compute_schedule(now, ctx.config)
    start_iso = schedule['start_time'].isoformat()

    try:
        template = ctx.catalog.resolve(game_type)

        existing = ctx.client.get(TOURNAMENTS_PATH, params={
            'game_type': game_type,
            'type': 'automated',
            'start_time': start_iso,
            'limit': 1
        })
        if existing.get('total', 0) > 0:
            tournament_id = existing['tournaments'][0].get('id') if existing.get('tournaments') else None
            logger.info(f"{game_type}: tournament starting {start_iso} already exists, skipping")
            return GenerationResult(game_type, 'skipped', start_iso, tournament_id)

        payload = template.to_payload()
        payload.update({key: value.isoformat() for key, value in schedule.items()})
        payload.update({
            'game_type': game_type,
            'type': 'automated',
            'tags': ['automated', game_type.lower()],
            'is_public': True,
            'is_featured': False,
        })

        body = ctx.client.post(TOURNAMENTS_PATH, json=payload)
        tournament_id = (body.get('tournament') or {}).get('id')
        logger.info(f"Automated tournament created: {template.name} ({game_type}) -> {tournament_id}")
        return GenerationResult(game_type, 'created', start_iso, tournament_id)

    except ApiError as e:
        if e.code == DuplicateTournament.code:
            logger.info(f"{game_type}: tournament starting {start_iso} created concurrently, skipping")
            return GenerationResult(game_type, 'skipped', start_iso)
        logger.error(f"Failed to create automated tournament for {game_type}: {e.code} {e.message}")
        return GenerationResult(game_type, 'failed', start_iso, error=f"{e.code}: {e.message}")
    except TournamentError as e:
        logger.error(f"Failed to create automated tournament for {game_type}: {e.message}")
        return GenerationResult(game_type, 'failed', start_iso, error=f"{e.code}: {e.message}")


def generate_tournaments(ctx, now: datetime = None) -> GenerationSummary:
    """Fan out one creation per configured game type and collect every outcome."""
    now = now or ctx.clock()
    game_types = list(ctx.config.AUTOMATED_GAME_TYPES)
    logger.info("Starting automated tournament creation...")

    summary = GenerationSummary()
    if not game_types:
        logger.warning("No game types configured for automated tournaments")
        return summary

    with ThreadPoolExecutor(max_workers=len(game_types), thread_name_prefix='generate') as pool:
        futures = [(game_type, pool.submit(create_automated_tournament, ctx, game_type, now))
                   for game_type in game_types]
        for game_type, future in futures:
            try:
                summary.results.append(future.result())
            except Exception as e:
                logger.exception(f"{game_type}: unexpected error during creation")
                summary.results.append(GenerationResult(game_type, 'failed', error=str(e)))

    logger.info(
        f"Automated tournament creation completed: {summary.created} created, "
        f"{summary.skipped} skipped, {summary.failed} failed"
    )
    for result in summary.results:
        if result.ok:
            logger.info(f"  {result.game_type}: {result.status}")
        else:
            logger.error(f"  {result.game_type}: failed - {result.error}")
    return summary


# ==================== Status advancement ====================

@dataclass
class AdvancementSummary:
    examined: int = 0
    updated: List[tuple] = field(default_factory=list)
    failed: List[tuple] = field(default_factory=list)
    aborted: Optional[str] = None


def next_status(tournament: dict, now: datetime) -> Optional[str]:
    """The single status step a tournament is due for at ``now``, if any."""
    status = tournament.get('status')
    deadline = parse_datetime(tournament.get('registration_deadline'))
    start_time = parse_datetime(tournament.get('start_time'))

    if status in (TournamentState.UPCOMING.value, TournamentState.REGISTRATION_OPEN.value):
        if deadline is not None and now >= deadline:
            return TournamentState.REGISTRATION_CLOSED.value
        if status == TournamentState.UPCOMING.value and tournament.get('type') == 'automated':
            return TournamentState.REGISTRATION_OPEN.value
        return None

    if status == TournamentState.REGISTRATION_CLOSED.value:
        if start_time is not None and now >= start_time:
            return TournamentState.LIVE.value
    return None


def fetch_advanceable(ctx) -> List[dict]:
    """Collect open tournaments page by page, bounded by the configured page count."""
    cfg = ctx.config
    tournaments = []
    page = 1
    while page <= cfg.STATUS_UPDATE_MAX_PAGES:
        body = ctx.client.get(TOURNAMENTS_PATH, params={
            'status': ','.join(ADVANCEABLE_STATUSES),
            'page': page,
            'limit': cfg.STATUS_UPDATE_PAGE_SIZE,
            'sort_by': 'start_time',
            'sort_order': 'asc'
        })
        tournaments.extend(body.get('tournaments', []))
        if page >= body.get('total_pages', 0):
            break
        page += 1
    else:
        logger.warning(f"Status update batch capped at {cfg.STATUS_UPDATE_MAX_PAGES} pages")
    return tournaments


def advance_statuses(ctx, now: datetime = None) -> AdvancementSummary:
    """Move every fetched tournament one step along its deadlines."""
    now = now or ctx.clock()
    summary = AdvancementSummary()

    try:
        tournaments = fetch_advanceable(ctx)
    except TournamentError as e:
        logger.error(f"Error fetching tournaments for status update: {e.message}")
        summary.aborted = e.message
        return summary

    for tournament in tournaments:
        summary.examined += 1
        target = next_status(tournament, now)
        if target is None:
            continue

        tournament_id = tournament.get('id')
        try:
            ctx.client.post(f"{TOURNAMENTS_PATH}/{tournament_id}/status", json={'status': target})
        except Unauthorized as e:
            # Credential is gone; the next tick logs in again and picks up the rest
            summary.failed.append((tournament_id, target, e.message))
            summary.aborted = e.message
            logger.error(f"Status update aborted after unauthorized response for {tournament_id}")
            break
        except TournamentError as e:
            summary.failed.append((tournament_id, target, e.message))
            logger.error(f"Failed to update tournament {tournament.get('name')} ({tournament_id}): {e.message}")
            continue

        summary.updated.append((tournament_id, target))
        logger.info(f"Tournament {tournament.get('name')} ({tournament_id}) status updated to: {target}")

    logger.info(
        f"Status update completed: {summary.examined} examined, "
        f"{len(summary.updated)} updated, {len(summary.failed)} failed"
    )
    return summary


# ==================== Liveness ====================

def check_health(ctx) -> dict:
    """Probe the tournament and auth services; purely observational."""
    cfg = ctx.config
    health = {
        'tournament_service': ctx.client.probe(cfg.TOURNAMENT_SERVICE_URL),
        'auth_service': ctx.client.probe(cfg.AUTH_SERVICE_URL),
        'credential': 'held' if ctx.client.has_token else 'absent',
        'timestamp': ctx.clock().isoformat() + 'Z',
    }
    if health['tournament_service'] != 'connected' or health['auth_service'] != 'connected':
        logger.warning(f"Health check completed with degraded dependencies: {health}")
    else:
        logger.info(f"Health check completed: {health}")
    return health
