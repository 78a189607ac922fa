"""Single-elimination bracket engine and match result processor.

Round 1 pairs a sport's teams in creation order. Each later round pairs the
winners of the previous round in match order and is created only once every
match of that round is completed. An odd entrant out gets a bye, which is
completed as soon as the match is created. A round with a single match is the
final.

Every writer here holds the sport's ``BracketLock`` row for the whole
transaction, so a round is advanced at most once even when its last two
results are recorded at the same time.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import joinedload

from errors import ConflictError, NotFoundError, ValidationError
from models import db, Match, Team, SPORT_LABELS
from services.registry import require_sport
from services.transactions import atomic, lock_sport

logger = logging.getLogger(__name__)

MIN_BRACKET_TEAMS = 2


def _stage_name_for_round(total_rounds: int, round_index: int) -> str:
    mapping = {
        6: ['Round of 64', 'Round of 32', 'Round of 16', 'Quarterfinal', 'Semifinal', 'Final'],
        5: ['Round of 32', 'Round of 16', 'Quarterfinal', 'Semifinal', 'Final'],
        4: ['Round of 16', 'Quarterfinal', 'Semifinal', 'Final'],
        3: ['Quarterfinal', 'Semifinal', 'Final'],
        2: ['Semifinal', 'Final'],
        1: ['Final'],
    }
    names = mapping.get(total_rounds)
    if not names:
        names = [f'Round {i + 1}' for i in range(total_rounds)]
    try:
        return names[round_index - 1]
    except IndexError:
        return f'Round {round_index}'


def total_rounds_for(entrant_count: int) -> int:
    rounds = 0
    remaining = entrant_count
    while remaining > 1:
        remaining = (remaining + 1) // 2
        rounds += 1
    return rounds


def pair_entrants(entrant_ids: list) -> list[tuple]:
    """Pair consecutive entrants. With an odd count the last pair is ``(x, None)``."""
    pairs = []
    for index in range(0, len(entrant_ids), 2):
        second = entrant_ids[index + 1] if index + 1 < len(entrant_ids) else None
        pairs.append((entrant_ids[index], second))
    return pairs


@dataclass
class ResultOutcome:
    match: Match
    advanced: list[Match] = field(default_factory=list)
    champion_id: Optional[int] = None
    changed: bool = True

    def to_dict(self) -> dict:
        return {
            'match': self.match.to_dict(),
            'advanced': [match.to_dict() for match in self.advanced],
            'champion_id': self.champion_id,
        }


@dataclass
class BracketSummary:
    sport: str
    entrant_count: int
    total_rounds: int
    rounds: list[dict]
    champion: Optional[Team]

    @property
    def is_complete(self) -> bool:
        return self.champion is not None

    def to_dict(self) -> dict:
        return {
            'sport': self.sport,
            'sport_label': SPORT_LABELS.get(self.sport, self.sport),
            'entrant_count': self.entrant_count,
            'total_rounds': self.total_rounds,
            'is_complete': self.is_complete,
            'champion': {'id': self.champion.id, 'team_name': self.champion.team_name} if self.champion else None,
            'rounds': [
                {
                    'round': entry['round'],
                    'stage_name': entry['stage_name'],
                    'matches': [match.to_dict() for match in entry['matches']],
                }
                for entry in self.rounds
            ],
        }


def _round_matches(sport: str, round_number: int) -> list[Match]:
    return (
        Match.query.filter_by(sport=sport, round=round_number)
        .order_by(Match.match_number.asc())
        .all()
    )


def round_progress(sport: str, round_number: int) -> tuple[int, int]:
    """Return ``(total, completed)`` match counts for a round."""
    total = Match.query.filter_by(sport=sport, round=round_number).count()
    completed = Match.query.filter_by(sport=sport, round=round_number, is_completed=True).count()
    return total, completed


def _create_round(sport: str, round_number: int, entrant_ids: list) -> list[Match]:
    matches = []
    for match_number, (team1_id, team2_id) in enumerate(pair_entrants(entrant_ids), start=1):
        match = Match(
            sport=sport,
            round=round_number,
            match_number=match_number,
            team1_id=team1_id,
            team2_id=team2_id,
            is_completed=False,
        )
        if match.complete_bye():
            logger.info('%s round %d match %d is a bye for team %s', sport, round_number, match_number, match.winner_id)
        db.session.add(match)
        matches.append(match)
    db.session.flush()
    return matches


def advance(sport: str, round_number: int) -> list[Match]:
    """Create round ``round_number + 1`` from the winners of a completed round.

    The caller must hold the sport lock. Returns the new matches, or an empty
    list when the next round already exists or the round was the final.

    A round with two or more entrants always holds a match between two teams,
    so the round created here is never complete on creation.
    """
    if Match.query.filter_by(sport=sport, round=round_number + 1).count():
        return []

    matches = _round_matches(sport, round_number)
    if not matches:
        raise ValidationError(f'Round {round_number} has no matches')
    if not all(match.is_completed for match in matches):
        raise ValidationError(f'Round {round_number} is not complete yet')

    if len(matches) == 1:
        return []

    winners = [match.winner_id for match in matches]
    created = _create_round(sport, round_number + 1, winners)
    logger.info('Advanced %s to round %d with %d match(es)', sport, round_number + 1, len(created))
    return created


def _champion_id(sport: str, round_number: int) -> Optional[int]:
    matches = _round_matches(sport, round_number)
    if len(matches) == 1 and matches[0].is_completed:
        return matches[0].winner_id
    return None


def generate_bracket(sport) -> list[Match]:
    """Replace the sport's bracket with a fresh round 1."""
    sport = require_sport(sport)

    with atomic('generate bracket'):
        lock_sport(sport)

        teams = (
            Team.query.filter_by(sport=sport)
            .order_by(Team.created_at.asc(), Team.id.asc())
            .all()
        )
        if len(teams) < MIN_BRACKET_TEAMS:
            raise ValidationError(
                f'Need at least {MIN_BRACKET_TEAMS} teams to generate bracket',
                code='insufficient_teams',
            )

        removed = Match.query.filter_by(sport=sport).delete()
        matches = _create_round(sport, 1, [team.id for team in teams])

    logger.info(
        'Generated %s bracket for %d teams (%d match(es) replaced)', sport, len(teams), removed
    )
    return matches


def record_result(match_id, winner_id) -> ResultOutcome:
    """Record a winner and advance the bracket if that completes the round."""
    if isinstance(winner_id, bool):
        raise ValidationError('winner_id must be a team id')
    try:
        winner_id = int(winner_id)
    except (TypeError, ValueError):
        raise ValidationError('winner_id must be a team id')

    with atomic('record result'):
        match = db.session.get(Match, match_id)
        if match is None:
            raise NotFoundError(f'Match {match_id} not found')

        lock_sport(match.sport)
        match = (
            Match.query.filter_by(id=match_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if match is None:
            raise NotFoundError(f'Match {match_id} not found')

        if not match.has_participant(winner_id):
            raise ValidationError(
                f'Team {winner_id} is not playing in match {match_id}',
                code='invalid_winner',
            )

        if match.is_completed:
            if match.winner_id == winner_id:
                return ResultOutcome(
                    match=match,
                    champion_id=_champion_id(match.sport, match.round),
                    changed=False,
                )
            if Match.query.filter_by(sport=match.sport, round=match.round + 1).count():
                raise ConflictError(
                    f'Round {match.round + 1} has already been generated. '
                    'Reset the bracket to change this result.',
                    code='round_already_advanced',
                )

        match.winner_id = winner_id
        match.is_completed = True
        db.session.flush()

        advanced: list[Match] = []
        total, completed = round_progress(match.sport, match.round)
        if completed == total and total > 1:
            advanced = advance(match.sport, match.round)

        final_round = advanced[-1].round if advanced else match.round
        champion_id = _champion_id(match.sport, final_round)

    logger.info('Recorded team %s as winner of match %s', winner_id, match_id)
    if champion_id is not None:
        logger.info('Team %s won the %s final', champion_id, match.sport)
    return ResultOutcome(match=match, advanced=advanced, champion_id=champion_id)


def reset_bracket(sport) -> int:
    """Delete every match of a sport. Returns how many were removed."""
    sport = require_sport(sport)

    with atomic('reset bracket'):
        lock_sport(sport)
        removed = Match.query.filter_by(sport=sport).delete()

    logger.warning('Reset %s bracket, %d match(es) removed', sport, removed)
    return removed


def get_bracket(sport) -> list[Match]:
    sport = require_sport(sport)
    return (
        Match.query.options(
            joinedload(Match.team1),
            joinedload(Match.team2),
            joinedload(Match.winner),
        )
        .filter_by(sport=sport)
        .order_by(Match.round.asc(), Match.match_number.asc())
        .all()
    )


def bracket_summary(sport) -> BracketSummary:
    """Group the bracket by round with stage labels and the champion, if decided."""
    matches = get_bracket(sport)

    by_round: dict[int, list[Match]] = {}
    for match in matches:
        by_round.setdefault(match.round, []).append(match)

    first_round = by_round.get(1, [])
    entrant_count = sum(len(match.participant_ids) for match in first_round)
    total_rounds = max(total_rounds_for(entrant_count), max(by_round, default=0))

    rounds = [
        {
            'round': round_number,
            'stage_name': _stage_name_for_round(total_rounds, round_number),
            'matches': by_round[round_number],
        }
        for round_number in sorted(by_round)
    ]

    champion = None
    if by_round:
        last_round = by_round[max(by_round)]
        if len(last_round) == 1 and last_round[0].is_completed:
            champion = last_round[0].winner

    return BracketSummary(
        sport=sport,
        entrant_count=entrant_count,
        total_rounds=total_rounds,
        rounds=rounds,
        champion=champion,
    )
