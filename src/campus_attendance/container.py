from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .checkin.factory import CheckInStrategyFactory
from .checkin.service import CheckInService
from .core.constants import DEFAULT_QR_TOKEN_TTL_SECONDS
from .database.connection import DBConfig, DatabaseConnection
from .policy.authorization import AuthorizationPolicy
from .qr.generator import QrTokenGenerator
from .roster.mysql_roster_repository import MySQLLeaveLookup, MySQLRosterDirectory
from .roster.repository import LeaveLookup, RosterDirectory
from .sessions.mysql_session_repository import MySQLSessionRepository
from .sessions.repository import SessionRepository
from .sessions.service import SessionService
from .statistics.service import StatisticsService


@dataclass(frozen=True)
class Container:
    sessions_repo: SessionRepository
    roster: RosterDirectory
    leaves: LeaveLookup

    policy: AuthorizationPolicy
    session_service: SessionService
    checkin_service: CheckInService
    statistics_service: StatisticsService


def build_services(
    *,
    sessions_repo: SessionRepository,
    roster: RosterDirectory,
    leaves: LeaveLookup,
    qr_ttl_seconds: int = DEFAULT_QR_TOKEN_TTL_SECONDS,
    late_after_seconds: Optional[int] = None,
) -> Container:
    qr_generator = QrTokenGenerator(ttl_seconds=qr_ttl_seconds)
    return Container(
        sessions_repo=sessions_repo,
        roster=roster,
        leaves=leaves,
        policy=AuthorizationPolicy(roster),
        session_service=SessionService(sessions_repo, roster, leaves, qr_generator=qr_generator),
        checkin_service=CheckInService(
            sessions_repo,
            strategy_factory=CheckInStrategyFactory(late_after_seconds=late_after_seconds),
        ),
        statistics_service=StatisticsService(sessions_repo),
    )


def build_container(
    *,
    db_config: dict,
    qr_ttl_seconds: int = DEFAULT_QR_TOKEN_TTL_SECONDS,
    late_after_seconds: Optional[int] = None,
) -> Container:
    config = DBConfig(
        host=str(db_config["host"]),
        port=int(db_config.get("port", 3306)),
        user=str(db_config["user"]),
        password=str(db_config["password"]),
        database=str(db_config["database"]),
    )
    conn = DatabaseConnection.get_instance(config)

    return build_services(
        sessions_repo=MySQLSessionRepository(conn),
        roster=MySQLRosterDirectory(conn),
        leaves=MySQLLeaveLookup(conn),
        qr_ttl_seconds=qr_ttl_seconds,
        late_after_seconds=late_after_seconds,
    )
