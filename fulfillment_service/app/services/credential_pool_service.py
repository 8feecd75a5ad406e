"""자격증명 풀 서비스.

일괄 등록, 할당(ClaimOne), 해제, 재고 집계를 담당한다.
할당 원자성은 레포지토리의 CAS 가 보장하고, 이 레이어는 검증과 로깅만 한다.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database

from ..config import AppConfig, get_app_config
from ..exceptions import (
    ConsistencyViolationError,
    CredentialInUseError,
    CredentialNotFoundError,
    PlanNotFoundError,
)
from ..models.credential import BulkImportResult, Credential, CredentialStats
from ..repositories.credential_repository import CredentialRepository
from ..repositories.interfaces import (
    CredentialRepositoryInterface,
    PlanRepositoryInterface,
)
from ..repositories.plan_repository import PlanRepository


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ParsedLine:
    line_no: int
    username: str
    password: str


def parse_credential_lines(
    lines: list[str],
) -> tuple[list[ParsedLine], list[str]]:
    """"username,password" 줄 목록을 파싱한다.

    - 빈 줄은 건너뛴다(줄 번호는 그대로 센다).
    - 필드가 정확히 2개가 아니거나 비어 있으면 "line N: ..." 오류로 돌려준다.
    - 같은 배치 안에서 username 이 반복되면 두 번째부터 오류로 돌려준다.
    """
    parsed: list[ParsedLine] = []
    errors: list[str] = []
    seen: set[str] = set()

    for line_no, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue

        fields = [field.strip() for field in line.split(",")]
        if len(fields) != 2:
            errors.append(
                f"line {line_no}: expected 'username,password' but got {len(fields)} field(s)"
            )
            continue

        username, password = fields
        if not username or not password:
            errors.append(f"line {line_no}: username and password must not be empty")
            continue

        if username in seen:
            errors.append(f"line {line_no}: duplicate username '{username}' in batch")
            continue

        seen.add(username)
        parsed.append(ParsedLine(line_no=line_no, username=username, password=password))

    return parsed, errors


class CredentialPoolService:
    def __init__(
        self,
        credential_repo: CredentialRepositoryInterface,
        plan_repo: PlanRepositoryInterface,
    ) -> None:
        self._credential_repo = credential_repo
        self._plan_repo = plan_repo

    def bulk_import(self, plan_id: str, lines: list[str]) -> BulkImportResult:
        """일부 줄이 잘못돼도 나머지는 등록한다."""
        if self._plan_repo.find_by_id(plan_id) is None:
            raise PlanNotFoundError(plan_id)

        parsed, errors = parse_credential_lines(lines)

        existing = self._credential_repo.existing_usernames(
            plan_id, [p.username for p in parsed]
        )
        now = datetime.now(timezone.utc)
        to_insert: list[Credential] = []
        line_of: dict[str, int] = {}
        for p in parsed:
            if p.username in existing:
                errors.append(
                    f"line {p.line_no}: username '{p.username}' already exists in pool"
                )
                continue
            line_of[p.username] = p.line_no
            to_insert.append(
                Credential(
                    plan_id=plan_id,
                    username=p.username,
                    password=p.password,
                    created_at=now,
                    updated_at=now,
                )
            )

        result = self._credential_repo.insert_many(to_insert)
        # 사전 조회 이후 다른 요청이 먼저 넣은 username
        for username in result.duplicates:
            errors.append(
                f"line {line_of[username]}: username '{username}' already exists in pool"
            )

        errors.sort(key=_line_number)
        logger.info(
            "imported %d credentials (%d errors)",
            len(result.inserted),
            len(errors),
            extra={"plan_id": plan_id},
        )
        return BulkImportResult(success_count=len(result.inserted), errors=errors)

    def claim_one(self, plan_id: str, order_id: str, user_id: str) -> Credential | None:
        """재고가 없으면 None (NotAvailable). 예외가 아니다."""
        credential = self._credential_repo.claim_one(plan_id, order_id, user_id)
        if credential is None:
            logger.info(
                "no available credential",
                extra={"plan_id": plan_id, "order_id": order_id},
            )
            return None

        logger.info(
            "credential claimed",
            extra={
                "plan_id": plan_id,
                "order_id": order_id,
                "user_id": user_id,
                "credential_id": credential.id,
            },
        )
        return credential

    def release(
        self, credential_id: str, expected_order_id: str | None = None
    ) -> Credential:
        """할당을 해제한다. 이미 미할당이면 아무 일도 하지 않는다.

        expected_order_id 와 다른 주문에 묶여 있으면 해제하지 않고
        ConsistencyViolationError 를 올린다.
        """
        released = self._credential_repo.release(credential_id, expected_order_id)
        if released is not None:
            logger.info(
                "credential released",
                extra={
                    "credential_id": credential_id,
                    "order_id": expected_order_id,
                    "plan_id": released.plan_id,
                },
            )
            return released

        current = self._credential_repo.find_by_id(credential_id)
        if current is None:
            raise CredentialNotFoundError(credential_id)
        if not current.is_assigned:
            return current

        # 다른 주문에 묶여 있어 조건부 해제가 매칭되지 않은 경우
        logger.error(
            "refusing to release credential bound to another order (bound=%s)",
            current.assigned_to_order_id,
            extra={"credential_id": credential_id, "order_id": expected_order_id},
        )
        raise ConsistencyViolationError(
            expected_order_id or "",
            f"credential {credential_id} is bound to order {current.assigned_to_order_id}",
        )

    def release_all_for_order(self, order_id: str) -> int:
        released = self._credential_repo.release_all_for_order(order_id)
        if released:
            logger.info(
                "released %d credentials", released, extra={"order_id": order_id}
            )
        return released

    def list_for_order(self, order_id: str) -> list[Credential]:
        return self._credential_repo.list_for_order(order_id)

    def get(self, credential_id: str) -> Credential:
        credential = self._credential_repo.find_by_id(credential_id)
        if credential is None:
            raise CredentialNotFoundError(credential_id)
        return credential

    def find_by_ids(self, credential_ids: list[str]) -> list[Credential]:
        return self._credential_repo.find_by_ids(credential_ids)

    def stats(self, plan_id: str) -> CredentialStats:
        return self._credential_repo.stats(plan_id)

    def stats_all(self) -> list[CredentialStats]:
        return self._credential_repo.stats_all()

    def list_by_plan(
        self, plan_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[Credential], int]:
        return self._credential_repo.list_by_plan(plan_id, page, page_size)

    def delete(self, credential_id: str) -> None:
        """미할당 자격증명만 삭제할 수 있다."""
        if self._credential_repo.delete_if_unassigned(credential_id):
            logger.info("credential deleted", extra={"credential_id": credential_id})
            return

        current = self._credential_repo.find_by_id(credential_id)
        if current is None:
            raise CredentialNotFoundError(credential_id)
        raise CredentialInUseError(credential_id)


def _line_number(error: str) -> int:
    # "line N: ..." 형식
    head = error.split(":", 1)[0]
    try:
        return int(head.removeprefix("line "))
    except ValueError:
        return 0


def get_plan_repository(
    db: Database = Depends(get_database),
) -> PlanRepositoryInterface:
    """FastAPI DI용 PlanRepository 팩토리."""

    return PlanRepository(db)


def get_credential_repository(
    db: Database = Depends(get_database),
    config: AppConfig = Depends(get_app_config),
) -> CredentialRepositoryInterface:
    """FastAPI DI용 CredentialRepository 팩토리."""

    return CredentialRepository(db, claim_max_retries=config.retry.claim_max_retries)


def get_credential_pool_service(
    credential_repo: CredentialRepositoryInterface = Depends(get_credential_repository),
    plan_repo: PlanRepositoryInterface = Depends(get_plan_repository),
) -> CredentialPoolService:
    """FastAPI DI용 CredentialPoolService 팩토리."""

    return CredentialPoolService(credential_repo=credential_repo, plan_repo=plan_repo)
