"""연결 레지스트리 모듈.

이 모듈은 시그널링 릴레이에 연결된 참가자의 신원(email)과 연결 ID,
그리고 룸 멤버십을 추적합니다. I/O가 없는 순수 자료구조이며,
SignalingRouter가 단독으로 소유하고 변경합니다.

Architecture:
    - email_to_connection: Dict[str, str] - email → 연결 ID
    - participants: Dict[str, Participant] - 연결 ID → 참가자 정보
    - rooms: Dict[str, Set[str]] - 룸 이름 → 연결 ID 집합 (역 인덱스)

Thread Safety:
    - 단일 asyncio 이벤트 루프에서만 접근한다고 가정
    - 여러 프로세스로 확장 시 공유 저장소와 락이 필요

Examples:
    >>> registry = ConnectionRegistry()
    >>> registry.join("conn-1", "alice@example.com", "r1")
    >>> registry.lookup_by_email("alice@example.com")
    'conn-1'
    >>> registry.members_of("r1")
    {'conn-1'}
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    """룸에 참가한 참가자.

    Attributes:
        connection_id (str): 릴레이 전송 계층이 부여한 연결 식별자
        email (str): 표시/식별용 힌트 (인증되지 않음)
        room_id (str): 참가 중인 룸 이름
    """
    connection_id: str
    email: str
    room_id: str


class ConnectionRegistry:
    """참가자 신원과 룸 멤버십을 관리하는 양방향 인덱스.

    각 연결 ID는 동시에 최대 하나의 email과 하나의 룸에만 매핑됩니다.
    같은 연결 ID로 다시 join하면 이전 항목을 덮어씁니다.

    Attributes:
        participants (Dict[str, Participant]): 연결 ID → 참가자
        email_to_connection (Dict[str, str]): email → 연결 ID
        rooms (Dict[str, Set[str]]): 룸 이름 → 연결 ID 집합
    """

    def __init__(self):
        # connection_id -> Participant
        self.participants: Dict[str, Participant] = {}

        # email -> connection_id
        self.email_to_connection: Dict[str, str] = {}

        # room_id -> {connection_id}
        self.rooms: Dict[str, Set[str]] = {}

    def join(self, connection_id: str, email: str, room_id: str) -> None:
        """참가자를 룸에 등록합니다.

        항상 성공하며 멱등입니다. 이미 등록된 연결 ID라면 이전 email/룸
        항목을 먼저 제거한 뒤 새 항목으로 덮어씁니다.

        Args:
            connection_id (str): 참가자의 연결 ID
            email (str): 참가자 email
            room_id (str): 참가할 룸 이름
        """
        previous = self.participants.get(connection_id)
        if previous is not None:
            self._detach(previous)

        participant = Participant(connection_id=connection_id, email=email, room_id=room_id)
        self.participants[connection_id] = participant
        self.email_to_connection[email] = connection_id
        self.rooms.setdefault(room_id, set()).add(connection_id)

        logger.info(f"[Registry] '{email}' ({connection_id[:8]}) joined room '{room_id}'. "
                    f"Room has {len(self.rooms[room_id])} members")

    def leave(self, connection_id: str) -> Optional[Participant]:
        """연결 ID의 모든 항목을 제거합니다.

        알 수 없는 연결 ID에 대해 호출해도 안전합니다 (no-op).

        Args:
            connection_id (str): 제거할 연결 ID

        Returns:
            Optional[Participant]: 제거된 참가자. 등록되어 있지 않았으면 None
        """
        participant = self.participants.pop(connection_id, None)
        if participant is None:
            return None

        self._detach(participant)
        logger.info(f"[Registry] '{participant.email}' ({connection_id[:8]}) left room "
                    f"'{participant.room_id}'")
        return participant

    def resolve(self, connection_id: str) -> Optional[str]:
        """연결 ID에 해당하는 email을 반환합니다."""
        participant = self.participants.get(connection_id)
        return participant.email if participant else None

    def lookup_by_email(self, email: str) -> Optional[str]:
        """email에 해당하는 연결 ID를 반환합니다."""
        return self.email_to_connection.get(email)

    def room_of(self, connection_id: str) -> Optional[str]:
        """연결 ID가 속한 룸 이름을 반환합니다."""
        participant = self.participants.get(connection_id)
        return participant.room_id if participant else None

    def members_of(self, room_id: str) -> Set[str]:
        """룸의 현재 멤버 연결 ID 집합(복사본)을 반환합니다.

        Args:
            room_id (str): 조회할 룸 이름

        Returns:
            Set[str]: 연결 ID 집합. 룸이 없으면 빈 집합
        """
        return set(self.rooms.get(room_id, ()))

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self.participants

    def rooms_list(self) -> List[dict]:
        """모든 룸의 요약 정보를 반환합니다.

        Returns:
            List[dict]: ``room_id``, ``member_count``, ``members`` 키를 가진 딕셔너리 리스트
        """
        return [
            {
                "room_id": room_id,
                "member_count": len(members),
                "members": [
                    {"id": cid, "email": self.participants[cid].email}
                    for cid in sorted(members)
                ],
            }
            for room_id, members in self.rooms.items()
        ]

    def __len__(self) -> int:
        return len(self.participants)

    def _detach(self, participant: Participant) -> None:
        # email 매핑은 같은 연결을 가리킬 때만 제거 (다른 연결이 같은 email로 재가입한 경우 보존)
        if self.email_to_connection.get(participant.email) == participant.connection_id:
            del self.email_to_connection[participant.email]

        members = self.rooms.get(participant.room_id)
        if members is not None:
            members.discard(participant.connection_id)
            if not members:
                del self.rooms[participant.room_id]
                logger.info(f"[Registry] Room '{participant.room_id}' deleted (empty)")
