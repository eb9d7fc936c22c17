"""
Caller scope for every read of unified_embeddings.

The search and maintenance paths read with the service role client, so
row level security does not filter for them. SearchScope is the one place
that decides which embedding rows a caller may see:

    visible iff row.user_id == caller
             or row.team_id in the caller's teams
             or row.source_type is public (business directory)

Service scopes (worker, operator jobs) see everything.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from supabase import Client

from receipt_search.services.source_service import get_user_team_ids
from receipt_search.utils.constants import PUBLIC_SOURCE_TYPES


@dataclass(frozen=True)
class SearchScope:
    """Identity and memberships of the caller a query runs for."""
    user_id: Optional[str] = None
    team_ids: FrozenSet[str] = field(default_factory=frozenset)
    is_service: bool = False

    @classmethod
    def service(cls) -> "SearchScope":
        return cls(is_service=True)

    @classmethod
    def for_user(cls, user_id: str, team_ids: Iterable[str] = ()) -> "SearchScope":
        return cls(user_id=user_id, team_ids=frozenset(str(team_id) for team_id in team_ids))

    def allows(self, row: Dict[str, Any]) -> bool:
        """Ownership predicate for one embedding row."""
        if self.is_service:
            return True
        if row.get("source_type") in PUBLIC_SOURCE_TYPES:
            return True
        if self.user_id is not None and row.get("user_id") is not None and str(row["user_id"]) == self.user_id:
            return True
        team_id = row.get("team_id")
        return team_id is not None and str(team_id) in self.team_ids

    def filter_rows(self, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [row for row in rows if self.allows(row)]


async def resolve_scope(supabase_client: Client, user_id: str) -> SearchScope:
    """Build the scope of an authenticated user (own rows plus team rows)."""
    team_ids = await get_user_team_ids(supabase_client, user_id)
    return SearchScope.for_user(user_id, team_ids)
