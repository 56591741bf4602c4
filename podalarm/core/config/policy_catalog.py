from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from podalarm.domain.models import AlarmPolicy, AlarmType


@dataclass
class PolicyCatalog:
    """
    Registry of alarm policies, per organization.

    The catalog is populated at startup and can be refreshed at runtime
    without restarting the engine. Readers always get a consistent snapshot:
    a refresh swaps an organization's policy set atomically.

    Notes
    -----
    - ``load`` upserts by ``policy_id``; ``replace`` swaps an organization's
      whole policy set (policies missing from the new set disappear).
    - Inactive policies are stored but never returned by ``for_organization``.

    Attributes
    ----------
    _by_org
        Organization id -> policy id -> AlarmPolicy.
    """

    _by_org: Dict[str, Dict[str, AlarmPolicy]] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _revision: int = 0

    def load(self, policies: Iterable[AlarmPolicy]) -> None:
        """
        Load or update policies.

        Parameters
        ----------
        policies
            Policies to upsert. Existing entries with the same id are replaced.
        """
        with self._lock:
            for p in policies:
                self._by_org.setdefault(p.organization_id, {})[p.policy_id] = p
            self._revision += 1

    def replace(self, organization_id: str, policies: Iterable[AlarmPolicy]) -> None:
        """
        Replace every policy of one organization.

        Raises
        ------
        ValueError
            If a policy belongs to another organization.
        """
        fresh: Dict[str, AlarmPolicy] = {}
        for p in policies:
            if p.organization_id != organization_id:
                raise ValueError(f"Policy {p.policy_id} belongs to {p.organization_id}, not {organization_id}")
            fresh[p.policy_id] = p
        with self._lock:
            self._by_org[organization_id] = fresh
            self._revision += 1

    def replace_all(self, policies: Iterable[AlarmPolicy]) -> None:
        """Swap the whole catalog (used by configuration reload)."""
        fresh: Dict[str, Dict[str, AlarmPolicy]] = {}
        for p in policies:
            fresh.setdefault(p.organization_id, {})[p.policy_id] = p
        with self._lock:
            self._by_org = fresh
            self._revision += 1

    def get(self, policy_id: str) -> Optional[AlarmPolicy]:
        """
        Retrieve a policy by id, active or not.

        Returns
        -------
        AlarmPolicy or None
            The policy, or None if unknown.
        """
        with self._lock:
            for policies in self._by_org.values():
                p = policies.get(policy_id)
                if p is not None:
                    return p
        return None

    def for_organization(self, organization_id: str) -> Tuple[AlarmPolicy, ...]:
        """Active policies of one organization."""
        with self._lock:
            policies = self._by_org.get(organization_id, {})
            return tuple(p for p in policies.values() if p.is_active)

    def grouped_by_type(self, organization_id: str) -> Dict[AlarmType, List[AlarmPolicy]]:
        """Active policies of one organization grouped by alarm type."""
        out: Dict[AlarmType, List[AlarmPolicy]] = {}
        for p in self.for_organization(organization_id):
            out.setdefault(p.alarm_type, []).append(p)
        return out

    def all(self) -> List[AlarmPolicy]:
        with self._lock:
            return [p for policies in self._by_org.values() for p in policies.values()]

    @property
    def revision(self) -> int:
        """Incremented on every load/replace."""
        return self._revision
