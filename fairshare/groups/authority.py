"""
Group Membership Authority

Answers "may this user do this to this group?" from persisted state.

INVARIANTS guarded here:
- Only members read or write a group; only admins manage it
- Nobody leaves a group while holding an unpaid split in it
- A group with other members always keeps at least one admin

The read-only checks give early, specific errors. The writes that could
break an invariant (leaving, demoting) go through guarded storage calls
that re-check the rules inside the same write, so concurrent requests
cannot both pass a check that only one of them may pass.
"""

from typing import NamedTuple
from uuid import UUID

from fairshare.errors import ForbiddenError, ResourceNotFoundError, StateConflictError
from fairshare.models.group import GroupMember, MemberRole, MembershipChange
from fairshare.services.storage import ExpenseLedgerInterface, GroupStorageInterface


class HasUnpaidDebtError(StateConflictError):
    """Member still owes money inside the group."""

    default_message = "You cannot leave the group with pending debts"


class SoleAdminError(StateConflictError):
    """The operation would leave the group without an admin."""

    default_message = "Assign another admin before leaving the group"


class MemberNotFoundError(ResourceNotFoundError):
    default_message = "Member not found"


class LeaveAssessment(NamedTuple):
    """Outcome of a successful leave check."""

    membership: GroupMember
    is_last_member: bool


class MembershipAuthority:
    """Authorization checks over group membership."""

    def __init__(
        self,
        groups: GroupStorageInterface,
        ledger: ExpenseLedgerInterface,
    ):
        self._groups = groups
        self._ledger = ledger

    async def require_member(self, group_id: UUID, user_id: UUID) -> GroupMember:
        """
        Raises:
            ForbiddenError: If the user has no membership in the group
        """
        membership = await self._groups.get_membership(group_id, user_id)
        if membership is None:
            raise ForbiddenError("You are not a member of this group")
        return membership

    async def require_admin(self, group_id: UUID, user_id: UUID) -> GroupMember:
        """
        Raises:
            ForbiddenError: If the user is not an admin of the group
        """
        membership = await self._groups.get_membership(group_id, user_id)
        if membership is None or not membership.is_admin:
            raise ForbiddenError("Only group admins can perform this action")
        return membership

    async def can_leave(self, group_id: UUID, user_id: UUID) -> LeaveAssessment:
        """
        Check whether a member may leave.

        Order matters: debt is checked before the admin rule, so a sole
        admin with debt is told about the debt first.

        Raises:
            ForbiddenError: Not a member
            HasUnpaidDebtError: Any unpaid split in this group
            SoleAdminError: Only admin while other members remain
        """
        membership = await self.require_member(group_id, user_id)

        unpaid = await self._ledger.count_unpaid_splits(group_id, user_id)
        if unpaid > 0:
            raise HasUnpaidDebtError()

        members = await self._groups.list_members(group_id)
        if membership.is_admin:
            admins = [m for m in members if m.is_admin]
            if len(admins) == 1 and len(members) > 1:
                raise SoleAdminError()

        return LeaveAssessment(membership=membership, is_last_member=len(members) <= 1)

    async def ensure_admin_remains(
        self,
        group_id: UUID,
        user_id: UUID,
        new_role: MemberRole,
    ) -> None:
        """
        Guard a role change so the group keeps at least one admin.

        Raises:
            SoleAdminError: Demoting the only admin
        """
        if new_role == MemberRole.ADMIN:
            return

        members = await self._groups.list_members(group_id)
        admins = [m for m in members if m.is_admin]
        if len(admins) == 1 and admins[0].user_id == user_id:
            raise SoleAdminError("A group needs at least one admin")

    async def leave(
        self,
        group_id: UUID,
        user_id: UUID,
        delete_group_if_last: bool,
    ) -> MembershipChange:
        """
        Remove a member once the leave rules hold at write time.

        Returns:
            APPLIED, or GROUP_DELETED when the last member left and
            delete_group_if_last is set

        Raises:
            ForbiddenError, HasUnpaidDebtError, SoleAdminError: as can_leave
        """
        await self.can_leave(group_id, user_id)
        outcome = await self._groups.remove_member_guarded(group_id, user_id, delete_group_if_last)

        if outcome == MembershipChange.NOT_A_MEMBER:
            raise ForbiddenError("You are not a member of this group")
        if outcome == MembershipChange.UNPAID_SPLITS:
            raise HasUnpaidDebtError()
        if outcome == MembershipChange.LAST_ADMIN:
            raise SoleAdminError()
        return outcome

    async def change_role(self, group_id: UUID, user_id: UUID, role: MemberRole) -> GroupMember:
        """
        Set a member's role, never demoting the group's last admin.

        Raises:
            MemberNotFoundError: The user is not a member
            SoleAdminError: Demoting the only admin
        """
        await self.ensure_admin_remains(group_id, user_id, role)
        outcome = await self._groups.update_member_role_guarded(group_id, user_id, role)

        if outcome == MembershipChange.NOT_A_MEMBER:
            raise MemberNotFoundError()
        if outcome == MembershipChange.LAST_ADMIN:
            raise SoleAdminError("A group needs at least one admin")
        return await self._groups.get_membership(group_id, user_id)
