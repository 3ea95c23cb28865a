from taskgrid.models.user import User
from taskgrid.models.board import Board, BoardMember, BoardRole, BoardVisibility
from taskgrid.models.task import Task
from taskgrid.models.role import Role
from taskgrid.models.invitation import BoardInvitation, InvitationStatus
from taskgrid.models.audit import AuditLog, Activity, AuditAction, ActivityType
