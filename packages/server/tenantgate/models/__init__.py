# SQLModel definitions, imported so Alembic sees the full metadata.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .organization import Organization, Workspace, WorkspaceMember  # noqa: F401
from .user import User  # noqa: F401
from .user_org import UserOrganization  # noqa: F401
from .auth_session import AuthSession  # noqa: F401
from .email_verification_token import EmailVerificationToken  # noqa: F401
from .auth_outbox import AuthOutbox  # noqa: F401
from .org_invite import OrgInvite, OrgInviteWorkspaceAssignment  # noqa: F401
from .audit_event import AuditEvent  # noqa: F401
