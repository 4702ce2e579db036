"""
Registration / Authentication Service

Creates a company tenant together with its first admin user, and verifies
credentials at login.

Both operations run before any tenant context exists and must search
across all tenants (email is globally unique, subdomain is globally
unique). User lookups therefore go through unscoped_execute(), the one
named bypass of the tenant filter. Writes are performed under an explicit
context for the tenant being created or logged into.
"""
from datetime import datetime, timezone
from typing import Optional
import logging
import re
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.core.exceptions import AccountInactiveError, DuplicateIdentityError, ValidationError
from app.core.retry import retry_on_transient
from app.core.security import PasswordHasher, PasswordVerification, get_password_hasher
from app.core.tenant_context import TenantContext
from app.data.scoping import scoped_to, unscoped_execute
from app.models.tenant import SubscriptionPlan, Tenant
from app.models.user import User, UserRole
from app.utils.logging import log_security_event

logger = logging.getLogger(__name__)

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9-]{3,50}$")

DUPLICATE_EMAIL_MESSAGE = "A user with this email already exists."
DUPLICATE_SUBDOMAIN_MESSAGE = "This subdomain is already taken."
USER_INACTIVE_MESSAGE = "User account is inactive."
COMPANY_INACTIVE_MESSAGE = "Company account is inactive."


class AuthService:
    def __init__(self, session: Session, hasher: Optional[PasswordHasher] = None):
        self.session = session
        self.hasher = hasher or get_password_hasher()

    # ------------------------------------------------------------------
    # Cross-tenant lookups
    # ------------------------------------------------------------------

    def _find_user_by_email(self, email: str) -> Optional[User]:
        return unscoped_execute(
            self.session,
            select(User)
            .options(joinedload(User.tenant))
            .where(func.lower(User.email) == email.lower()),
            reason="resolve user by email across tenants for authentication",
        ).scalars().first()

    def _find_tenant_by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        return self.session.execute(
            select(Tenant).where(func.lower(Tenant.subdomain) == subdomain.lower())
        ).scalars().first()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @retry_on_transient()
    def register_company(
        self,
        company_name: str,
        subdomain: str,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        contact_phone: Optional[str] = None,
    ) -> User:
        """
        Create a tenant and its first Admin user as one unit.

        The pre-checks give friendly errors in the common case. The unique
        indexes on tenants.subdomain and users.email decide concurrent
        races; the loser's IntegrityError maps to the same
        DuplicateIdentityError and nothing from it is persisted.
        """
        email = email.strip().lower()
        subdomain = subdomain.strip().lower()

        if not SUBDOMAIN_PATTERN.match(subdomain):
            raise ValidationError.for_field(
                "subdomain",
                "Subdomain must be 3-50 characters of lowercase letters, numbers, and hyphens.",
            )

        if self._find_user_by_email(email) is not None:
            logger.info("Registration rejected: email already registered")
            raise DuplicateIdentityError(DUPLICATE_EMAIL_MESSAGE)

        if self._find_tenant_by_subdomain(subdomain) is not None:
            logger.info(f"Registration rejected: subdomain '{subdomain}' taken")
            raise DuplicateIdentityError(DUPLICATE_SUBDOMAIN_MESSAGE)

        tenant = Tenant(
            id=str(uuid.uuid4()),
            company_name=company_name,
            subdomain=subdomain,
            contact_email=email,
            contact_phone=contact_phone,
            subscription_plan=SubscriptionPlan.FREE,
            is_active=True,
        )
        user = User(
            id=str(uuid.uuid4()),
            tenant_id=tenant.id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            password_hash=self.hasher.hash(password),
            role=UserRole.ADMIN.value,
            is_active=True,
            email_verified=False,
        )
        user.tenant = tenant

        with scoped_to(self.session, TenantContext(tenant.id, user.id)):
            self.session.add(tenant)
            self.session.add(user)
            try:
                self.session.commit()
            except IntegrityError as exc:
                self.session.rollback()
                message = (
                    DUPLICATE_SUBDOMAIN_MESSAGE
                    if "subdomain" in str(exc.orig).lower()
                    else DUPLICATE_EMAIL_MESSAGE
                )
                logger.warning(f"Registration lost a uniqueness race: {message}")
                raise DuplicateIdentityError(message) from exc

        logger.info(f"Registered tenant {tenant.id} with admin user {user.id}")
        return user

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @retry_on_transient()
    def authenticate(self, email: str, password: str) -> Optional[User]:
        """
        Verify credentials.

        Returns None for an unknown email and for a wrong password alike;
        the caller turns both into the same InvalidCredentialsError.
        Inactive user or company raises AccountInactiveError.
        """
        user = self._find_user_by_email(email.strip())

        if user is None:
            # Same hashing cost as a real check
            self.hasher.dummy_verify()
            log_security_event("failed_login", {"reason": "unknown_email"}, logger)
            return None

        if not user.is_active:
            log_security_event(
                "failed_login",
                {"reason": "user_inactive", "user_id": user.id, "tenant_id": user.tenant_id},
                logger,
            )
            raise AccountInactiveError(USER_INACTIVE_MESSAGE)

        if user.tenant is None or not user.tenant.is_active:
            log_security_event(
                "failed_login",
                {"reason": "tenant_inactive", "user_id": user.id, "tenant_id": user.tenant_id},
                logger,
            )
            raise AccountInactiveError(COMPANY_INACTIVE_MESSAGE)

        verification = self.hasher.verify(user.password_hash, password)
        if not verification.succeeded:
            log_security_event(
                "failed_login",
                {"reason": "invalid_password", "user_id": user.id, "tenant_id": user.tenant_id},
                logger,
            )
            return None

        with scoped_to(self.session, TenantContext(user.tenant_id, user.id)):
            if verification is PasswordVerification.NEEDS_REHASH:
                user.password_hash = self.hasher.hash(password)
                logger.info(f"Upgraded password hash for user {user.id}")
            user.last_login_at = datetime.now(timezone.utc)
            self.session.commit()

        logger.info(f"Successful login: user={user.id}, tenant={user.tenant_id}")
        return user
