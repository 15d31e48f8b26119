"""
auth/service.py -- Authentication Facade.

The only entry point other subsystems call. It composes the Token Codec, the
Session Registry, the Refresh-Token Ledger and the Role-Switch State Machine
over one AuthStore and one injected Settings instance.

Error policy:
  Every public operation runs behind _guarded(). AuthError subclasses are
  the expected-failure taxonomy and propagate unchanged. Any other exception
  (store down, corrupt hash, codec bug) is logged here with full traceback
  and re-raised as AuthServiceError, which the API renders as an opaque 500.
  Nothing is ever turned into a silent success.

  Best-effort side effects (session record, login-attempt record, audit
  entries, last_login stamp) go through auth.audit.best_effort and cannot
  fail the operation.

Timing:
  login() runs exactly one bcrypt comparison whether or not the identifier
  exists, so response time does not reveal which identifiers are valid.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError

from auth.audit import best_effort, record_login_attempt, record_logout
from auth.errors import (
    AuthError,
    AuthServiceError,
    IdentityConflict,
    IdentityGone,
    InsufficientRole,
    InvalidPassword,
    InvalidRequest,
    RefreshInvalidOrExpired,
    TokenInvalidOrExpired,
    TokenMissing,
    UserInactive,
    UserNotFound,
)
from auth.models import IdentityContext, SwitchResult, TokenPair, User, public_user
from auth.refresh import RefreshLedger
from auth.role_switch import RoleSwitcher
from auth.roles import Role, role_satisfies
from auth.sessions import SessionRegistry
from auth.store import AuthStore
from auth.tokens import TokenCodec, dummy_hash, hash_password, new_lineage_id, to_identity, verify_password
from core.config import Settings

logger = logging.getLogger("tenantauth.auth")

F = TypeVar("F", bound=Callable[..., Any])


def _guarded(operation: str) -> Callable[[F], F]:
    """Facade boundary: pass AuthError through, wrap everything else as AuthServiceError."""

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except AuthError:
                raise
            except Exception as exc:
                logger.exception("Unexpected failure during %s", operation)
                raise AuthServiceError() from exc

        return wrapper  # type: ignore[return-value]

    return decorator


class AuthService:
    """Authentication Facade.

    Usage:
        service = AuthService(store, settings)
        pair = service.login("alice", "secret", fingerprint="fp-1", tenant_hint="acme")
        ctx = service.verify(pair.token)
    """

    def __init__(self, store: AuthStore, settings: Settings, codec: Optional[TokenCodec] = None) -> None:
        self.store = store
        self.settings = settings
        self.codec = codec or TokenCodec(settings)
        self.sessions = SessionRegistry(store, settings)
        self.ledger = RefreshLedger(store, settings)
        self.switcher = RoleSwitcher(store, self.codec, self.sessions)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    @_guarded("login")
    def login(
        self,
        identifier: str,
        password: str,
        fingerprint: Optional[str] = None,
        tenant_hint: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TokenPair:
        """Authenticate identifier/password and issue a token pair.

        One login-attempt record is written per call, success or failure,
        including failures that are not credential errors.
        """
        try:
            user = self._authenticate(identifier, password, tenant_hint)
            pair = self._issue_pair(user, fingerprint, new_lineage_id())
        except AuthError as exc:
            _ = record_login_attempt(self.store, identifier, ip_address, success=False, reason=exc.code)
            logger.info("Login failed for %r from %s: %s", identifier, ip_address or "unknown", exc.code)
            raise
        except Exception:
            _ = record_login_attempt(
                self.store, identifier, ip_address, success=False, reason=AuthServiceError.code
            )
            raise

        _ = best_effort("last_login", self.store.update_last_login, user.id)
        _ = record_login_attempt(self.store, identifier, ip_address, success=True)
        logger.info("Login succeeded for user %s (tenant %s)", user.id, user.tenant_id)
        return pair

    def _issue_pair(self, user: User, fingerprint: Optional[str], lineage_id: str) -> TokenPair:
        """Open a session and issue a plain token plus a refresh secret in one lineage."""
        session_id = self.sessions.open(user, fingerprint)
        token = self.codec.issue(user, session_id=session_id, lineage_id=lineage_id, fingerprint=fingerprint)
        refresh_token = self.ledger.issue(user, lineage_id)
        return TokenPair(token=token, refresh_token=refresh_token, user=public_user(user))

    def _authenticate(self, identifier: str, password: str, tenant_hint: Optional[str]) -> User:
        user = self.store.get_by_username(identifier) or self.store.get_by_email(identifier)

        if user is not None and user.tenant_id is None:
            # Not provisioned into a tenant yet.
            user = None
        if user is not None and tenant_hint:
            tenant = self.store.get_tenant_by_subdomain(tenant_hint)
            if tenant is None or tenant.id != user.tenant_id:
                logger.warning(
                    "[SECURITY] Login for user %s rejected: tenant hint %r does not match",
                    user.id,
                    tenant_hint,
                )
                user = None

        if user is None:
            # Equalize timing -- do NOT return before running bcrypt.
            verify_password(password, dummy_hash(self.settings.bcrypt_rounds))
            raise UserNotFound()
        if not verify_password(password, user.hashed_password):
            raise InvalidPassword()
        if not user.is_active or user.is_archived:
            raise UserInactive()
        return user

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    @_guarded("verify")
    def verify(self, token: Optional[str], fingerprint: Optional[str] = None) -> IdentityContext:
        """Verify a bearer/cookie token and return its identity context.

        fingerprint is the one presented in the current request, if any.
        """
        if not token:
            raise TokenMissing()
        ctx = self.codec.verify(token)
        self.sessions.check(ctx, fingerprint)
        return ctx

    @_guarded("validate_fingerprint")
    def validate_fingerprint(self, ctx: IdentityContext, fingerprint: Optional[str]) -> bool:
        return self.sessions.fingerprint_matches(ctx, fingerprint)

    @_guarded("current_user")
    def current_user(self, ctx: IdentityContext) -> dict[str, Any]:
        """Reload the caller from the store, tenant scoped."""
        user = self.store.get_by_id(ctx.user_id, ctx.tenant_id)
        if user is None:
            raise IdentityGone()
        if not user.is_active or user.is_archived:
            raise UserInactive()
        view = public_user(user)
        view["active_role"] = ctx.active_role
        view["is_role_switched"] = ctx.is_role_switched
        return view

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    @_guarded("refresh")
    def refresh(self, secret: str, fingerprint: Optional[str] = None) -> TokenPair:
        """Rotate a refresh secret into a new token pair.

        The new Session Token carries the legal role only; an impersonation
        state never survives a refresh. The login lineage carries over, so a
        logout with any token of the lineage revokes the rotated secret too.
        """
        entry = self.ledger.consume(secret)
        user = self.store.get_by_id(entry.user_id, entry.tenant_id)
        if user is None or not user.is_active or user.is_archived:
            raise RefreshInvalidOrExpired()

        pair = self._issue_pair(user, fingerprint, entry.lineage_id or new_lineage_id())
        logger.info("Refresh token rotated for user %s (tenant %s)", user.id, user.tenant_id)
        return pair

    @_guarded("logout")
    def logout(
        self,
        token: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """Close the session and revoke its refresh lineage if the token resolves.

        An expired token still resolves here (signature is checked, expiry
        is not). Returns False when there was nothing to resolve.
        """
        if not token:
            return False
        try:
            ctx = to_identity(self.codec.decode(token, verify_exp=False))
        except TokenInvalidOrExpired:
            return False
        self.sessions.close(ctx)
        revoked = self.ledger.revoke_lineage(ctx)
        _ = record_logout(self.store, ctx, ip_address, user_agent)
        logger.info("Logout for user %s (tenant %s), %d refresh token(s) revoked", ctx.user_id, ctx.tenant_id, revoked)
        return True

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @_guarded("register")
    def register(
        self,
        ctx: IdentityContext,
        username: str,
        email: str,
        password: str,
        role: str = Role.EMPLOYEE.value,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        department_id: Optional[int] = None,
        position: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create a user inside the caller's tenant.

        The tenant always comes from the caller's token. The caller's active
        role must be admin or above, and no role above it can be granted.
        """
        if role not in {r.value for r in Role}:
            raise InvalidRequest(f"Unknown role {role!r}.")
        if not role_satisfies(ctx.active_role, Role.ADMIN):
            raise InsufficientRole("Only administrators can create users.")
        if not role_satisfies(ctx.active_role, role):
            raise InsufficientRole("You cannot grant a role above your own.")

        new_user = User(
            username=username,
            email=email,
            role=role,
            hashed_password=hash_password(password, self.settings.bcrypt_rounds),
            tenant_id=ctx.tenant_id,
            first_name=first_name,
            last_name=last_name,
            department_id=department_id,
            position=position,
        )
        try:
            user_id = self.store.create_user(new_user)
        except IntegrityError as exc:
            raise IdentityConflict() from exc
        logger.info("User %s created in tenant %s by user %s", user_id, ctx.tenant_id, ctx.user_id)
        return public_user(self.store.get_by_id(user_id, ctx.tenant_id))

    # ------------------------------------------------------------------
    # Role switch
    # ------------------------------------------------------------------

    @_guarded("switch_to")
    def switch_to(self, ctx: IdentityContext, target: str, **request_meta) -> SwitchResult:
        return self.switcher.switch_to(ctx, target, **request_meta)

    @_guarded("switch_to_original")
    def switch_to_original(self, ctx: IdentityContext, **request_meta) -> SwitchResult:
        return self.switcher.switch_to_original(ctx, **request_meta)

    @_guarded("root_to_admin")
    def root_to_admin(self, ctx: IdentityContext, **request_meta) -> SwitchResult:
        return self.switcher.root_to_admin(ctx, **request_meta)

    @_guarded("role_status")
    def role_status(self, ctx: IdentityContext) -> dict[str, Any]:
        return self.switcher.status(ctx)
