"""
auth/store.py -- SQLAlchemy Core persistence layer for the auth core.

Pattern: Repository + Data Mapper. AuthStore is the repository; the _row_to_*
functions are the mappers. Route, service and dependency code never touches
SQL directly.

Tables:
  tenants          read (tenant-hint resolution)
  users            read; writes limited to registration and last_login
  user_sessions    Session Registry records (fingerprint, expiry)
  refresh_tokens   Refresh-Token Ledger (hash, lineage, expiry, revoked)
  login_attempts   write-only audit of every login attempt
  audit_log        write-only audit of role switches and logouts

Security:
  All queries use bound parameters. No f-strings in SQL.

  Every query on user-scoped data takes tenant_id and puts it in the WHERE
  clause. The one exception is the login lookup by username/email, which
  runs before a tenant is known; the facade compares tenant ids afterwards.

Concurrency:
  Nothing here does read-then-write. revoke_refresh_token() is a single
  conditional UPDATE (WHERE revoked = 0); with two concurrent callers the
  store lets exactly one of them see rowcount == 1.

Timestamps are UTC ISO-8601 strings at fixed microsecond precision, so SQL
string comparison orders them correctly.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import AuditEntry, RefreshTokenRecord, SessionRecord, Tenant, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_tenants = Table(
    "tenants",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("subdomain", String(100), nullable=False, unique=True),
    Column("company_name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("role", String(20), nullable=False, server_default="employee"),
    Column("tenant_id", Integer, index=True),  # NULL only before provisioning
    Column("department_id", Integer),
    Column("position", String(100)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_archived", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_user_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False, index=True),
    Column("session_id", String(255), nullable=False, unique=True),
    Column("fingerprint", String(255)),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", Integer, nullable=False),
    Column("user_id", Integer, nullable=False, index=True),
    Column("lineage_id", String(255), index=True),
    Column("token_hash", String(60), nullable=False),  # bcrypt
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_login_attempts = Table(
    "login_attempts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identifier", String(255), nullable=False, index=True),
    Column("ip_address", String(45)),
    Column("success", Integer, nullable=False, server_default="0"),
    Column("reason", String(50)),
    Column("attempted_at", String(32), nullable=False),
)

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", Integer, index=True),
    Column("user_id", Integer),
    Column("action", String(100), nullable=False),
    Column("entity_type", String(50), nullable=False),
    Column("entity_id", Integer),
    Column("details", JSON),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("was_role_switched", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(utcnow())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for every table the auth core reads or writes.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        tenant_id = store.create_tenant(Tenant(subdomain="acme", company_name="Acme"))
        store.create_user(User(username="alice", email="a@acme.test", role="admin",
                               tenant_id=tenant_id, hashed_password=hash_password("pw")))
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def create_tenant(self, tenant: Tenant) -> int:
        """Insert a tenant and return its ID. An explicit tenant.id is kept."""
        values = {"subdomain": tenant.subdomain, "company_name": tenant.company_name, "created_at": _now_iso()}
        if tenant.id is not None:
            values["id"] = tenant.id
        with self.engine.connect() as conn:
            result = conn.execute(_tenants.insert().values(**values))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_tenant_by_subdomain(self, subdomain: str) -> Tenant | None:
        """Resolve a tenant hint. Subdomains are compared case-insensitively."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _tenants.select().where(func.lower(_tenants.c.subdomain) == subdomain.strip().lower())
            ).fetchone()
        return _row_to_tenant(row) if row is not None else None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email is
        already taken. The facade maps that to IdentityConflict.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    role=user.role,
                    tenant_id=user.tenant_id,
                    department_id=user.department_id,
                    position=user.position,
                    is_active=1 if user.is_active else 0,
                    is_archived=1 if user.is_archived else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Exact, case-sensitive username match. Login lookup -- not tenant scoped."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive email match. Login lookup -- not tenant scoped."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(func.lower(_users.c.email) == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int, tenant_id: int) -> User | None:
        """Look up a user by primary key inside one tenant."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & (_users.c.tenant_id == tenant_id))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def set_active(self, user_id: int, tenant_id: int, active: bool) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.tenant_id == tenant_id))
                .values(is_active=1 if active else 0)
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Session Registry
    # ------------------------------------------------------------------

    def create_session(self, record: SessionRecord) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_sessions.insert().values(
                    tenant_id=record.tenant_id,
                    user_id=record.user_id,
                    session_id=record.session_id,
                    fingerprint=record.fingerprint,
                    expires_at=record.expires_at,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_live_session(self, tenant_id: int, user_id: int, session_id: str) -> SessionRecord | None:
        """Return the unexpired session record for this correlator, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _user_sessions.select().where(
                    (_user_sessions.c.tenant_id == tenant_id)
                    & (_user_sessions.c.user_id == user_id)
                    & (_user_sessions.c.session_id == session_id)
                    & (_user_sessions.c.expires_at > _now_iso())
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, tenant_id: int, user_id: int, session_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_sessions.delete().where(
                    (_user_sessions.c.tenant_id == tenant_id)
                    & (_user_sessions.c.user_id == user_id)
                    & (_user_sessions.c.session_id == session_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def purge_expired_sessions(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_user_sessions.delete().where(_user_sessions.c.expires_at <= _now_iso()))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Refresh-Token Ledger
    # ------------------------------------------------------------------

    def add_refresh_token(self, record: RefreshTokenRecord) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    tenant_id=record.tenant_id,
                    user_id=record.user_id,
                    lineage_id=record.lineage_id,
                    token_hash=record.token_hash,
                    expires_at=record.expires_at,
                    revoked=0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_live_refresh_tokens(self) -> list[RefreshTokenRecord]:
        """Return every non-revoked, unexpired ledger entry, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where((_refresh_tokens.c.revoked == 0) & (_refresh_tokens.c.expires_at > _now_iso()))
                .order_by(_refresh_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_refresh(r) for r in rows]

    def get_refresh_token(self, token_id: int) -> RefreshTokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.id == token_id)).fetchone()
        return _row_to_refresh(row) if row is not None else None

    def revoke_refresh_token(self, token_id: int) -> bool:
        """Atomically revoke one entry. True only for the caller that flipped it."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == token_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
            conn.commit()
        return result.rowcount == 1

    def revoke_lineage_refresh_tokens(self, tenant_id: int, user_id: int, lineage_id: str) -> int:
        """Revoke every live entry of one login lineage. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.tenant_id == tenant_id)
                    & (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.lineage_id == lineage_id)
                    & (_refresh_tokens.c.revoked == 0)
                )
                .values(revoked=1)
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def record_login_attempt(
        self, identifier: str, ip_address: Optional[str], success: bool, reason: Optional[str] = None
    ) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _login_attempts.insert().values(
                    identifier=identifier[:255],
                    ip_address=ip_address,
                    success=1 if success else 0,
                    reason=reason,
                    attempted_at=_now_iso(),
                )
            )
            conn.commit()

    def count_login_attempts(self, identifier: str, success: Optional[bool] = None) -> int:
        query = select(func.count()).select_from(_login_attempts).where(_login_attempts.c.identifier == identifier)
        if success is not None:
            query = query.where(_login_attempts.c.success == (1 if success else 0))
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def add_audit_entry(self, entry: AuditEntry) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_log.insert().values(
                    tenant_id=entry.tenant_id,
                    user_id=entry.user_id,
                    action=entry.action,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    details=entry.details,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    was_role_switched=1 if entry.was_role_switched else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_audit_entries(self, tenant_id: int, user_id: Optional[int] = None) -> list[AuditEntry]:
        """Compliance review read, oldest first. Always tenant scoped."""
        query = _audit_log.select().where(_audit_log.c.tenant_id == tenant_id)
        if user_id is not None:
            query = query.where(_audit_log.c.user_id == user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_audit_log.c.id)).fetchall()
        return [_row_to_audit(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_tenant(row) -> Tenant:
    return Tenant(id=row.id, subdomain=row.subdomain, company_name=row.company_name, created_at=row.created_at)


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        tenant_id=row.tenant_id,
        department_id=row.department_id,
        position=row.position,
        is_active=bool(row.is_active),
        is_archived=bool(row.is_archived),
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_session(row) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        user_id=row.user_id,
        session_id=row.session_id,
        fingerprint=row.fingerprint,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_refresh(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        user_id=row.user_id,
        lineage_id=row.lineage_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        revoked=bool(row.revoked),
        created_at=row.created_at,
    )


def _row_to_audit(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        tenant_id=row.tenant_id,
        user_id=row.user_id,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        details=row.details or {},
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        was_role_switched=bool(row.was_role_switched),
        created_at=row.created_at,
    )
