from datetime import UTC, datetime

import bcrypt
from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import validates

db = SQLAlchemy()


def _utcnow():
    return datetime.now(UTC)


# ── Application lifecycle ───────────────────────────────────────────

STATUS_PENDING = "pending"
STATUS_CALL_SCHEDULED = "call_scheduled"
STATUS_APPROVED = "approved"
STATUS_DECLINED = "declined"

APPLICATION_STATUSES = (STATUS_PENDING, STATUS_CALL_SCHEDULED, STATUS_APPROVED, STATUS_DECLINED)
TERMINAL_STATUSES = (STATUS_APPROVED, STATUS_DECLINED)

# Allowed edges of the application state machine. Terminal states have none.
TRANSITIONS = {
    STATUS_PENDING: frozenset({STATUS_CALL_SCHEDULED, STATUS_APPROVED, STATUS_DECLINED}),
    STATUS_CALL_SCHEDULED: frozenset({STATUS_APPROVED, STATUS_DECLINED}),
    STATUS_APPROVED: frozenset(),
    STATUS_DECLINED: frozenset(),
}

TIER_COMMUNITY = "community"
TIER_SUPPORTER = "supporter"
TIER_MEMBER = "member"

MEMBERSHIP_TIERS = (TIER_COMMUNITY, TIER_SUPPORTER, TIER_MEMBER)

# Role granted on approval, keyed by the tier the applicant asked for
TIER_ROLE_SLUGS = {
    TIER_COMMUNITY: "community",
    TIER_SUPPORTER: "supporter",
    TIER_MEMBER: "member",
}

ROLE_ADMIN = "admin"

# (slug, name, description) seeded as reference data on start-up
DEFAULT_ROLES = (
    (ROLE_ADMIN, "Admin", "Staff member who reviews and decides applications"),
    ("community", "Community Member", "Basic community member"),
    ("supporter", "Registered Supporter", "Verified supporter of the organization"),
    ("member", "Full Member", "Full member of the organization"),
)


def _sql_list(values):
    return ", ".join(f"'{v}'" for v in values)


# ── Association tables ──────────────────────────────────────────────

role_user = db.Table(
    "role_user",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


# ── Role ────────────────────────────────────────────────────────────


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    slug = db.Column(db.String(50), unique=True, nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    @staticmethod
    def ensure_defaults():
        """Insert any missing reference roles. Returns the number created."""
        created = 0
        for slug, name, description in DEFAULT_ROLES:
            if Role.query.filter_by(slug=slug).first() is None:
                db.session.add(Role(slug=slug, name=name, description=description))
                created += 1
        if created:
            db.session.commit()
        return created

    def __repr__(self):
        return f"<Role {self.slug}>"


# ── User ────────────────────────────────────────────────────────────


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    phone_number = db.Column(db.String(50), nullable=True)
    # Absent until approval (or an explicit password change by the account owner)
    password_hash = db.Column(db.String(255), nullable=True)
    email_verified_at = db.Column(db.DateTime, nullable=True)
    is_active_account = db.Column(db.Boolean, nullable=False, default=True)
    failed_login_count = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)
    password_changed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    roles = db.relationship("Role", secondary=role_user, lazy="selectin", backref="users")

    def set_password(self, password, rounds=13):
        self.password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")
        self.password_changed_at = datetime.now(UTC)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return bcrypt.checkpw(password.encode("utf-8"), self.password_hash.encode("utf-8"))

    def has_role(self, slug):
        return any(role.slug == slug for role in self.roles)

    def grant_role(self, role):
        """Add *role* unless already held. Returns True when the role set changed."""
        if role in self.roles:
            return False
        self.roles.append(role)
        return True

    @property
    def role_slugs(self):
        return sorted(role.slug for role in self.roles)

    @property
    def is_admin(self):
        return self.has_role(ROLE_ADMIN)

    @property
    def is_active(self):
        """Flask-Login uses this to check if user session is valid."""
        return self.is_active_account

    def __repr__(self):
        return f"<User {self.email}>"


# ── Application ─────────────────────────────────────────────────────


class Application(db.Model):
    __tablename__ = "applications"

    id = db.Column(db.Integer, primary_key=True)
    # unique: an applicant has at most one application
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    desired_tier = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING, index=True)
    motivation = db.Column(db.Text, nullable=True)
    intake_data = db.Column(db.JSON, nullable=True)

    call_scheduled_at = db.Column(db.DateTime, nullable=True)
    call_scheduled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    call_reminder_sent = db.Column(db.Boolean, nullable=False, default=False)

    decided_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_at = db.Column(db.DateTime, nullable=True)
    decision_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            f"status IN ({_sql_list(APPLICATION_STATUSES)})",
            name="ck_applications_status",
        ),
        db.CheckConstraint(
            f"desired_tier IN ({_sql_list(MEMBERSHIP_TIERS)})",
            name="ck_applications_desired_tier",
        ),
        db.CheckConstraint(
            f"(status IN ({_sql_list(TERMINAL_STATUSES)}) AND decided_by IS NOT NULL AND decided_at IS NOT NULL)"
            f" OR (status NOT IN ({_sql_list(TERMINAL_STATUSES)})"
            " AND decided_by IS NULL AND decided_at IS NULL AND decision_notes IS NULL)",
            name="ck_applications_decision_fields",
        ),
        db.CheckConstraint(
            f"status != '{STATUS_CALL_SCHEDULED}' OR call_scheduled_at IS NOT NULL",
            name="ck_applications_call_scheduled_at",
        ),
    )

    user = db.relationship(
        "User",
        foreign_keys=[user_id],
        backref=db.backref("application", uselist=False),
    )
    scheduler = db.relationship("User", foreign_keys=[call_scheduled_by])
    decider = db.relationship("User", foreign_keys=[decided_by])

    @validates("status")
    def _validate_status(self, key, value):
        if value not in APPLICATION_STATUSES:
            raise ValueError(f"Unknown application status: {value!r}")
        current = self.status
        if current is not None and current != value and value not in TRANSITIONS[current]:
            raise ValueError(f"Illegal application transition {current} -> {value}")
        return value

    @validates("desired_tier")
    def _validate_tier(self, key, value):
        if value not in MEMBERSHIP_TIERS:
            raise ValueError(f"Unknown membership tier: {value!r}")
        return value

    def can_transition_to(self, status):
        return status in TRANSITIONS.get(self.status, ())

    @property
    def is_decided(self):
        return self.status in TERMINAL_STATUSES

    @property
    def role_slug(self):
        return TIER_ROLE_SLUGS[self.desired_tier]

    def __repr__(self):
        return f"<Application {self.id} user={self.user_id} ({self.status})>"


# ── Audit Log ───────────────────────────────────────────────────────


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=_utcnow, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    target_type = db.Column(db.String(50), nullable=True)  # application, user
    target_id = db.Column(db.Integer, nullable=True)
    detail = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    user = db.relationship("User", backref="audit_logs", lazy="joined")

    def __repr__(self):
        return f"<AuditLog {self.action} at {self.timestamp}>"
