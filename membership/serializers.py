"""JSON views of models returned by the HTTP layer."""

from datetime import UTC


def _iso(value):
    if value is None:
        return None
    # Naive values from the database are UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def _staff_ref(user):
    if user is None:
        return None
    return {"id": user.id, "name": user.name}


def user_summary(user):
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone_number": user.phone_number,
        "roles": user.role_slugs,
    }


def application_detail(application):
    """Full staff view, including who scheduled and who decided."""
    return {
        "id": application.id,
        "desired_tier": application.desired_tier,
        "status": application.status,
        "motivation": application.motivation,
        "intake_data": application.intake_data,
        "call_scheduled_at": _iso(application.call_scheduled_at),
        "call_scheduled_by": _staff_ref(application.scheduler),
        "decided_at": _iso(application.decided_at),
        "decided_by": _staff_ref(application.decider),
        "decision_notes": application.decision_notes,
        "created_at": _iso(application.created_at),
        "updated_at": _iso(application.updated_at),
        "user": user_summary(application.user),
    }


def application_list_item(application):
    user = application.user
    return {
        "id": application.id,
        "desired_tier": application.desired_tier,
        "status": application.status,
        "call_scheduled_at": _iso(application.call_scheduled_at),
        "created_at": _iso(application.created_at),
        "user": {"id": user.id, "name": user.name, "email": user.email},
    }


def application_public(application):
    # Applicants never see staff notes or staff identities
    return {
        "id": application.id,
        "desired_tier": application.desired_tier,
        "status": application.status,
        "call_scheduled_at": _iso(application.call_scheduled_at),
        "created_at": _iso(application.created_at),
    }


def user_admin_view(user):
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone_number": user.phone_number,
        "is_active": user.is_active_account,
        "created_at": _iso(user.created_at),
        "email_verified_at": _iso(user.email_verified_at),
        "roles": [{"slug": role.slug, "name": role.name} for role in sorted(user.roles, key=lambda r: r.slug)],
    }
